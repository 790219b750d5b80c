"""
Services for tenant provisioning and management.
"""
from .provisioning_service import ProvisioningRequest, ProvisioningResult, TenantProvisioner
from .tenant_service import TenantService

__all__ = [
    'ProvisioningRequest',
    'ProvisioningResult',
    'TenantProvisioner',
    'TenantService',
]
