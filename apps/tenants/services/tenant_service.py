"""
Tenant management service.

Handles reads (by id, by slug, listing), settings updates and the
global-admin delete path.
"""
import logging

from django.db import IntegrityError
from django.db.models import Q

from apps.core.exceptions import ConflictError, NotFoundError, ValidationError
from apps.core.transactions import UnitOfWork, translate_database_errors
from apps.tenants.models import Tenant

logger = logging.getLogger(__name__)


class TenantService:
    """
    Service for tenant lifecycle operations after provisioning.
    """

    EDITABLE_FIELDS = ('name', 'logo_url', 'contact_email')

    @staticmethod
    def get_tenant(tenant_id) -> Tenant:
        with translate_database_errors('tenants.get'):
            tenant = Tenant.objects.filter(id=tenant_id).first()
        if tenant is None:
            raise NotFoundError('Tenant not found', {'tenant_id': str(tenant_id)})
        return tenant

    @staticmethod
    def get_by_slug(slug: str) -> Tenant:
        with translate_database_errors('tenants.get_by_slug'):
            tenant = Tenant.objects.by_slug(slug)
        if tenant is None:
            raise NotFoundError('Tenant not found', {'slug': slug})
        return tenant

    @staticmethod
    def list_tenants(search: str = None):
        tenants = Tenant.objects.all().order_by('name')
        if search:
            tenants = tenants.filter(Q(name__icontains=search) | Q(slug__icontains=search))
        return tenants

    @classmethod
    def update_tenant(cls, tenant_id, **changes) -> Tenant:
        """
        Update tenant settings. Only name, logo_url and contact_email may change;
        the slug is fixed at provisioning time.
        """
        unknown = sorted(set(changes) - set(cls.EDITABLE_FIELDS))
        if unknown:
            raise ValidationError('These fields cannot be changed', {'fields': unknown})
        if 'name' in changes and not (changes['name'] or '').strip():
            raise ValidationError('Tenant name cannot be empty')

        tenant = cls.get_tenant(tenant_id)
        for field, value in changes.items():
            setattr(tenant, field, value)

        with translate_database_errors('tenants.update'):
            try:
                UnitOfWork().with_transaction(lambda tx: tenant.save())
            except IntegrityError:
                raise ConflictError('Tenant update conflicts with an existing tenant')

        logger.info(
            f"Updated tenant settings: {sorted(changes)}",
            extra={'tenant_id': str(tenant.id)}
        )
        return tenant

    @classmethod
    def delete_tenant(cls, tenant_id):
        """Delete a tenant with its roles, memberships and grants."""
        tenant = cls.get_tenant(tenant_id)
        slug = tenant.slug

        with translate_database_errors('tenants.delete'):
            UnitOfWork().with_transaction(lambda tx: tenant.delete())

        logger.warning(
            f"Deleted tenant '{slug}'",
            extra={'tenant_id': str(tenant_id)}
        )
