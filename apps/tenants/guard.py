"""
Tenant isolation checks.

``resolve`` turns the tenant claim of a verified identity into a tenant id
or a rejection. ``can_access_tenant`` / ``ensure_same_tenant`` compare the
caller's tenant with the tenant that owns a resource.
"""
import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from apps.core.context import AuthContext, VerifiedIdentity
from apps.core.exceptions import ForbiddenError
from apps.core.logging import SecurityLogger
from apps.rbac.catalog import BUSINESS_OWNER, markers_allow

logger = logging.getLogger(__name__)


class ResolutionState(str, enum.Enum):
    UNRESOLVED = 'unresolved'
    RESOLVED = 'resolved'
    REJECTED = 'rejected'


@dataclass(frozen=True)
class TenantResolution:
    state: ResolutionState
    tenant_id: Optional[uuid.UUID] = None
    reason: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.state == ResolutionState.RESOLVED


UNRESOLVED = TenantResolution(ResolutionState.UNRESOLVED)


class TenantIsolationGuard:
    """
    Per-request tenant extraction and resource ownership comparison.
    """

    @classmethod
    def resolve(cls, identity: Optional[VerifiedIdentity]) -> TenantResolution:
        """
        UNRESOLVED -> RESOLVED(tenant_id) when the tenant claim is a UUID,
        UNRESOLVED -> REJECTED(reason) otherwise. Anonymous requests stay
        UNRESOLVED.
        """
        if identity is None:
            return UNRESOLVED

        claim = identity.tenant_claim
        if claim is None or claim == '':
            return TenantResolution(ResolutionState.REJECTED, reason='missing_tenant_claim')

        if isinstance(claim, uuid.UUID):
            return TenantResolution(ResolutionState.RESOLVED, tenant_id=claim)

        try:
            tenant_id = uuid.UUID(str(claim))
        except ValueError:
            return TenantResolution(ResolutionState.REJECTED, reason='malformed_tenant_claim')

        return TenantResolution(ResolutionState.RESOLVED, tenant_id=tenant_id)

    @classmethod
    def can_access_tenant(cls, context: AuthContext, resource_tenant_id, requirement=None) -> bool:
        """
        True when the resource lives in the caller's tenant, or when the
        caller's bypass markers alone cover ``requirement``.

        business.owner always passes. system.admin passes for tenant-scoped,
        system.* and global.* requirements; cross.tenant.access only for
        global.* ones. Without a requirement only business.owner passes.
        """
        if context is None:
            return False
        if str(context.tenant_id) == str(resource_tenant_id):
            return True
        if context.holds(BUSINESS_OWNER):
            return True
        if requirement is None:
            return False
        return markers_allow(context.granted_permissions, requirement.permissions)

    @classmethod
    def ensure_same_tenant(cls, context: AuthContext, resource_tenant_id, resource: str = None,
                           requirement=None):
        if cls.can_access_tenant(context, resource_tenant_id, requirement):
            return

        SecurityLogger.log_cross_tenant_denied(
            context.user_id if context else None,
            context.tenant_id if context else None,
            resource_tenant_id,
            resource=resource,
        )
        raise ForbiddenError('Access to a resource in another tenant is not allowed')
