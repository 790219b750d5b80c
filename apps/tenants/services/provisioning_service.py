"""
Tenant provisioning.

Creates a tenant together with its administrator in one transaction:

1. Tenant
2. "TenantAdmin" role
3. Administrator user
4. Active membership
5. Role assignment
6. Default administrator permissions on the role

Either all six rows exist afterwards or none do.
"""
import logging
from dataclasses import dataclass
from typing import Optional
import uuid

from django.db import IntegrityError
from django.utils import timezone

from apps.core.exceptions import ConflictError, ValidationError
from apps.core.transactions import CancellationToken, UnitOfWork, translate_database_errors
from apps.rbac.catalog import ClaimCatalog
from apps.rbac.models import Role, User, UserRole, UserTenant, generate_security_stamp
from apps.rbac.stores import ClaimStore
from apps.tenants.models import Tenant

logger = logging.getLogger(__name__)


ADMIN_ROLE_NAME = 'TenantAdmin'
ADMIN_ROLE_DESCRIPTION = 'Full access to all features'


@dataclass(frozen=True)
class ProvisioningRequest:
    tenant_name: str
    slug: str
    admin_email: str
    admin_first_name: str
    admin_last_name: str
    admin_password_hash: str
    contact_email: Optional[str] = None


@dataclass(frozen=True)
class ProvisioningResult:
    tenant_id: uuid.UUID
    admin_user_id: uuid.UUID
    admin_role_id: uuid.UUID


class TenantProvisioner:
    """
    Atomic tenant + administrator creation.

    The slug check before the transaction is advisory; the unique
    constraints on tenant slug and user email are what actually decide a
    conflict, and a violation rolls back everything written so far.
    """

    def __init__(self, catalog: Optional[ClaimCatalog] = None, cancellation: Optional[CancellationToken] = None):
        self.catalog = catalog or ClaimCatalog()
        self.cancellation = cancellation
        self.store = ClaimStore(catalog=self.catalog, cancellation=cancellation)

    def provision(self, request: ProvisioningRequest) -> ProvisioningResult:
        self._validate(request)
        admin_email = User.objects.normalize_email(request.admin_email)

        if Tenant.objects.slug_taken(request.slug):
            logger.warning(
                f"Provisioning refused: slug '{request.slug}' is taken",
                extra={'slug': request.slug}
            )
            raise ConflictError(
                f"Tenant slug '{request.slug}' is already in use",
                {'field': 'slug', 'slug': request.slug}
            )

        def apply(tx):
            tenant = Tenant.objects.create(
                name=request.tenant_name,
                slug=request.slug,
                contact_email=request.contact_email,
            )
            tx.checkpoint()

            role = Role.objects.create(
                tenant=tenant,
                name=ADMIN_ROLE_NAME,
                description=ADMIN_ROLE_DESCRIPTION,
            )
            tx.checkpoint()

            user = User.objects.create(
                email=admin_email,
                first_name=request.admin_first_name,
                last_name=request.admin_last_name,
                password_hash=request.admin_password_hash,
                security_stamp=generate_security_stamp(),
                is_email_confirmed=True,
            )
            tx.checkpoint()

            UserTenant.objects.create(
                user=user,
                tenant=tenant,
                is_active=True,
                joined_at=timezone.now(),
            )
            UserRole.objects.create(user=user, role=role, tenant=tenant)
            tx.checkpoint()

            admin_claims = self.catalog.default_admin_claims()
            if admin_claims:
                self.store.assign_to_role(role.id, admin_claims)

            return ProvisioningResult(
                tenant_id=tenant.id,
                admin_user_id=user.id,
                admin_role_id=role.id,
            )

        with translate_database_errors('tenants.provision'):
            try:
                result = UnitOfWork(cancellation=self.cancellation).with_transaction(apply)
            except IntegrityError:
                raise self._conflict_for(request, admin_email)

        logger.info(
            f"Provisioned tenant '{request.slug}'",
            extra={
                'tenant_id': str(result.tenant_id),
                'user_id': str(result.admin_user_id),
                'role_id': str(result.admin_role_id),
            }
        )
        return result

    def _conflict_for(self, request: ProvisioningRequest, admin_email: str) -> ConflictError:
        """Name the field that collided; the transaction has rolled back by now."""
        if Tenant.objects.slug_taken(request.slug):
            field, message = 'slug', f"Tenant slug '{request.slug}' is already in use"
        else:
            field, message = 'email', 'A user with this email already exists'

        logger.warning(
            f"Provisioning conflict on {field}",
            extra={'slug': request.slug, 'field': field}
        )
        return ConflictError(message, {'field': field})

    def _validate(self, request: ProvisioningRequest):
        missing = [
            name for name in ('tenant_name', 'slug', 'admin_email', 'admin_password_hash')
            if not (getattr(request, name) or '').strip()
        ]
        if missing:
            raise ValidationError('Missing required provisioning fields', {'missing': missing})
