"""
Role templates: fixed, named permission bundles used to stamp out roles.

The four templates never change at runtime. Creating a role from a
template inserts the role and its claims in one transaction, so a role
built from a non-empty template is never visible without permissions.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from django.db import IntegrityError

from apps.core.context import AuthContext
from apps.core.exceptions import ConflictError, NotFoundError, ValidationError
from apps.core.permissions import ensure_can_grant
from apps.core.transactions import CancellationToken, UnitOfWork, translate_database_errors
from apps.rbac.models import Role
from apps.rbac.stores import ClaimStore
from apps.tenants.models import Tenant

logger = logging.getLogger(__name__)


class RoleTemplateType(str, Enum):
    TENANT_ADMIN = 'TenantAdmin'
    USER_MANAGER = 'UserManager'
    VIEWER = 'Viewer'
    BASIC_USER = 'BasicUser'


@dataclass(frozen=True)
class RoleTemplate:
    type: RoleTemplateType
    name: str
    description: str
    permissions: Tuple[str, ...]

    @property
    def permission_count(self):
        return len(self.permissions)


TEMPLATES: Dict[RoleTemplateType, RoleTemplate] = {
    RoleTemplateType.TENANT_ADMIN: RoleTemplate(
        type=RoleTemplateType.TENANT_ADMIN,
        name='Tenant Administrator',
        description='Full administrative access within the tenant',
        permissions=(
            'users.view',
            'users.create',
            'users.edit',
            'users.delete',
            'users.invite',
            'users.manage.roles',
            'roles.view',
            'roles.create',
            'roles.edit',
            'roles.delete',
            'roles.manage.permissions',
            'tenant.settings.view',
            'tenant.settings.edit',
            'dashboard.view',
            'reports.view',
            'authentication.view',
            'authentication.edit',
            'authorization.view',
            'authorization.edit',
            'audit.view',
        ),
    ),
    RoleTemplateType.USER_MANAGER: RoleTemplate(
        type=RoleTemplateType.USER_MANAGER,
        name='User Manager',
        description='Manage users and their basic permissions',
        permissions=(
            'users.view',
            'users.create',
            'users.edit',
            'users.invite',
            'users.manage.roles',
            'roles.view',
            'dashboard.view',
        ),
    ),
    RoleTemplateType.VIEWER: RoleTemplate(
        type=RoleTemplateType.VIEWER,
        name='Viewer',
        description='Read-only access to most resources',
        permissions=(
            'users.view',
            'roles.view',
            'tenant.settings.view',
            'dashboard.view',
            'reports.view',
        ),
    ),
    RoleTemplateType.BASIC_USER: RoleTemplate(
        type=RoleTemplateType.BASIC_USER,
        name='Basic User',
        description='Basic access with minimal permissions',
        permissions=(
            'dashboard.view',
        ),
    ),
}


class RoleTemplateCatalog:
    """
    Lookup over the fixed templates plus role creation from a template.

    An unknown template type is a programming error and raises ValueError
    immediately; callers taking user input should go through ``parse``.
    """

    def __init__(self, store: Optional[ClaimStore] = None, cancellation: Optional[CancellationToken] = None):
        self.store = store or ClaimStore(cancellation=cancellation)
        self.cancellation = cancellation

    @staticmethod
    def list_templates() -> List[RoleTemplate]:
        return list(TEMPLATES.values())

    @staticmethod
    def get_template(template_type) -> RoleTemplate:
        return TEMPLATES[RoleTemplateType(template_type)]

    @staticmethod
    def parse(raw) -> RoleTemplateType:
        """Translate untrusted input into a template type (ValidationError if unknown)."""
        try:
            return RoleTemplateType(raw)
        except ValueError:
            raise ValidationError(
                f"Unknown role template '{raw}'",
                {'available': [template_type.value for template_type in RoleTemplateType]}
            )

    def create_role_from_template(self, tenant_id, template_type, role_name: str,
                                  description: Optional[str] = None,
                                  granted_by: Optional[AuthContext] = None) -> Role:
        """
        Create ``role_name`` in the tenant carrying the template's permissions.

        Raises NotFoundError for an unknown tenant and ConflictError when the
        tenant already has a role with that name. With ``granted_by`` the
        caller must be allowed to grant every template permission.
        """
        template = self.get_template(template_type)
        role_name = (role_name or '').strip()
        if not role_name:
            raise ValidationError('Role name is required')
        if granted_by is not None:
            ensure_can_grant(granted_by, template.permissions)

        def apply(tx):
            if not Tenant.objects.filter(id=tenant_id).exists():
                raise NotFoundError('Tenant not found', {'tenant_id': str(tenant_id)})
            role = Role.objects.create(
                tenant_id=tenant_id,
                name=role_name,
                description=description or template.description,
            )
            tx.checkpoint()
            # Nested call joins the outer transaction as a savepoint
            self.store.assign_to_role(role.id, template.permissions)
            return role

        with translate_database_errors('templates.create_role'):
            try:
                role = UnitOfWork(cancellation=self.cancellation).with_transaction(apply)
            except IntegrityError:
                raise ConflictError(
                    f"Role '{role_name}' already exists in this tenant",
                    {'name': role_name}
                )

        logger.info(
            f"Created role '{role.name}' from template {template.type.value}",
            extra={
                'tenant_id': str(tenant_id),
                'role_id': str(role.id),
                'permission_count': template.permission_count,
            }
        )
        return role
