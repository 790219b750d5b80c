"""
Claim catalog: the registry of every known permission string.

Also owns the permission-string grammar and the single implementation of
the hierarchy rules (``hierarchy_allows``) shared by PermissionResolver
and the request guard.

Grammar::

    permission := prefix? segment ("." segment)*
    prefix     := "global." | "system." | "business." | "cross."
    segment    := [a-z0-9_-]+

A permission without a recognized prefix is tenant-scoped.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from django.db import IntegrityError

from apps.core.exceptions import ConflictError, NotFoundError, ValidationError
from apps.core.transactions import UnitOfWork, translate_database_errors
from apps.rbac.models import MasterClaim

logger = logging.getLogger(__name__)


PERMISSION_PATTERN = re.compile(r'^[a-z0-9_-]+(\.[a-z0-9_-]+)*$')


class PermissionScope(str, Enum):
    TENANT = 'tenant'
    GLOBAL = 'global'
    SYSTEM = 'system'
    BUSINESS = 'business'
    CROSS = 'cross'


SCOPE_PREFIXES = {
    'global.': PermissionScope.GLOBAL,
    'system.': PermissionScope.SYSTEM,
    'business.': PermissionScope.BUSINESS,
    'cross.': PermissionScope.CROSS,
}

# Bypass markers
BUSINESS_OWNER = 'business.owner'
SYSTEM_ADMIN = 'system.admin'
CROSS_TENANT_ACCESS = 'cross.tenant.access'

BYPASS_MARKERS = frozenset({BUSINESS_OWNER, SYSTEM_ADMIN, CROSS_TENANT_ACCESS})

# Categories that make up the default tenant-administrator permission set
ADMIN_CATEGORIES = frozenset({'users', 'roles', 'tenant', 'dashboard', 'auth', 'reports', 'audit'})


def is_valid_permission(value) -> bool:
    return isinstance(value, str) and bool(PERMISSION_PATTERN.match(value))


def scope_of(permission: str) -> PermissionScope:
    """Classify a permission string by its prefix."""
    for prefix, scope in SCOPE_PREFIXES.items():
        if permission.startswith(prefix):
            return scope
    return PermissionScope.TENANT


def hierarchy_allows(held: Iterable[str], permission: str) -> bool:
    """
    Decide whether ``held`` grants ``permission``.

    Rules, in order:
    1. business.owner grants everything.
    2. system.admin grants tenant-scoped, system.* and global.* permissions.
    3. cross.tenant.access grants global.* permissions.
    4. Otherwise the permission must be held literally.

    A bypass never grants a higher marker: system.admin does not imply
    business.owner, and neither marker is granted by cross.tenant.access.
    """
    if not isinstance(held, (set, frozenset)):
        held = set(held)

    if BUSINESS_OWNER in held:
        return True

    scope = scope_of(permission)

    if SYSTEM_ADMIN in held and scope in (PermissionScope.TENANT, PermissionScope.SYSTEM, PermissionScope.GLOBAL):
        return True

    if CROSS_TENANT_ACCESS in held and scope is PermissionScope.GLOBAL:
        return True

    return permission in held


MARKER_RANK = {CROSS_TENANT_ACCESS: 1, SYSTEM_ADMIN: 2, BUSINESS_OWNER: 3}


def can_grant(held: Iterable[str], permission: str) -> bool:
    """
    Decide whether a holder of ``held`` may grant or revoke ``permission``.

    A bypass marker needs an equal or higher marker, so business.owner is
    handed out only by a business owner. Any other value must itself be
    allowed to the granter by ``hierarchy_allows``.
    """
    if not isinstance(held, (set, frozenset)):
        held = set(held)

    rank = MARKER_RANK.get(permission)
    if rank is not None:
        return any(MARKER_RANK.get(value, 0) >= rank for value in held)
    return hierarchy_allows(held, permission)


def markers_allow(held: Iterable[str], permissions: Iterable[str]) -> bool:
    """
    True when the bypass markers in ``held`` alone cover one of ``permissions``.

    Used to decide whether a marker lets a caller act on a resource owned
    by another tenant for a given requirement.
    """
    markers = BYPASS_MARKERS.intersection(held)
    if not markers:
        return False
    return any(hierarchy_allows(markers, permission) for permission in permissions)


@dataclass(frozen=True)
class ClaimDefinition:
    """Plain description of a catalog entry."""

    claim_value: str
    display_name: str
    category: str
    description: Optional[str] = None
    is_tenant_scoped: bool = True
    is_system_permission: bool = False

    @classmethod
    def from_model(cls, claim: MasterClaim) -> 'ClaimDefinition':
        return cls(
            claim_value=claim.claim_value,
            display_name=claim.display_name,
            category=claim.category,
            description=claim.description,
            is_tenant_scoped=claim.is_tenant_scoped,
            is_system_permission=claim.is_system_permission,
        )


def _tenant(value, name, category, description):
    return ClaimDefinition(value, name, category, description)


def _platform(value, name, category, description):
    return ClaimDefinition(value, name, category, description, is_tenant_scoped=False, is_system_permission=True)


DEFAULT_MASTER_CLAIMS: List[ClaimDefinition] = [
    # Users
    _tenant('users.view', 'View Users', 'users', 'View users in the tenant'),
    _tenant('users.create', 'Create Users', 'users', 'Create users in the tenant'),
    _tenant('users.edit', 'Edit Users', 'users', 'Edit users in the tenant'),
    _tenant('users.delete', 'Delete Users', 'users', 'Remove users from the tenant'),
    _tenant('users.invite', 'Invite Users', 'users', 'Invite users to join the tenant'),
    _tenant('users.manage.roles', 'Manage User Roles', 'users', 'Assign roles and direct permissions to users'),

    # Roles
    _tenant('roles.view', 'View Roles', 'roles', 'View roles and their permissions'),
    _tenant('roles.create', 'Create Roles', 'roles', 'Create roles'),
    _tenant('roles.edit', 'Edit Roles', 'roles', 'Edit roles'),
    _tenant('roles.delete', 'Delete Roles', 'roles', 'Delete roles'),
    _tenant('roles.manage.permissions', 'Manage Role Permissions', 'roles', 'Assign and remove role permissions'),

    # Tenant settings
    _tenant('tenant.settings.view', 'View Tenant Settings', 'tenant', 'View tenant settings'),
    _tenant('tenant.settings.edit', 'Edit Tenant Settings', 'tenant', 'Edit tenant settings'),

    # Dashboard and reports
    _tenant('dashboard.view', 'View Dashboard', 'dashboard', 'Access the tenant dashboard'),
    _tenant('reports.view', 'View Reports', 'reports', 'View reports'),
    _tenant('reports.export', 'Export Reports', 'reports', 'Export reports'),

    # Authentication / authorization configuration
    _tenant('authentication.view', 'View Authentication Settings', 'auth', 'View authentication configuration'),
    _tenant('authentication.edit', 'Edit Authentication Settings', 'auth', 'Edit authentication configuration'),
    _tenant('authorization.view', 'View Authorization Settings', 'auth', 'View authorization configuration and check other users'),
    _tenant('authorization.edit', 'Edit Authorization Settings', 'auth', 'Edit authorization configuration'),

    # Audit
    _tenant('audit.view', 'View Audit Trail', 'audit', 'View the audit trail'),

    # Global
    _platform('global.tenants.view', 'View All Tenants', 'global', 'View every tenant'),
    _platform('global.tenants.create', 'Create Tenants', 'global', 'Create tenants'),
    _platform('global.tenants.edit', 'Edit Any Tenant', 'global', 'Edit any tenant'),
    _platform('global.tenants.delete', 'Delete Tenants', 'global', 'Delete tenants'),
    _platform('global.users.view', 'View All Users', 'global', 'View users across tenants'),
    _platform('global.users.create', 'Create Global Users', 'global', 'Create users across tenants'),
    _platform('global.users.edit', 'Edit Global Users', 'global', 'Edit users across tenants'),
    _platform('global.users.delete', 'Delete Global Users', 'global', 'Delete users across tenants'),
    _platform('global.roles.view', 'View All Roles', 'global', 'View roles across tenants'),
    _platform('global.roles.create', 'Create Global Roles', 'global', 'Create roles in any tenant'),
    _platform('global.roles.edit', 'Edit Global Roles', 'global', 'Edit roles in any tenant'),
    _platform('global.roles.delete', 'Delete Global Roles', 'global', 'Delete roles in any tenant'),

    # System
    _platform(SYSTEM_ADMIN, 'System Administrator', 'system', 'Full platform administration'),
    _platform('system.dashboard.view', 'View System Dashboard', 'system', 'Access the platform dashboard'),
    _platform('system.logs.view', 'View System Logs', 'system', 'Read platform logs'),
    _platform('system.configuration.edit', 'Edit System Configuration', 'system', 'Change platform configuration'),

    # Bypass markers
    _platform(BUSINESS_OWNER, 'Business Owner', 'business', 'Unconditional access to everything'),
    _platform(CROSS_TENANT_ACCESS, 'Cross-Tenant Access', 'system', 'Access global resources across tenant boundaries'),
]


@dataclass
class SyncResult:
    created: List[str]
    updated: List[str]
    removed: List[str]


class ClaimCatalog:
    """
    Registry of master claims backed by the MasterClaim table.
    """

    def all(self):
        return MasterClaim.objects.all()

    def tenant_scoped(self):
        return MasterClaim.objects.filter(is_tenant_scoped=True)

    def get(self, claim_value: str) -> MasterClaim:
        with translate_database_errors('catalog.get'):
            claim = MasterClaim.objects.by_value(claim_value)
        if claim is None:
            raise NotFoundError(f"Permission '{claim_value}' does not exist", {'permission': claim_value})
        return claim

    def exists(self, claim_value: str) -> bool:
        with translate_database_errors('catalog.exists'):
            return MasterClaim.objects.filter(claim_value=claim_value).exists()

    def resolve(self, claim_values: Iterable[str]) -> Dict[str, MasterClaim]:
        """
        Map permission strings to catalog rows.

        Raises ValidationError naming every malformed or unknown value.
        """
        values = list(dict.fromkeys(claim_values))

        malformed = [value for value in values if not is_valid_permission(value)]
        if malformed:
            raise ValidationError('Malformed permission strings', {'malformed': malformed})

        with translate_database_errors('catalog.resolve'):
            found = {claim.claim_value: claim for claim in MasterClaim.objects.for_values(values)}

        unknown = [value for value in values if value not in found]
        if unknown:
            raise ValidationError('Unknown permissions', {'unknown': unknown})

        return found

    def default_admin_claims(self) -> List[str]:
        """
        Permission strings granted to a freshly provisioned tenant administrator:
        tenant-scoped entries in the admin categories, never global.* or system.*.
        """
        with translate_database_errors('catalog.default_admin_claims'):
            values = MasterClaim.objects.filter(
                is_tenant_scoped=True,
                category__in=ADMIN_CATEGORIES,
            ).values_list('claim_value', flat=True)
            return sorted(
                value for value in values
                if scope_of(value) is PermissionScope.TENANT
            )

    def register(self, definition: ClaimDefinition) -> MasterClaim:
        """Add one entry to the catalog."""
        self._validate(definition)
        with translate_database_errors('catalog.register'):
            try:
                claim = UnitOfWork().with_transaction(
                    lambda tx: MasterClaim.objects.create(**definition.__dict__)
                )
            except IntegrityError:
                raise ConflictError(
                    f"Permission '{definition.claim_value}' already exists",
                    {'permission': definition.claim_value}
                )

        logger.info(f"Registered permission {claim.claim_value}", extra={'category': claim.category})
        return claim

    EDITABLE_FIELDS = ('display_name', 'description', 'category')

    def update(self, claim_value: str, **changes) -> MasterClaim:
        """
        Change the label, description or category of an entry.

        The permission string and its scope flags are fixed once registered.
        """
        unknown = sorted(set(changes) - set(self.EDITABLE_FIELDS))
        if unknown:
            raise ValidationError('These fields cannot be changed', {'fields': unknown})
        for field in ('display_name', 'category'):
            if field in changes and not (changes[field] or '').strip():
                raise ValidationError(f"{field} cannot be empty", {'field': field})

        claim = self.get(claim_value)
        for attr, value in changes.items():
            setattr(claim, attr, value)

        with translate_database_errors('catalog.update'):
            UnitOfWork().with_transaction(lambda tx: claim.save())

        logger.info(f"Updated permission {claim_value}: {sorted(changes)}")
        return claim

    def delete(self, claim_value: str) -> int:
        """
        Delete an entry together with every role and direct grant of it.

        Bypass markers cannot be deleted. Returns the number of grants removed.
        """
        if claim_value in BYPASS_MARKERS:
            raise ValidationError(
                f"Built-in permission '{claim_value}' cannot be deleted",
                {'permission': claim_value}
            )
        claim = self.get(claim_value)

        def apply(tx):
            grants = claim.role_claims.count() + claim.user_claims.count()
            claim.delete()
            return grants

        with translate_database_errors('catalog.delete'):
            grants = UnitOfWork().with_transaction(apply)

        logger.warning(f"Deleted permission {claim_value}", extra={'grants_removed': grants})
        return grants

    def sync(self, definitions: Iterable[ClaimDefinition] = None, prune: bool = False) -> SyncResult:
        """
        Make the catalog match ``definitions`` (defaults to DEFAULT_MASTER_CLAIMS).

        Missing entries are created, changed metadata is updated; with
        ``prune`` entries not in ``definitions`` are deleted together with
        all of their grants.
        """
        definitions = list(DEFAULT_MASTER_CLAIMS if definitions is None else definitions)
        for definition in definitions:
            self._validate(definition)

        def apply(tx):
            result = SyncResult(created=[], updated=[], removed=[])
            existing = {claim.claim_value: claim for claim in MasterClaim.objects.all()}

            for definition in definitions:
                claim = existing.get(definition.claim_value)
                if claim is None:
                    MasterClaim.objects.create(**definition.__dict__)
                    result.created.append(definition.claim_value)
                elif ClaimDefinition.from_model(claim) != definition:
                    for attr, value in definition.__dict__.items():
                        setattr(claim, attr, value)
                    claim.save()
                    result.updated.append(definition.claim_value)

            if prune:
                wanted = {definition.claim_value for definition in definitions}
                stale = [value for value in existing if value not in wanted]
                MasterClaim.objects.filter(claim_value__in=stale).delete()
                result.removed.extend(stale)

            return result

        with translate_database_errors('catalog.sync'):
            result = UnitOfWork().with_transaction(apply)

        logger.info(
            "Claim catalog synchronized",
            extra={
                'created': len(result.created),
                'updated': len(result.updated),
                'removed': len(result.removed),
            }
        )
        return result

    def _validate(self, definition: ClaimDefinition):
        if not is_valid_permission(definition.claim_value):
            raise ValidationError(
                f"Malformed permission string '{definition.claim_value}'",
                {'permission': definition.claim_value}
            )
        if definition.is_tenant_scoped and scope_of(definition.claim_value) is not PermissionScope.TENANT:
            raise ValidationError(
                f"Prefixed permission '{definition.claim_value}' cannot be tenant-scoped",
                {'permission': definition.claim_value}
            )
