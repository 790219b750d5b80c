"""
RBAC and Authentication services.

Implements:
- PermissionResolver: effective permissions and yes/no/any/all checks with
  the business.owner > system.admin > cross.tenant.access hierarchy
- RoleService: role CRUD and user-role assignment
- MembershipService: create / invite / accept / remove tenant members
- AuthService: credential checks with lockout, JWT issuance and verification
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import FrozenSet, Iterable, List, Optional, Set, Tuple

import jwt
from django.conf import settings
from django.contrib.auth.hashers import make_password
from django.db import IntegrityError
from django.utils import timezone

from apps.core.context import AuthContext, VerifiedIdentity
from apps.core.exceptions import (
    AccountLockedError, AuthenticationError, ConflictError, ForbiddenError,
    NotFoundError, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.core.permissions import ensure_can_grant
from apps.core.transactions import CancellationToken, UnitOfWork, translate_database_errors
from apps.rbac.catalog import BUSINESS_OWNER, ClaimCatalog, hierarchy_allows
from apps.rbac.models import Role, User, UserClaim, UserRole, UserTenant, generate_security_stamp
from apps.rbac.stores import ClaimStore
from apps.tenants.models import Tenant

logger = logging.getLogger(__name__)


SOURCE_ROLE = 'role'
SOURCE_DIRECT = 'direct'


@dataclass(frozen=True)
class EffectivePermission:
    value: str
    source: str


@dataclass(frozen=True)
class PermissionCheckResult:
    """Diagnostic answer for a list of required permissions."""

    granted: Tuple[str, ...]
    missing: Tuple[str, ...]

    @property
    def has_all(self) -> bool:
        return not self.missing

    @property
    def has_any(self) -> bool:
        return bool(self.granted)


class PermissionResolver:
    """
    Resolve what a user may do inside a tenant.

    The effective set is the union of the claims of every role assigned to
    the user in the tenant and the user's direct claims in the tenant.
    Bypass markers are collected across all tenants and checked first
    through ``hierarchy_allows``.

    Never raises for a denial; only store failures surface (as InternalError).
    """

    def __init__(self, store: Optional[ClaimStore] = None, catalog: Optional[ClaimCatalog] = None):
        self.catalog = catalog or ClaimCatalog()
        self.store = store or ClaimStore(catalog=self.catalog)

    def effective_permissions(self, user_id, tenant_id) -> Set[EffectivePermission]:
        """Role-derived and direct permissions, tagged with their source."""
        via_roles = self.store.claims_for_user_roles(user_id, tenant_id)
        direct = self.store.direct_claims(user_id, tenant_id)
        return (
            {EffectivePermission(value, SOURCE_ROLE) for value in via_roles}
            | {EffectivePermission(value, SOURCE_DIRECT) for value in direct}
        )

    def granted_values(self, user_id, tenant_id) -> FrozenSet[str]:
        """Effective permission strings plus bypass markers held anywhere."""
        return self.store.bypass_markers(user_id) | self._effective_values(user_id, tenant_id)

    def has_permission(self, user_id, tenant_id, permission: str) -> bool:
        return self.check(user_id, tenant_id, [permission]).has_all

    def has_any(self, user_id, tenant_id, permissions: Iterable[str]) -> bool:
        return self.check(user_id, tenant_id, permissions).has_any

    def has_all(self, user_id, tenant_id, permissions: Iterable[str]) -> bool:
        return self.check(user_id, tenant_id, permissions).has_all

    def check(self, user_id, tenant_id, permissions: Iterable[str]) -> PermissionCheckResult:
        """
        Split ``permissions`` into granted and missing, preserving order.

        An empty list is trivially satisfied for has_all and never for has_any.
        """
        required = list(dict.fromkeys(permissions))
        if not required:
            return PermissionCheckResult(granted=(), missing=())

        held = self.store.bypass_markers(user_id)
        if BUSINESS_OWNER not in held and not all(hierarchy_allows(held, p) for p in required):
            held = held | self._effective_values(user_id, tenant_id)

        granted = tuple(p for p in required if hierarchy_allows(held, p))
        missing = tuple(p for p in required if p not in granted)

        if missing:
            logger.debug(
                "Permission check incomplete",
                extra={
                    'user_id': str(user_id),
                    'tenant_id': str(tenant_id),
                    'missing': list(missing),
                }
            )
        return PermissionCheckResult(granted=granted, missing=missing)

    def build_context(self, user_id, tenant_id) -> AuthContext:
        return AuthContext(
            user_id=user_id,
            tenant_id=tenant_id,
            granted_permissions=self.granted_values(user_id, tenant_id),
        )

    def _effective_values(self, user_id, tenant_id) -> FrozenSet[str]:
        return frozenset(
            self.store.claims_for_user_roles(user_id, tenant_id)
            | self.store.direct_claims(user_id, tenant_id)
        )


def purge_tenant_grants(user_id, tenant_id) -> Tuple[int, int]:
    """Delete a user's direct claims and role assignments inside one tenant."""
    claims_deleted, _ = UserClaim.objects.filter(user_id=user_id, tenant_id=tenant_id).delete()
    roles_deleted, _ = UserRole.objects.filter(user_id=user_id, tenant_id=tenant_id).delete()
    return claims_deleted, roles_deleted


class RoleService:
    """
    Service for role operations: CRUD and user-role assignment.
    """

    @classmethod
    def list_roles(cls, tenant_id):
        return Role.objects.filter(tenant_id=tenant_id).order_by('name')

    @classmethod
    def get_role(cls, role_id) -> Role:
        with translate_database_errors('roles.get'):
            role = Role.objects.filter(id=role_id).first()
        if role is None:
            raise NotFoundError('Role not found', {'role_id': str(role_id)})
        return role

    @classmethod
    def create_role(cls, tenant_id, name: str, description: Optional[str] = None,
                    permissions: Optional[List[str]] = None,
                    cancellation: Optional[CancellationToken] = None,
                    granted_by: Optional[AuthContext] = None) -> Role:
        """
        Create a role, optionally with an initial permission list, atomically.

        When ``granted_by`` is given the caller must be allowed to grant
        every initial permission.
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError('Role name is required')
        if granted_by is not None and permissions:
            ensure_can_grant(granted_by, permissions)

        store = ClaimStore(cancellation=cancellation)

        def apply(tx):
            if not Tenant.objects.filter(id=tenant_id).exists():
                raise NotFoundError('Tenant not found', {'tenant_id': str(tenant_id)})
            role = Role.objects.create(tenant_id=tenant_id, name=name, description=description)
            if permissions:
                store.assign_to_role(role.id, permissions)
            return role

        with translate_database_errors('roles.create'):
            try:
                role = UnitOfWork(cancellation=cancellation).with_transaction(apply)
            except IntegrityError:
                raise ConflictError(f"Role '{name}' already exists in this tenant", {'name': name})

        logger.info(
            f"Created role '{name}'",
            extra={'tenant_id': str(tenant_id), 'role_id': str(role.id)}
        )
        return role

    @classmethod
    def update_role(cls, role: Role, name: Optional[str] = None, description: Optional[str] = None) -> Role:
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError('Role name cannot be empty')
            role.name = name
        if description is not None:
            role.description = description

        with translate_database_errors('roles.update'):
            try:
                UnitOfWork().with_transaction(lambda tx: role.save())
            except IntegrityError:
                raise ConflictError(f"Role '{role.name}' already exists in this tenant", {'name': role.name})
        return role

    @classmethod
    def delete_role(cls, role: Role, granted_by: Optional[AuthContext] = None):
        """Delete a role; its claims and assignments go with it."""
        if granted_by is not None:
            ensure_can_grant(granted_by, ClaimStore().claims_for_role(role.id))
        role_id = role.id
        with translate_database_errors('roles.delete'):
            UnitOfWork().with_transaction(lambda tx: role.delete())

        logger.info(
            f"Deleted role {role_id}",
            extra={'tenant_id': str(role.tenant_id), 'role_id': str(role_id)}
        )

    @classmethod
    def assign_user_role(cls, role: Role, user_id,
                         granted_by: Optional[AuthContext] = None) -> Tuple[UserRole, bool]:
        """
        Assign a role to a member of the role's tenant (idempotent).

        With ``granted_by`` the caller must be allowed to grant every
        permission the role carries. Returns (assignment, created).
        """
        if granted_by is not None:
            ensure_can_grant(granted_by, ClaimStore().claims_for_role(role.id))

        def apply(tx):
            if not UserTenant.objects.is_active_member(user_id, role.tenant_id):
                raise NotFoundError(
                    'User is not an active member of this tenant',
                    {'user_id': str(user_id), 'tenant_id': str(role.tenant_id)}
                )
            return UserRole.objects.get_or_create(
                user_id=user_id,
                role=role,
                defaults={'tenant_id': role.tenant_id},
            )

        with translate_database_errors('roles.assign_user'):
            user_role, created = UnitOfWork().with_transaction(apply)

        if created:
            logger.info(
                f"Assigned role {role.name} to user {user_id}",
                extra={'tenant_id': str(role.tenant_id), 'role_id': str(role.id)}
            )
        return user_role, created

    @classmethod
    def remove_user_role(cls, role: Role, user_id, granted_by: Optional[AuthContext] = None) -> bool:
        if granted_by is not None:
            ensure_can_grant(granted_by, ClaimStore().claims_for_role(role.id))
        with translate_database_errors('roles.remove_user'):
            deleted, _ = UserRole.objects.filter(user_id=user_id, role=role).delete()
        return deleted > 0

    @classmethod
    def roles_for_user(cls, user_id, tenant_id):
        return Role.objects.filter(user_roles__user_id=user_id, user_roles__tenant_id=tenant_id).distinct()


class MembershipService:
    """
    Service for tenant memberships.

    State per (user, tenant): pending (invited) -> active -> removed.
    A removed member may be invited again.
    """

    @classmethod
    def get_membership(cls, user_id, tenant_id) -> Optional[UserTenant]:
        return UserTenant.objects.filter(user_id=user_id, tenant_id=tenant_id).first()

    @classmethod
    def create_member(cls, tenant_id, email: str, password: str, first_name: str = '',
                      last_name: str = '', role_id=None,
                      granted_by: Optional[AuthContext] = None) -> UserTenant:
        """
        Create a new global user who is immediately an active member,
        optionally with a role, in one transaction.
        """
        email = User.objects.normalize_email(email)

        def apply(tx):
            if not Tenant.objects.filter(id=tenant_id).exists():
                raise NotFoundError('Tenant not found', {'tenant_id': str(tenant_id)})
            user = User.objects.create_user(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
            )
            membership = UserTenant.objects.create(
                user=user,
                tenant_id=tenant_id,
                is_active=True,
                joined_at=timezone.now(),
            )
            if role_id is not None:
                role = Role.objects.filter(id=role_id, tenant_id=tenant_id).first()
                if role is None:
                    raise NotFoundError('Role not found', {'role_id': str(role_id)})
                if granted_by is not None:
                    ensure_can_grant(granted_by, ClaimStore().claims_for_role(role.id))
                UserRole.objects.create(user=user, role=role, tenant_id=tenant_id)
            return membership

        with translate_database_errors('memberships.create_member'):
            try:
                membership = UnitOfWork().with_transaction(apply)
            except IntegrityError:
                raise ConflictError('A user with this email already exists', {'email': email})

        logger.info(
            f"Created member {membership.user_id}",
            extra={'tenant_id': str(tenant_id), 'user_id': str(membership.user_id)}
        )
        return membership

    @classmethod
    def invite(cls, tenant_id, email: str, invited_by_id=None) -> UserTenant:
        """
        Invite an existing user to the tenant.

        Raises NotFoundError for an unknown email and ConflictError when the
        user is already an active member. Inviting a pending user again is a
        no-op; inviting a removed user resets the membership to pending.
        """
        user = User.objects.by_email(email)
        if user is None:
            raise NotFoundError('User not found', {'email': email})

        def apply(tx):
            membership = UserTenant.objects.select_for_update().filter(user=user, tenant_id=tenant_id).first()
            if membership is None:
                return UserTenant.objects.create(
                    user=user,
                    tenant_id=tenant_id,
                    is_active=False,
                    invited_by_id=invited_by_id,
                )
            if membership.status == UserTenant.STATUS_ACTIVE:
                raise ConflictError(
                    'User is already a member of this tenant',
                    {'user_id': str(user.id)}
                )
            if membership.status == UserTenant.STATUS_REMOVED:
                membership.left_at = None
                membership.joined_at = None
                membership.invited_by_id = invited_by_id
                membership.save(update_fields=['left_at', 'joined_at', 'invited_by', 'updated_at'])
            return membership

        with translate_database_errors('memberships.invite'):
            membership = UnitOfWork().with_transaction(apply)

        logger.info(
            f"Invited user {user.id}",
            extra={'tenant_id': str(tenant_id), 'user_id': str(user.id)}
        )
        return membership

    @classmethod
    def accept(cls, user_id, tenant_id) -> UserTenant:
        """Activate a pending invitation. Accepting an active membership is a no-op."""
        def apply(tx):
            membership = UserTenant.objects.select_for_update().filter(
                user_id=user_id, tenant_id=tenant_id
            ).first()
            if membership is None or membership.status == UserTenant.STATUS_REMOVED:
                raise NotFoundError(
                    'No pending invitation for this tenant',
                    {'tenant_id': str(tenant_id)}
                )
            if membership.status == UserTenant.STATUS_PENDING:
                membership.is_active = True
                membership.joined_at = timezone.now()
                membership.save(update_fields=['is_active', 'joined_at', 'updated_at'])
            return membership

        with translate_database_errors('memberships.accept'):
            membership = UnitOfWork().with_transaction(apply)

        logger.info(
            f"User {user_id} joined tenant",
            extra={'tenant_id': str(tenant_id), 'user_id': str(user_id)}
        )
        return membership

    @classmethod
    def remove(cls, tenant_id, user_id, granted_by: Optional[AuthContext] = None) -> UserTenant:
        """
        Remove a member: mark the membership removed and delete the user's
        role assignments and direct claims in this tenant. The global user
        row is untouched.

        With ``granted_by`` the caller must be allowed to revoke everything
        the member holds in the tenant.
        """
        if granted_by is not None:
            store = ClaimStore()
            ensure_can_grant(
                granted_by,
                store.claims_for_user_roles(user_id, tenant_id) | store.direct_claims(user_id, tenant_id),
            )

        def apply(tx):
            membership = UserTenant.objects.select_for_update().filter(
                user_id=user_id, tenant_id=tenant_id
            ).first()
            if membership is None or membership.status == UserTenant.STATUS_REMOVED:
                raise NotFoundError(
                    'Membership not found',
                    {'user_id': str(user_id), 'tenant_id': str(tenant_id)}
                )
            membership.is_active = False
            membership.left_at = timezone.now()
            membership.save(update_fields=['is_active', 'left_at', 'updated_at'])
            purge_tenant_grants(user_id, tenant_id)
            return membership

        with translate_database_errors('memberships.remove'):
            membership = UnitOfWork().with_transaction(apply)

        logger.info(
            f"Removed user {user_id} from tenant",
            extra={'tenant_id': str(tenant_id), 'user_id': str(user_id)}
        )
        return membership


@dataclass
class LoginResult:
    user: User
    tenant_id: uuid.UUID
    token: str
    permissions: List[str] = field(default_factory=list)


class AuthService:
    """
    Service for authentication operations: credential checks with lockout,
    JWT issuance and verification.
    """

    @classmethod
    def authenticate(cls, email: str, password: str, ip_address: Optional[str] = None) -> User:
        """
        Verify credentials and maintain the failed-attempt counter.

        After AUTH_MAX_FAILED_ATTEMPTS consecutive failures the account is
        locked for AUTH_LOCKOUT_MINUTES.
        """
        user = User.objects.by_email(email or '')
        if user is None:
            SecurityLogger.log_failed_login(email, ip_address, reason='unknown_email')
            raise AuthenticationError('Invalid email or password')

        now = timezone.now()
        if user.is_locked_out(now):
            SecurityLogger.log_failed_login(email, ip_address, reason='locked')
            raise AccountLockedError(
                'Account is locked. Try again later.',
                {'lockout_end': user.global_lockout_end.isoformat() if user.global_lockout_end else None}
            )

        if user.is_globally_locked:
            # Lockout expired
            user.is_globally_locked = False
            user.global_lockout_end = None
            user.global_access_failed_count = 0

        if not user.check_password(password):
            cls._record_failure(user, now)
            SecurityLogger.log_failed_login(email, ip_address, reason='bad_password')
            if user.is_globally_locked:
                SecurityLogger.log_account_locked(user, ip_address)
                raise AccountLockedError(
                    'Too many failed attempts. Account is locked.',
                    {'lockout_end': user.global_lockout_end.isoformat()}
                )
            raise AuthenticationError('Invalid email or password')

        user.global_access_failed_count = 0
        user.is_globally_locked = False
        user.global_lockout_end = None
        user.last_login_at = now
        user.save(update_fields=[
            'global_access_failed_count', 'is_globally_locked',
            'global_lockout_end', 'last_login_at', 'updated_at',
        ])
        return user

    @classmethod
    def login(cls, email: str, password: str, tenant_id, ip_address: Optional[str] = None,
              resolver: Optional[PermissionResolver] = None) -> LoginResult:
        """Authenticate and issue a token bound to ``tenant_id``."""
        user = cls.authenticate(email, password, ip_address)

        if not UserTenant.objects.is_active_member(user.id, tenant_id):
            logger.warning(
                f"Login refused: user {user.id} is not an active member",
                extra={'tenant_id': str(tenant_id), 'user_id': str(user.id)}
            )
            raise ForbiddenError('You do not have access to this tenant')

        return cls.issue_session(user, tenant_id, resolver)

    @classmethod
    def issue_session(cls, user: User, tenant_id, resolver: Optional[PermissionResolver] = None) -> LoginResult:
        resolver = resolver or PermissionResolver()
        permissions = sorted(resolver.granted_values(user.id, tenant_id))
        token = cls.issue_token(user.id, tenant_id, permissions, security_stamp=user.security_stamp)

        logger.info(
            f"Issued token for user {user.id}",
            extra={'tenant_id': str(tenant_id), 'user_id': str(user.id), 'permission_count': len(permissions)}
        )
        return LoginResult(user=user, tenant_id=tenant_id, token=token, permissions=permissions)

    @classmethod
    def refresh(cls, user: User, tenant_id, resolver: Optional[PermissionResolver] = None) -> LoginResult:
        """
        Issue a fresh token for an already authenticated caller.

        Membership is checked again so a removed member cannot keep renewing
        a token for the tenant.
        """
        if not UserTenant.objects.is_active_member(user.id, tenant_id):
            resolver = resolver or PermissionResolver()
            if not resolver.store.bypass_markers(user.id):
                raise ForbiddenError('You do not have access to this tenant')
        return cls.issue_session(user, tenant_id, resolver)

    @classmethod
    def logout(cls, user: User, tenant_id=None):
        """
        Rotate the user's security stamp, revoking every token issued so far
        for every tenant.
        """
        user.security_stamp = generate_security_stamp()
        with translate_database_errors('auth.logout'):
            user.save(update_fields=['security_stamp', 'updated_at'])

        SecurityLogger.log_logout(user.id, tenant_id)
        logger.info(f"User {user.id} logged out", extra={'user_id': str(user.id)})

    @classmethod
    def issue_token(cls, user_id, tenant_id, claims: Iterable[str], security_stamp: Optional[str] = None) -> str:
        """
        Encode a JWT carrying the user, the tenant, the permission claims and
        the user's security stamp.
        """
        now = datetime.now(dt_timezone.utc)
        payload = {
            'sub': str(user_id),
            'jti': uuid.uuid4().hex,
            'iat': now,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'tenant_id': str(tenant_id),
            'permissions': list(claims),
        }
        if security_stamp is not None:
            payload['stamp'] = security_stamp
        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def verify_token(cls, token: str) -> VerifiedIdentity:
        """
        Decode and verify a JWT.

        The tenant claim is passed through untouched; TenantIsolationGuard
        validates it.
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')],
                options={'require': ['sub', 'exp']},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError('Token has expired')
        except jwt.InvalidTokenError:
            raise AuthenticationError('Invalid token')

        try:
            user_id = uuid.UUID(str(payload['sub']))
        except ValueError:
            raise AuthenticationError('Invalid token subject')

        permissions = payload.get('permissions') or []
        return VerifiedIdentity(
            user_id=user_id,
            tenant_claim=payload.get('tenant_id'),
            permission_claims=tuple(permissions) if isinstance(permissions, list) else (),
            security_stamp=payload.get('stamp'),
        )

    @classmethod
    def _record_failure(cls, user: User, now):
        max_attempts = getattr(settings, 'AUTH_MAX_FAILED_ATTEMPTS', 5)
        lockout_minutes = getattr(settings, 'AUTH_LOCKOUT_MINUTES', 30)

        user.global_access_failed_count += 1
        if user.global_access_failed_count >= max_attempts:
            user.is_globally_locked = True
            user.global_lockout_end = now + timedelta(minutes=lockout_minutes)

        user.save(update_fields=[
            'global_access_failed_count', 'is_globally_locked', 'global_lockout_end', 'updated_at',
        ])

    @classmethod
    def hash_password(cls, raw_password: str) -> str:
        return make_password(raw_password)
