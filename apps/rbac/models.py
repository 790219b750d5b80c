"""
RBAC models for multi-tenant authorization.

Implements:
- Global User identity (can belong to many tenants)
- UserTenant membership with invite / active / removed states
- MasterClaim (catalog of every known permission string)
- Role (per-tenant named bundle of claims)
- RoleClaim, UserClaim, UserRole (assignments)
"""
import logging
import uuid
from django.core.exceptions import ValidationError
from django.db import models
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone
from apps.core.models import BaseModel

logger = logging.getLogger(__name__)


def generate_security_stamp():
    """Random stamp that changes whenever credentials change."""
    return uuid.uuid4().hex.upper()


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system.
    """

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def normalize_email(self, email):
        """
        Normalize the email address by lowercasing the domain part.
        """
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Global user identity - can belong to multiple tenants.

    Authentication happens at the User level, authorization at the
    membership level. Deleting a membership never deletes the User.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    first_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User first name"
    )
    last_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User last name"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    security_stamp = models.CharField(
        max_length=64,
        default=generate_security_stamp,
        help_text="Changes whenever credentials change"
    )
    is_email_confirmed = models.BooleanField(
        default=False,
        help_text="Whether email has been confirmed"
    )

    # Global lockout
    is_globally_locked = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether the account is locked across all tenants"
    )
    global_lockout_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the current lockout expires"
    )
    global_access_failed_count = models.PositiveIntegerField(
        default=0,
        help_text="Consecutive failed login attempts"
    )

    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    # Django auth compatibility
    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash for Django compatibility."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set user password (hashes automatically) and rotate the security stamp."""
        self.password_hash = make_password(raw_password)
        self.security_stamp = generate_security_stamp()

    def get_full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def is_locked_out(self, now=None):
        """Whether a lockout is in force at ``now``."""
        if not self.is_globally_locked:
            return False
        now = now or timezone.now()
        return self.global_lockout_end is None or self.global_lockout_end > now

    @property
    def is_active(self):
        return not self.is_locked_out()

    @property
    def is_authenticated(self):
        """Always True for User instances (Django compatibility)."""
        return True

    @property
    def is_anonymous(self):
        """Always False for User instances (Django compatibility)."""
        return False

    def natural_key(self):
        return (self.email,)


class UserTenantManager(models.Manager):
    """Manager for membership queries."""

    def get_membership(self, tenant, user):
        """Get the active membership for a user in a tenant."""
        return self.filter(tenant=tenant, user=user, is_active=True).first()

    def is_active_member(self, user_id, tenant_id):
        return self.filter(user_id=user_id, tenant_id=tenant_id, is_active=True).exists()

    def for_tenant(self, tenant):
        """Get all active memberships for a tenant."""
        return self.filter(tenant=tenant, is_active=True)

    def for_user(self, user):
        """Get all active memberships for a user."""
        return self.filter(user=user, is_active=True)

    def pending_invites(self, tenant):
        """Invited but not yet accepted."""
        return self.filter(tenant=tenant, is_active=False, left_at__isnull=True)


class UserTenant(BaseModel):
    """
    A user's membership in one tenant.

    At most one row exists per (user, tenant). ``is_active=False`` means
    either a pending invitation (``left_at`` unset) or a removed member
    (``left_at`` set).
    """

    STATUS_ACTIVE = 'active'
    STATUS_PENDING = 'pending'
    STATUS_REMOVED = 'removed'

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='tenant_memberships',
        help_text="Member"
    )
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='memberships',
        help_text="Tenant this membership belongs to"
    )
    is_active = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether membership is currently active"
    )
    joined_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the membership became active"
    )
    left_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the member was removed"
    )
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invitations_sent',
        help_text="User who sent the invitation"
    )

    objects = UserTenantManager()

    class Meta:
        db_table = 'user_tenants'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['user', 'tenant'], name='uniq_user_tenant'),
        ]
        indexes = [
            models.Index(fields=['tenant', 'is_active'], name='user_tenant_tenant_active_idx'),
            models.Index(fields=['user', 'is_active'], name='user_tenant_user_active_idx'),
        ]

    def __str__(self):
        return f"{self.user_id} @ {self.tenant_id} ({self.status})"

    @property
    def status(self):
        if self.is_active:
            return self.STATUS_ACTIVE
        if self.left_at is None:
            return self.STATUS_PENDING
        return self.STATUS_REMOVED


class MasterClaimManager(models.Manager):
    """Manager for catalog queries."""

    def by_value(self, claim_value):
        return self.filter(claim_value=claim_value).first()

    def by_category(self, category):
        return self.filter(category=category)

    def for_values(self, claim_values):
        return self.filter(claim_value__in=list(claim_values))


class MasterClaim(BaseModel):
    """
    Catalog definition of a permission string.

    Every RoleClaim and UserClaim points at one of these rows; deleting a
    catalog entry removes all of its grants.
    """

    CLAIM_TYPE_PERMISSION = 'permission'

    claim_type = models.CharField(
        max_length=50,
        default=CLAIM_TYPE_PERMISSION,
        help_text="Claim type; always 'permission' today"
    )
    claim_value = models.CharField(
        max_length=150,
        unique=True,
        db_index=True,
        help_text="Permission string (e.g., 'users.view', 'global.tenants.delete')"
    )
    display_name = models.CharField(
        max_length=255,
        help_text="Human-readable label"
    )
    description = models.TextField(
        null=True,
        blank=True,
        help_text="What this permission grants"
    )
    category = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Grouping (e.g., 'users', 'roles', 'system')"
    )
    is_tenant_scoped = models.BooleanField(
        default=True,
        help_text="Whether the permission applies inside a single tenant"
    )
    is_system_permission = models.BooleanField(
        default=False,
        help_text="Whether only system administrators may grant it"
    )

    objects = MasterClaimManager()

    class Meta:
        db_table = 'master_claims'
        ordering = ['category', 'claim_value']

    def __str__(self):
        return self.claim_value


class RoleManager(models.Manager):
    """Manager for Role queries with tenant scoping."""

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def by_name(self, tenant, name):
        """Find role by tenant and name."""
        return self.filter(tenant=tenant, name=name).first()


class Role(BaseModel):
    """
    Per-tenant named bundle of claims.

    Deleting a role cascades to its RoleClaims and UserRoles.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='roles',
        help_text="Tenant this role belongs to"
    )
    name = models.CharField(
        max_length=100,
        help_text="Role name, unique within the tenant"
    )
    description = models.TextField(
        null=True,
        blank=True,
        help_text="Role description"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['tenant', 'name']
        constraints = [
            models.UniqueConstraint(fields=['tenant', 'name'], name='uniq_role_name_per_tenant'),
        ]

    def __str__(self):
        return f"{self.name} ({self.tenant_id})"


class RoleClaim(BaseModel):
    """Grants a catalog permission to every member of a role."""

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_claims',
    )
    master_claim = models.ForeignKey(
        MasterClaim,
        on_delete=models.CASCADE,
        related_name='role_claims',
    )

    class Meta:
        db_table = 'role_claims'
        ordering = ['role', 'master_claim']
        constraints = [
            models.UniqueConstraint(fields=['role', 'master_claim'], name='uniq_role_claim'),
        ]

    def __str__(self):
        return f"{self.role_id} -> {self.master_claim_id}"


class UserClaim(BaseModel):
    """Grants a catalog permission directly to a user inside one tenant."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='direct_claims',
    )
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='user_claims',
    )
    master_claim = models.ForeignKey(
        MasterClaim,
        on_delete=models.CASCADE,
        related_name='user_claims',
    )

    class Meta:
        db_table = 'user_claims'
        ordering = ['user', 'tenant', 'master_claim']
        constraints = [
            models.UniqueConstraint(fields=['user', 'tenant', 'master_claim'], name='uniq_user_claim'),
        ]
        indexes = [
            models.Index(fields=['user', 'tenant'], name='user_claim_user_tenant_idx'),
        ]

    def __str__(self):
        return f"{self.user_id} @ {self.tenant_id} -> {self.master_claim_id}"


class UserRole(BaseModel):
    """
    Assigns a role to a user within a tenant.

    ``tenant`` always equals ``role.tenant``; it is stored so that
    membership cleanup and permission resolution filter on one column.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_roles',
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='user_roles',
    )
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='user_roles',
    )

    class Meta:
        db_table = 'user_roles'
        ordering = ['user', 'role']
        constraints = [
            models.UniqueConstraint(fields=['user', 'role'], name='uniq_user_role'),
        ]
        indexes = [
            models.Index(fields=['user', 'tenant'], name='user_role_user_tenant_idx'),
        ]

    def __str__(self):
        return f"{self.user_id} @ {self.tenant_id} as {self.role_id}"

    def clean(self):
        """Role must belong to the same tenant as the assignment."""
        if self.role_id and self.tenant_id and self.role.tenant_id != self.tenant_id:
            raise ValidationError("Role must belong to the same tenant as the assignment")

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)
