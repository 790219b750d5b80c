"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (login, invitation acceptance)
- Memberships (create, invite)
- Roles, role templates and role permissions
- Permission catalog, checks and direct grants
"""
from rest_framework import serializers

from apps.rbac.catalog import PermissionScope, is_valid_permission, scope_of
from apps.rbac.models import MasterClaim, Role, User, UserTenant


# ===== AUTHENTICATION SERIALIZERS =====

class LoginSerializer(serializers.Serializer):
    """Serializer for user login into one tenant."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    tenant_id = serializers.UUIDField(required=True)


class AcceptInvitationSerializer(LoginSerializer):
    """Credentials plus the tenant whose pending invitation is accepted."""


class UserSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(source='get_full_name', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'full_name', 'is_email_confirmed', 'last_login_at']
        read_only_fields = fields


class LoginResponseSerializer(serializers.Serializer):
    token = serializers.CharField()
    tenant_id = serializers.UUIDField()
    user = UserSerializer()
    permissions = serializers.ListField(child=serializers.CharField())


class CurrentUserSerializer(serializers.Serializer):
    """The caller, the tenant of the token and what they hold there."""

    user = UserSerializer()
    tenant_id = serializers.UUIDField()
    roles = serializers.ListField(child=serializers.CharField())
    permissions = serializers.ListField(child=serializers.CharField())


# ===== MEMBERSHIP SERIALIZERS =====

class MembershipSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)
    status = serializers.CharField(read_only=True)

    class Meta:
        model = UserTenant
        fields = ['id', 'user', 'tenant_id', 'status', 'is_active', 'joined_at', 'left_at', 'invited_by_id']
        read_only_fields = fields


class InviteMemberSerializer(serializers.Serializer):
    email = serializers.EmailField(required=True)


class CreateMemberSerializer(serializers.Serializer):
    email = serializers.EmailField(required=True)
    password = serializers.CharField(required=True, write_only=True, min_length=8, style={'input_type': 'password'})
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    role_id = serializers.UUIDField(required=False, allow_null=True)


# ===== PERMISSION SERIALIZERS =====

class PermissionListField(serializers.ListField):
    """List of permission strings, grammar-checked and de-duplicated."""

    child = serializers.CharField(max_length=150)

    def to_internal_value(self, data):
        values = super().to_internal_value(data)
        malformed = [value for value in values if not is_valid_permission(value)]
        if malformed:
            raise serializers.ValidationError(f"Malformed permission strings: {', '.join(malformed)}")
        return list(dict.fromkeys(values))


class MasterClaimSerializer(serializers.ModelSerializer):
    class Meta:
        model = MasterClaim
        fields = [
            'claim_value', 'display_name', 'description', 'category',
            'is_tenant_scoped', 'is_system_permission',
        ]
        read_only_fields = fields


class MasterClaimCreateSerializer(serializers.Serializer):
    """New catalog entry. Prefixed values are never tenant-scoped."""

    claim_value = serializers.CharField(max_length=150)
    display_name = serializers.CharField(max_length=255)
    category = serializers.CharField(max_length=50)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    is_tenant_scoped = serializers.BooleanField(required=False)
    is_system_permission = serializers.BooleanField(required=False, default=False)

    def validate_claim_value(self, value):
        if not is_valid_permission(value):
            raise serializers.ValidationError("Malformed permission string.")
        return value

    def validate(self, attrs):
        # Scope follows the prefix unless given explicitly
        attrs.setdefault('is_tenant_scoped', scope_of(attrs['claim_value']) is PermissionScope.TENANT)
        return attrs


class MasterClaimUpdateSerializer(serializers.Serializer):
    display_name = serializers.CharField(required=False, max_length=255)
    category = serializers.CharField(required=False, max_length=50)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class PermissionsPayloadSerializer(serializers.Serializer):
    permissions = PermissionListField(allow_empty=False)


class ReplacePermissionsSerializer(serializers.Serializer):
    """PUT payload; an empty list clears the role."""
    permissions = PermissionListField(allow_empty=True)


class PermissionCheckSerializer(serializers.Serializer):
    permissions = PermissionListField(allow_empty=True)
    user_id = serializers.UUIDField(required=False, allow_null=True)


class PermissionCheckResultSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    has_all = serializers.BooleanField()
    has_any = serializers.BooleanField()
    granted = serializers.ListField(child=serializers.CharField())
    missing = serializers.ListField(child=serializers.CharField())


class EffectivePermissionSerializer(serializers.Serializer):
    value = serializers.CharField()
    source = serializers.CharField()


# ===== ROLE SERIALIZERS =====

class RoleSerializer(serializers.ModelSerializer):
    permission_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = ['id', 'tenant_id', 'name', 'description', 'permission_count', 'created_at', 'updated_at']
        read_only_fields = fields

    def get_permission_count(self, obj):
        return obj.role_claims.count()


class RoleCreateSerializer(serializers.Serializer):
    name = serializers.CharField(required=True, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    permissions = PermissionListField(required=False, allow_empty=True)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Role name cannot be empty.")
        return value.strip()


class RoleUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class RoleUserAssignSerializer(serializers.Serializer):
    user_id = serializers.UUIDField(required=True)


class RoleTemplateSerializer(serializers.Serializer):
    type = serializers.CharField(source='type.value')
    name = serializers.CharField()
    description = serializers.CharField()
    permissions = serializers.ListField(child=serializers.CharField())
    permission_count = serializers.IntegerField()


class RoleFromTemplateSerializer(serializers.Serializer):
    role_name = serializers.CharField(required=True, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
