"""
Serializers for tenant API endpoints.
"""
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from apps.tenants.models import Tenant


class TenantSerializer(serializers.ModelSerializer):
    """Serializer for tenant settings."""

    class Meta:
        model = Tenant
        fields = ['id', 'name', 'slug', 'logo_url', 'contact_email', 'created_at', 'updated_at']
        read_only_fields = ['id', 'slug', 'created_at', 'updated_at']


class TenantUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, max_length=255)
    logo_url = serializers.URLField(required=False, allow_null=True, allow_blank=True, max_length=500)
    contact_email = serializers.EmailField(required=False, allow_null=True, allow_blank=True)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Tenant name cannot be empty.")
        return value.strip()


class ProvisionTenantSerializer(serializers.Serializer):
    """Public registration: a new tenant plus its first administrator."""

    tenant_name = serializers.CharField(required=True, max_length=255)
    slug = serializers.SlugField(required=True, max_length=100)
    contact_email = serializers.EmailField(required=False, allow_null=True)
    admin_email = serializers.EmailField(required=True)
    admin_first_name = serializers.CharField(required=True, max_length=100)
    admin_last_name = serializers.CharField(required=True, max_length=100)
    admin_password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_tenant_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Tenant name cannot be empty.")
        return value.strip()

    def validate_admin_password(self, value):
        validate_password(value)
        return value


class ProvisioningResultSerializer(serializers.Serializer):
    tenant_id = serializers.UUIDField()
    admin_user_id = serializers.UUIDField()
    admin_role_id = serializers.UUIDField()


class TenantLookupSerializer(serializers.ModelSerializer):
    """Public view of a tenant: enough to log in to it."""

    class Meta:
        model = Tenant
        fields = ['id', 'name', 'slug', 'logo_url']
        read_only_fields = fields
