"""
Tenant model.

A tenant is an isolated customer organization. Roles, memberships and
direct permission grants all hang off a tenant and are removed with it.
"""
from django.db import models
from apps.core.models import BaseModel


class TenantManager(models.Manager):
    """Manager for tenant lookups."""

    def by_slug(self, slug):
        """Find tenant by slug (case-sensitive exact match)."""
        return self.filter(slug=slug).first()

    def slug_taken(self, slug):
        return self.filter(slug=slug).exists()


class Tenant(BaseModel):
    """
    Tenant model representing an isolated customer organization.

    Created once by TenantProvisioner; settings are edited through
    TenantService; deleted only through the global-admin delete path.
    """

    name = models.CharField(
        max_length=255,
        help_text="Organization name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier, globally unique"
    )
    logo_url = models.URLField(
        max_length=500,
        null=True,
        blank=True,
        help_text="Logo image URL"
    )
    contact_email = models.EmailField(
        null=True,
        blank=True,
        help_text="Primary contact email"
    )

    objects = TenantManager()

    class Meta:
        db_table = 'tenants'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.slug})"
