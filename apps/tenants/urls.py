"""
Tenant API URLs.
"""
from django.urls import path

from apps.tenants.views import (
    CurrentTenantView, ProvisionTenantView, TenantDetailView, TenantListView, TenantLookupView,
)

app_name = 'tenants'

urlpatterns = [
    path('tenants', TenantListView.as_view(), name='tenant-list'),
    path('tenants/provision', ProvisionTenantView.as_view(), name='tenant-provision'),
    path('tenants/current', CurrentTenantView.as_view(), name='tenant-current'),
    path('tenants/by-slug/<slug:slug>', TenantLookupView.as_view(), name='tenant-lookup'),
    path('tenants/<uuid:tenant_id>', TenantDetailView.as_view(), name='tenant-detail'),
]
