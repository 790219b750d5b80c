"""
URL configuration for the tenant authorization service.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    
    # API v1
    path('v1/', include('apps.core.urls')),
    
    # Authentication endpoints
    path('v1/auth/', include('apps.rbac.urls_auth')),  # Login
    
    # Tenant provisioning and settings
    path('v1/', include('apps.tenants.urls')),
    
    # RBAC endpoints
    path('v1/', include('apps.rbac.urls')),  # Memberships, roles, templates, permissions
]
