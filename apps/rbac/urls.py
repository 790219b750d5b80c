"""
RBAC API URLs.

Provides endpoints for:
- Membership management (create, invite, accept, remove)
- Role management (CRUD, permissions, user assignments)
- Role templates
- Permission catalog (read, register, update, delete), checks and direct user grants
"""
from django.urls import path
from apps.rbac.views import (
    MembershipInviteView,
    MembershipListView,
    MembershipRemoveView,
    PermissionCatalogDetailView,
    PermissionCatalogView,
    PermissionCheckView,
    RoleDetailView,
    RoleFromTemplateView,
    RoleListView,
    RolePermissionsView,
    RoleTemplateListView,
    RoleUserAssignView,
    RoleUserRemoveView,
    UserPermissionsView,
)
from apps.rbac.views_auth import AcceptInvitationView

app_name = 'rbac'

urlpatterns = [
    # Membership endpoints
    path('memberships', MembershipListView.as_view(), name='membership-list'),
    path('memberships/invite', MembershipInviteView.as_view(), name='membership-invite'),
    path('memberships/accept', AcceptInvitationView.as_view(), name='membership-accept'),
    path('memberships/<uuid:user_id>', MembershipRemoveView.as_view(), name='membership-remove'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/permissions', RolePermissionsView.as_view(), name='role-permissions'),
    path('roles/<uuid:role_id>/users', RoleUserAssignView.as_view(), name='role-user-assign'),
    path('roles/<uuid:role_id>/users/<uuid:user_id>', RoleUserRemoveView.as_view(), name='role-user-remove'),

    # Role templates
    path('role-templates', RoleTemplateListView.as_view(), name='role-template-list'),
    path('role-templates/<str:template_type>/roles', RoleFromTemplateView.as_view(), name='role-from-template'),

    # Permission endpoints
    path('permissions/catalog', PermissionCatalogView.as_view(), name='permission-catalog'),
    path('permissions/catalog/<str:claim_value>', PermissionCatalogDetailView.as_view(), name='permission-detail'),
    path('permissions/check', PermissionCheckView.as_view(), name='permission-check'),
    path('users/<uuid:user_id>/permissions', UserPermissionsView.as_view(), name='user-permissions'),
]
