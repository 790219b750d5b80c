"""
RBAC REST API views.

Implements endpoints for:
- Membership management (create, invite, remove)
- Role management (CRUD, permissions, user assignments)
- Role templates
- Permission catalog (read, register, update, delete), checks and direct user grants
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import NotFoundError
from apps.core.permissions import AnyOf, IsTenantAuthenticated, Single, enforce, ensure_can_grant, requires
from apps.rbac.catalog import SYSTEM_ADMIN, ClaimCatalog, ClaimDefinition
from apps.rbac.models import UserTenant
from apps.rbac.role_templates import RoleTemplateCatalog
from apps.rbac.serializers import (
    CreateMemberSerializer, EffectivePermissionSerializer, InviteMemberSerializer,
    MasterClaimCreateSerializer, MasterClaimSerializer, MasterClaimUpdateSerializer,
    MembershipSerializer, PermissionCheckResultSerializer,
    PermissionCheckSerializer, PermissionsPayloadSerializer, ReplacePermissionsSerializer,
    RoleCreateSerializer, RoleFromTemplateSerializer, RoleSerializer, RoleTemplateSerializer,
    RoleUpdateSerializer, RoleUserAssignSerializer,
)
from apps.rbac.services import MembershipService, PermissionResolver, RoleService
from apps.rbac.stores import ClaimStore


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


class TenantAPIView(APIView):
    """Base view for endpoints scoped to the caller's tenant."""

    permission_classes = [IsTenantAuthenticated]

    def get_role(self, request, role_id):
        role = RoleService.get_role(role_id)
        self.check_object_permissions(request, role)
        return role

    def get_member(self, request, user_id) -> UserTenant:
        membership = MembershipService.get_membership(user_id, request.auth.tenant_id)
        if membership is None or membership.status != UserTenant.STATUS_ACTIVE:
            raise NotFoundError('User is not a member of this tenant', {'user_id': str(user_id)})
        return membership


# ===== PERMISSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permission catalog',
        description='''
List every permission string known to the system, grouped by category.

**Required permission:** `roles.view`
        ''',
        responses={200: MasterClaimSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Register permission',
        description='''
Add a permission string to the catalog.

**Required permission:** `system.admin`
        ''',
        request=MasterClaimCreateSerializer,
        responses={201: MasterClaimSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    ),
)
class PermissionCatalogView(TenantAPIView):
    """
    GET/POST /v1/permissions/catalog
    """

    @requires(Single('roles.view'))
    def get(self, request):
        claims = ClaimCatalog().all().order_by('category', 'claim_value')

        category = request.query_params.get('category')
        if category:
            claims = claims.filter(category=category)

        return Response({
            'count': claims.count(),
            'permissions': MasterClaimSerializer(claims, many=True).data,
        })

    @requires(Single(SYSTEM_ADMIN))
    def post(self, request):
        serializer = MasterClaimCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        claim = ClaimCatalog().register(ClaimDefinition(**serializer.validated_data))
        return Response(MasterClaimSerializer(claim).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Get permission',
        description='**Required permission:** `roles.view`',
        responses={200: MasterClaimSerializer, 404: OpenApiTypes.OBJECT},
    ),
    patch=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Update permission',
        description='''
Change the display name, description or category of a catalog entry. The
permission string itself cannot change.

**Required permission:** `system.admin`
        ''',
        request=MasterClaimUpdateSerializer,
        responses={200: MasterClaimSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Delete permission',
        description='''
Delete a catalog entry and every role and direct grant of it. The bypass
markers cannot be deleted.

**Required permission:** `system.admin`
        ''',
        responses={204: None, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class PermissionCatalogDetailView(TenantAPIView):
    """
    GET/PATCH/DELETE /v1/permissions/catalog/{value}
    """

    @requires(Single('roles.view'))
    def get(self, request, claim_value):
        return Response(MasterClaimSerializer(ClaimCatalog().get(claim_value)).data)

    @requires(Single(SYSTEM_ADMIN))
    def patch(self, request, claim_value):
        serializer = MasterClaimUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        claim = ClaimCatalog().update(claim_value, **serializer.validated_data)
        return Response(MasterClaimSerializer(claim).data)

    @requires(Single(SYSTEM_ADMIN))
    def delete(self, request, claim_value):
        ClaimCatalog().delete(claim_value)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Check permissions',
        description='''
Check a list of permissions for the caller (or, with `authorization.view`,
for another member) in the current tenant.

Returns which permissions are granted and which are missing. An empty list
yields `has_all: true` and `has_any: false`.
        ''',
        request=PermissionCheckSerializer,
        responses={200: PermissionCheckResultSerializer},
        examples=[
            OpenApiExample(
                'Check Request',
                value={'permissions': ['users.view', 'roles.edit']},
                request_only=True
            ),
            OpenApiExample(
                'Check Response',
                value={
                    'user_id': '123e4567-e89b-12d3-a456-426614174000',
                    'has_all': False,
                    'has_any': True,
                    'granted': ['users.view'],
                    'missing': ['roles.edit'],
                },
                response_only=True
            ),
        ]
    )
)
class PermissionCheckView(TenantAPIView):
    """
    POST /v1/permissions/check
    """

    def post(self, request):
        serializer = PermissionCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        context = request.auth
        user_id = serializer.validated_data.get('user_id') or context.user_id
        if str(user_id) != str(context.user_id):
            enforce(context, Single('authorization.view'), path=request.path)

        result = PermissionResolver().check(
            user_id,
            context.tenant_id,
            serializer.validated_data['permissions'],
        )
        return Response({
            'user_id': str(user_id),
            'has_all': result.has_all,
            'has_any': result.has_any,
            'granted': list(result.granted),
            'missing': list(result.missing),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List effective user permissions',
        description='''
Effective permissions of a member in the current tenant, each tagged with
its source (`role` or `direct`).

**Required permission:** `users.view` (not needed for your own user)
        ''',
        responses={200: EffectivePermissionSerializer(many=True), 404: OpenApiTypes.OBJECT},
    ),
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Grant direct permissions',
        description='''
Grant permissions directly to a member in the current tenant.

**Required permission:** `users.manage.roles`. The caller can only grant
permissions they hold themselves; `business.owner`, `system.admin` and
`cross.tenant.access` need an equal or higher marker.
        ''',
        request=PermissionsPayloadSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Revoke direct permissions',
        request=PermissionsPayloadSerializer,
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
class UserPermissionsView(TenantAPIView):
    """
    GET/POST/DELETE /v1/users/{id}/permissions
    """

    def get(self, request, user_id):
        context = request.auth
        if str(user_id) != str(context.user_id):
            enforce(context, Single('users.view'), path=request.path)
        self.get_member(request, user_id)

        effective = sorted(
            PermissionResolver().effective_permissions(user_id, context.tenant_id),
            key=lambda permission: (permission.value, permission.source)
        )
        return Response({
            'user_id': str(user_id),
            'tenant_id': str(context.tenant_id),
            'count': len(effective),
            'permissions': EffectivePermissionSerializer(effective, many=True).data,
        })

    @requires(Single('users.manage.roles'))
    def post(self, request, user_id):
        values = self._validated_values(request)
        created = ClaimStore().assign_direct(user_id, request.auth.tenant_id, values)
        return Response({'user_id': str(user_id), 'granted': values, 'created': created})

    @requires(Single('users.manage.roles'))
    def delete(self, request, user_id):
        values = self._validated_values(request)
        removed = ClaimStore().remove_direct(user_id, request.auth.tenant_id, values)
        return Response({'user_id': str(user_id), 'revoked': values, 'removed': removed})

    def _validated_values(self, request):
        serializer = PermissionsPayloadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        values = serializer.validated_data['permissions']

        ensure_can_grant(request.auth, values, path=request.path)
        return values


# ===== ROLES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='List roles of the current tenant.\n\n**Required permission:** `roles.view`',
        responses={200: RoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='''
Create a role in the current tenant, optionally with an initial permission list.

**Required permission:** `roles.create`
        ''',
        request=RoleCreateSerializer,
        responses={201: RoleSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    ),
)
class RoleListView(TenantAPIView):
    """
    GET/POST /v1/roles
    """
    pagination_class = StandardResultsSetPagination

    @requires(Single('roles.view'))
    def get(self, request):
        roles = RoleService.list_roles(request.auth.tenant_id)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(roles, request, view=self)
        if page is not None:
            return paginator.get_paginated_response(RoleSerializer(page, many=True).data)

        return Response({'count': roles.count(), 'roles': RoleSerializer(roles, many=True).data})

    @requires(Single('roles.create'))
    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        role = RoleService.create_role(
            request.auth.tenant_id,
            data['name'],
            description=data.get('description'),
            permissions=data.get('permissions'),
            granted_by=request.auth,
        )
        return Response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Roles'], summary='Get role', responses={200: RoleSerializer}),
    patch=extend_schema(
        tags=['RBAC - Roles'],
        summary='Update role',
        description='**Required permission:** `roles.edit`',
        request=RoleUpdateSerializer,
        responses={200: RoleSerializer, 409: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role',
        description='Deletes the role with its permissions and user assignments.\n\n**Required permission:** `roles.delete`',
        responses={204: None, 404: OpenApiTypes.OBJECT},
    ),
)
class RoleDetailView(TenantAPIView):
    """
    GET/PATCH/DELETE /v1/roles/{id}
    """

    @requires(Single('roles.view'))
    def get(self, request, role_id):
        role = self.get_role(request, role_id)
        data = RoleSerializer(role).data
        data['permissions'] = ClaimStore().claims_for_role(role.id)
        return Response(data)

    @requires(Single('roles.edit'))
    def patch(self, request, role_id):
        role = self.get_role(request, role_id)
        serializer = RoleUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        role = RoleService.update_role(role, **serializer.validated_data)
        return Response(RoleSerializer(role).data)

    @requires(Single('roles.delete'))
    def delete(self, request, role_id):
        role = self.get_role(request, role_id)
        RoleService.delete_role(role, granted_by=request.auth)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Roles'], summary='List role permissions', responses={200: OpenApiTypes.OBJECT}),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Add permissions to role',
        description='''
Add permissions to a role. Already-present permissions are ignored.

**Required permission:** `roles.manage.permissions`, plus the right to
grant every listed permission (403 with the `denied` values otherwise).
        ''',
        request=PermissionsPayloadSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
    ),
    put=extend_schema(
        tags=['RBAC - Roles'],
        summary='Replace role permissions',
        description='''
Make the role's permission set exactly the given list, atomically. An empty
list clears the role.

**Required permission:** `roles.manage.permissions`
        ''',
        request=ReplacePermissionsSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Remove permissions from role',
        request=PermissionsPayloadSerializer,
        responses={200: OpenApiTypes.OBJECT},
    ),
)
class RolePermissionsView(TenantAPIView):
    """
    GET/POST/PUT/DELETE /v1/roles/{id}/permissions
    """

    @requires(Single('roles.view'))
    def get(self, request, role_id):
        role = self.get_role(request, role_id)
        return self._summary(role)

    @requires(Single('roles.manage.permissions'))
    def post(self, request, role_id):
        role = self.get_role(request, role_id)
        serializer = PermissionsPayloadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        values = serializer.validated_data['permissions']

        ensure_can_grant(request.auth, values, path=request.path)
        ClaimStore().assign_to_role(role.id, values)
        return self._summary(role)

    @requires(Single('roles.manage.permissions'))
    def put(self, request, role_id):
        role = self.get_role(request, role_id)
        serializer = ReplacePermissionsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        values = serializer.validated_data['permissions']

        store = ClaimStore()
        # Both added and dropped values count as grants
        changed = set(values).symmetric_difference(store.claims_for_role(role.id))
        ensure_can_grant(request.auth, changed, path=request.path)
        store.replace_role_claims(role.id, values)
        return self._summary(role)

    @requires(Single('roles.manage.permissions'))
    def delete(self, request, role_id):
        role = self.get_role(request, role_id)
        serializer = PermissionsPayloadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        values = serializer.validated_data['permissions']

        ensure_can_grant(request.auth, values, path=request.path)
        ClaimStore().remove_from_role(role.id, values)
        return self._summary(role)

    def _summary(self, role):
        permissions = ClaimStore().claims_for_role(role.id)
        return Response({
            'role_id': str(role.id),
            'role_name': role.name,
            'count': len(permissions),
            'permissions': permissions,
        })


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Assign role to user',
    description='**Required permission:** `users.manage.roles`',
    request=RoleUserAssignSerializer,
    responses={200: OpenApiTypes.OBJECT, 201: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
class RoleUserAssignView(TenantAPIView):
    """
    POST /v1/roles/{id}/users
    """

    @requires(Single('users.manage.roles'))
    def post(self, request, role_id):
        role = self.get_role(request, role_id)
        serializer = RoleUserAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user_id = serializer.validated_data['user_id']
        _, created = RoleService.assign_user_role(role, user_id, granted_by=request.auth)
        return Response(
            {'role_id': str(role.id), 'user_id': str(user_id), 'created': created},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Remove role from user',
    description='**Required permission:** `users.manage.roles`',
    responses={204: None, 404: OpenApiTypes.OBJECT},
)
class RoleUserRemoveView(TenantAPIView):
    """
    DELETE /v1/roles/{id}/users/{user_id}
    """

    @requires(Single('users.manage.roles'))
    def delete(self, request, role_id, user_id):
        role = self.get_role(request, role_id)
        if not RoleService.remove_user_role(role, user_id, granted_by=request.auth):
            raise NotFoundError('User does not have this role', {'user_id': str(user_id)})
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===== ROLE TEMPLATES =====

@extend_schema(
    tags=['RBAC - Roles'],
    summary='List role templates',
    description='''
The four built-in templates: `TenantAdmin` (20 permissions), `UserManager` (7),
`Viewer` (5) and `BasicUser` (1).

**Required permission:** `roles.view`
    ''',
    responses={200: RoleTemplateSerializer(many=True)},
)
class RoleTemplateListView(TenantAPIView):
    """
    GET /v1/role-templates
    """

    @requires(Single('roles.view'))
    def get(self, request):
        templates = RoleTemplateCatalog.list_templates()
        return Response({
            'count': len(templates),
            'templates': RoleTemplateSerializer(templates, many=True).data,
        })


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Create role from template',
    description='**Required permission:** `roles.create`',
    request=RoleFromTemplateSerializer,
    responses={201: RoleSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
)
class RoleFromTemplateView(TenantAPIView):
    """
    POST /v1/role-templates/{type}/roles
    """

    @requires(Single('roles.create'))
    def post(self, request, template_type):
        template_type = RoleTemplateCatalog.parse(template_type)
        serializer = RoleFromTemplateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RoleTemplateCatalog().create_role_from_template(
            request.auth.tenant_id,
            template_type,
            serializer.validated_data['role_name'],
            description=serializer.validated_data.get('description'),
            granted_by=request.auth,
        )
        return Response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)


# ===== MEMBERSHIPS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Memberships'],
        summary='List members',
        description='Members of the current tenant. `?status=pending` lists open invitations.\n\n**Required permission:** `users.view`',
        responses={200: MembershipSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Memberships'],
        summary='Create member',
        description='''
Create a new user who is immediately an active member, optionally with a role.

**Required permission:** `users.create`
        ''',
        request=CreateMemberSerializer,
        responses={201: MembershipSerializer, 409: OpenApiTypes.OBJECT},
    ),
)
class MembershipListView(TenantAPIView):
    """
    GET/POST /v1/memberships
    """
    pagination_class = StandardResultsSetPagination

    @requires(Single('users.view'))
    def get(self, request):
        memberships = UserTenant.objects.filter(tenant_id=request.auth.tenant_id).select_related('user')
        if request.query_params.get('status') == UserTenant.STATUS_PENDING:
            memberships = memberships.filter(is_active=False, left_at__isnull=True)
        else:
            memberships = memberships.filter(is_active=True)
        memberships = memberships.order_by('user__email')

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(memberships, request, view=self)
        if page is not None:
            return paginator.get_paginated_response(MembershipSerializer(page, many=True).data)
        return Response({'memberships': MembershipSerializer(memberships, many=True).data})

    @requires(Single('users.create'))
    def post(self, request):
        serializer = CreateMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        membership = MembershipService.create_member(
            request.auth.tenant_id,
            data['email'],
            data['password'],
            first_name=data.get('first_name', ''),
            last_name=data.get('last_name', ''),
            role_id=data.get('role_id'),
            granted_by=request.auth,
        )
        return Response(MembershipSerializer(membership).data, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Memberships'],
    summary='Invite user',
    description='''
Invite an existing user to the current tenant. The membership stays pending
until the user accepts through `POST /v1/memberships/accept`.

**Required permission:** `users.invite`
    ''',
    request=InviteMemberSerializer,
    responses={201: MembershipSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
)
class MembershipInviteView(TenantAPIView):
    """
    POST /v1/memberships/invite
    """

    @requires(Single('users.invite'))
    def post(self, request):
        serializer = InviteMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        membership = MembershipService.invite(
            request.auth.tenant_id,
            serializer.validated_data['email'],
            invited_by_id=request.auth.user_id,
        )
        return Response(MembershipSerializer(membership).data, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Memberships'],
    summary='Remove member',
    description='''
Remove a user from the current tenant. Their roles and direct permissions in
this tenant are deleted; the global user account is kept.

**Required permission:** `users.delete`
    ''',
    responses={204: None, 404: OpenApiTypes.OBJECT},
)
class MembershipRemoveView(TenantAPIView):
    """
    DELETE /v1/memberships/{user_id}
    """

    @requires(AnyOf('users.delete', 'global.users.delete'))
    def delete(self, request, user_id):
        MembershipService.remove(request.auth.tenant_id, user_id, granted_by=request.auth)
        return Response(status=status.HTTP_204_NO_CONTENT)
