"""
Tenant API views.

Implements endpoints for:
- Public tenant provisioning
- Current tenant settings
- Public slug lookup
- Global-admin tenant listing, reads and deletion
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiExample, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.core.permissions import IsTenantAuthenticated, Single, requires
from apps.rbac.services import AuthService
from apps.rbac.views import StandardResultsSetPagination
from apps.tenants.serializers import (
    ProvisioningResultSerializer, ProvisionTenantSerializer, TenantLookupSerializer, TenantSerializer,
    TenantUpdateSerializer,
)
from apps.tenants.services import ProvisioningRequest, TenantProvisioner, TenantService


@extend_schema(
    tags=['Tenant Management'],
    summary='Provision tenant',
    description='''
Create a tenant together with its first administrator.

Creates, in one transaction:
- The tenant
- A `TenantAdmin` role holding the default administrator permissions
- The administrator user (email confirmed)
- An active membership and the role assignment

Nothing is created when the slug or the admin email is already taken (409).

**No authentication required** - this is a public endpoint.
    ''',
    request=ProvisionTenantSerializer,
    responses={
        201: ProvisioningResultSerializer,
        400: OpenApiTypes.OBJECT,
        409: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Provision Request',
            value={
                'tenant_name': 'Acme Corp',
                'slug': 'acme',
                'admin_email': 'admin@acme.test',
                'admin_first_name': 'Ada',
                'admin_last_name': 'Admin',
                'admin_password': 'SecurePass123!'
            },
            request_only=True
        ),
    ]
)
class ProvisionTenantView(APIView):
    """
    POST /v1/tenants/provision
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        serializer = ProvisionTenantSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = TenantProvisioner().provision(ProvisioningRequest(
            tenant_name=data['tenant_name'],
            slug=data['slug'],
            contact_email=data.get('contact_email'),
            admin_email=data['admin_email'],
            admin_first_name=data['admin_first_name'],
            admin_last_name=data['admin_last_name'],
            admin_password_hash=AuthService.hash_password(data['admin_password']),
        ))

        return Response(
            ProvisioningResultSerializer(result).data,
            status=status.HTTP_201_CREATED
        )


@extend_schema_view(
    get=extend_schema(
        tags=['Tenant Management'],
        summary='Get current tenant',
        description='**Required permission:** `tenant.settings.view`',
        responses={200: TenantSerializer},
    ),
    patch=extend_schema(
        tags=['Tenant Management'],
        summary='Update current tenant',
        description='Update name, logo or contact email. The slug cannot change.\n\n**Required permission:** `tenant.settings.edit`',
        request=TenantUpdateSerializer,
        responses={200: TenantSerializer, 400: OpenApiTypes.OBJECT},
    ),
)
class CurrentTenantView(APIView):
    """
    GET/PATCH /v1/tenants/current
    """
    permission_classes = [IsTenantAuthenticated]

    @requires(Single('tenant.settings.view'))
    def get(self, request):
        tenant = TenantService.get_tenant(request.auth.tenant_id)
        return Response(TenantSerializer(tenant).data)

    @requires(Single('tenant.settings.edit'))
    def patch(self, request):
        serializer = TenantUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        tenant = TenantService.update_tenant(request.auth.tenant_id, **serializer.validated_data)
        return Response(TenantSerializer(tenant).data)


@extend_schema(
    tags=['Tenant Management'],
    summary='Look up tenant by slug',
    description='''
Resolve a slug to the tenant id needed for login.

**No authentication required** - this is a public endpoint.
    ''',
    responses={200: TenantLookupSerializer, 404: OpenApiTypes.OBJECT},
)
class TenantLookupView(APIView):
    """
    GET /v1/tenants/by-slug/{slug}
    """
    authentication_classes = []
    permission_classes = []

    def get(self, request, slug):
        return Response(TenantLookupSerializer(TenantService.get_by_slug(slug)).data)


@extend_schema(
    tags=['Tenant Management'],
    summary='List tenants',
    description='''
Every tenant on the platform. `?search=` filters on name and slug.

**Required permission:** `global.tenants.view`
    ''',
    parameters=[OpenApiParameter('search', OpenApiTypes.STR, description='Name or slug fragment')],
    responses={200: TenantSerializer(many=True), 403: OpenApiTypes.OBJECT},
)
class TenantListView(APIView):
    """
    GET /v1/tenants
    """
    permission_classes = [IsTenantAuthenticated]
    pagination_class = StandardResultsSetPagination

    @requires(Single('global.tenants.view'))
    def get(self, request):
        tenants = TenantService.list_tenants(request.query_params.get('search'))

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(tenants, request, view=self)
        if page is not None:
            return paginator.get_paginated_response(TenantSerializer(page, many=True).data)
        return Response({'tenants': TenantSerializer(tenants, many=True).data})


@extend_schema_view(
    get=extend_schema(
        tags=['Tenant Management'],
        summary='Get tenant',
        description='**Required permission:** `global.tenants.view`',
        responses={200: TenantSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['Tenant Management'],
        summary='Delete tenant',
        description='''
Delete a tenant with all of its roles, memberships and permission grants.
User accounts are kept.

**Required permission:** `global.tenants.delete`
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class TenantDetailView(APIView):
    """
    GET/DELETE /v1/tenants/{id}
    """
    permission_classes = [IsTenantAuthenticated]

    @requires(Single('global.tenants.view'))
    def get(self, request, tenant_id):
        return Response(TenantSerializer(TenantService.get_tenant(tenant_id)).data)

    @requires(Single('global.tenants.delete'))
    def delete(self, request, tenant_id):
        TenantService.delete_tenant(tenant_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
