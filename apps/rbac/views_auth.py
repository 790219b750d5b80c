"""
Authentication REST API views.

Implements endpoints for:
- Login into one tenant
- Accepting a pending invitation (login that activates the membership)
- Token refresh, logout (token revocation) and the current user
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.permissions import IsTenantAuthenticated
from apps.rbac.serializers import (
    AcceptInvitationSerializer, CurrentUserSerializer, LoginResponseSerializer, LoginSerializer,
    UserSerializer,
)
from apps.rbac.services import AuthService, MembershipService, RoleService


def _client_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def _session_payload(result):
    return {
        'token': result.token,
        'tenant_id': str(result.tenant_id),
        'user': UserSerializer(result.user).data,
        'permissions': result.permissions,
    }


@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email and password and receive a JWT bound to one tenant.

The user must be an active member of `tenant_id`. After 5 consecutive
failed attempts the account is locked for 30 minutes (HTTP 423).

**No authentication required** - this is a public endpoint.
    ''',
    request=LoginSerializer,
    responses={
        200: LoginResponseSerializer,
        401: OpenApiTypes.OBJECT,
        403: OpenApiTypes.OBJECT,
        423: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Login Request',
            value={
                'email': 'admin@acme.test',
                'password': 'SecurePass123!',
                'tenant_id': '123e4567-e89b-12d3-a456-426614174001'
            },
            request_only=True
        ),
    ]
)
class LoginView(APIView):
    """
    POST /v1/auth/login

    Authenticate user and return a tenant-bound JWT.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = AuthService.login(
            data['email'],
            data['password'],
            data['tenant_id'],
            ip_address=_client_ip(request),
        )
        return Response(_session_payload(result), status=status.HTTP_200_OK)


@extend_schema(
    tags=['RBAC - Memberships'],
    summary='Accept invitation',
    description='''
Accept a pending invitation to a tenant.

Verifies the invited user's credentials, activates the membership and
returns a JWT for that tenant.

**No authentication required** - the credentials in the body authenticate the call.
    ''',
    request=AcceptInvitationSerializer,
    responses={
        200: LoginResponseSerializer,
        401: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
    }
)
class AcceptInvitationView(APIView):
    """
    POST /v1/memberships/accept
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        serializer = AcceptInvitationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user = AuthService.authenticate(data['email'], data['password'], ip_address=_client_ip(request))
        MembershipService.accept(user.id, data['tenant_id'])
        result = AuthService.issue_session(user, data['tenant_id'])

        return Response(_session_payload(result), status=status.HTTP_200_OK)


@extend_schema(
    tags=['Authentication'],
    summary='Refresh token',
    description='''
Issue a new token for the caller's current tenant with freshly resolved
permissions. The caller must still be an active member of the tenant.
    ''',
    request=None,
    responses={200: LoginResponseSerializer, 401: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
)
class RefreshTokenView(APIView):
    """
    POST /v1/auth/refresh
    """
    permission_classes = [IsTenantAuthenticated]

    def post(self, request):
        result = AuthService.refresh(request.user, request.auth.tenant_id)
        return Response(_session_payload(result), status=status.HTTP_200_OK)


@extend_schema(
    tags=['Authentication'],
    summary='Logout',
    description='''
Revoke every token issued to the caller so far, in every tenant, by
rotating the account's security stamp.
    ''',
    request=None,
    responses={204: None, 401: OpenApiTypes.OBJECT},
)
class LogoutView(APIView):
    """
    POST /v1/auth/logout
    """
    permission_classes = [IsTenantAuthenticated]

    def post(self, request):
        AuthService.logout(request.user, request.auth.tenant_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    tags=['Authentication'],
    summary='Current user',
    description='The caller, the role names they hold in the current tenant and their resolved permissions.',
    responses={200: CurrentUserSerializer, 401: OpenApiTypes.OBJECT},
)
class MeView(APIView):
    """
    GET /v1/auth/me
    """
    permission_classes = [IsTenantAuthenticated]

    def get(self, request):
        context = request.auth
        roles = RoleService.roles_for_user(context.user_id, context.tenant_id).order_by('name')
        return Response({
            'user': UserSerializer(request.user).data,
            'tenant_id': str(context.tenant_id),
            'roles': [role.name for role in roles],
            'permissions': sorted(context.granted_permissions),
        })
