"""
Tenant isolation middleware.

Verifies the bearer token, resolves the tenant from its claim and builds
the request's AuthContext before any view runs.
"""
import logging
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.exceptions import AuthenticationError, InternalError
from apps.core.logging import SecurityLogger
from apps.core.middleware import set_request_context
from apps.rbac.catalog import BYPASS_MARKERS
from apps.rbac.models import User, UserTenant
from apps.rbac.services import AuthService, PermissionResolver
from apps.tenants.guard import ResolutionState, TenantIsolationGuard

logger = logging.getLogger(__name__)


class TenantIsolationMiddleware(MiddlewareMixin):
    """
    Extract and validate tenant context from the JWT.

    This middleware:
    1. Skips public paths (login, provisioning, invitation acceptance, health)
    2. Verifies the Authorization: Bearer token (401 on failure, including
       tokens minted before the user's security stamp last changed)
    3. Resolves the tenant claim (403 INVALID_TENANT_CONTEXT on rejection)
    4. Attaches request.user, request.tenant_id and request.auth_context
    5. Echoes the tenant in the X-Tenant-Id response header

    Requests without an Authorization header pass through anonymous; views
    that need a caller reject them with 401.
    """

    PUBLIC_PATHS = [
        '/v1/health',
        '/v1/auth/login',
        '/v1/tenants/provision',
        '/v1/memberships/accept',
        '/v1/tenants/by-slug/',
        '/schema',
    ]

    def __init__(self, get_response=None):
        super().__init__(get_response)
        self.resolver = PermissionResolver()

    def process_request(self, request):
        request.auth_context = None
        request.tenant_id = None

        if self._is_public_path(request.path):
            return None

        header = request.headers.get('Authorization', '')
        if not header:
            return None

        scheme, _, token = header.partition(' ')
        if scheme.lower() != 'bearer' or not token.strip():
            return self._error_response(
                'AUTHENTICATION_FAILED',
                'Authorization header must be: Bearer <token>',
                status=401
            )

        try:
            identity = AuthService.verify_token(token.strip())
        except AuthenticationError as e:
            return self._error_response(e.error_code, e.message, status=e.status_code)

        resolution = TenantIsolationGuard.resolve(identity)
        if resolution.state == ResolutionState.REJECTED:
            SecurityLogger.log_invalid_tenant_context(
                identity.user_id,
                identity.tenant_claim,
                resolution.reason,
                path=request.path,
            )
            return self._error_response(
                'INVALID_TENANT_CONTEXT',
                'Token does not carry a valid tenant',
                status=403,
                details={'reason': resolution.reason}
            )

        try:
            user = User.objects.filter(id=identity.user_id).first()
            if user is None or user.is_locked_out():
                return self._error_response(
                    'AUTHENTICATION_FAILED',
                    'User account is not available',
                    status=401
                )
            if identity.security_stamp != user.security_stamp:
                SecurityLogger.log_revoked_token(user.id, path=request.path)
                return self._error_response(
                    'AUTHENTICATION_FAILED',
                    'Token has been revoked',
                    status=401
                )
            context = self.resolver.build_context(user.id, resolution.tenant_id)
            is_member = UserTenant.objects.is_active_member(user.id, resolution.tenant_id)
        except InternalError as e:
            return self._error_response(e.error_code, e.message, status=e.status_code)

        if not is_member and not any(context.holds(marker) for marker in BYPASS_MARKERS):
            return self._error_response(
                'FORBIDDEN',
                'You are not a member of this tenant',
                status=403
            )

        request.user = user
        request.tenant_id = resolution.tenant_id
        request.auth_context = context
        set_request_context(tenant_id=str(resolution.tenant_id), user_id=str(user.id))
        return None

    def process_response(self, request, response):
        tenant_id = getattr(request, 'tenant_id', None)
        if tenant_id is not None:
            response['X-Tenant-Id'] = str(tenant_id)
        return response

    def _is_public_path(self, path):
        return any(path.startswith(public_path) for public_path in self.PUBLIC_PATHS)

    def _error_response(self, code, message, status=400, details=None):
        error_data = {
            'error': {
                'code': code,
                'message': message,
            }
        }
        if details:
            error_data['error']['details'] = details
        return JsonResponse(error_data, status=status)
