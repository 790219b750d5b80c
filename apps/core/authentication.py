"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication


class MiddlewareAuthentication(BaseAuthentication):
    """
    DRF authentication class that uses the identity set by TenantIsolationMiddleware.

    The middleware verifies the bearer token and builds the AuthContext;
    this class hands both to DRF as (request.user, request.auth).
    """

    def authenticate(self, request):
        django_request = request._request

        user = getattr(django_request, 'user', None)
        if user is not None and getattr(user, 'is_authenticated', False):
            return (user, getattr(django_request, 'auth_context', None))

        return None

    def authenticate_header(self, request):
        return 'Bearer'
