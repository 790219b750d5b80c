"""
Error taxonomy and the DRF exception handler.

Every error leaving the API has the shape::

    {"error": {"code": "...", "message": "...", "details": {...}}, "request_id": "..."}
"""
import logging
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class AuthzError(Exception):
    """Base exception for authorization-engine errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AuthzError):
    """Raised when a role, tenant, user or membership does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    error_code = 'NOT_FOUND'


class ConflictError(AuthzError):
    """Raised on duplicate slug, duplicate role name or duplicate email."""
    status_code = status.HTTP_409_CONFLICT
    error_code = 'CONFLICT'


class ForbiddenError(AuthzError):
    """Raised on tenant-isolation violations and insufficient permissions."""
    status_code = status.HTTP_403_FORBIDDEN
    error_code = 'FORBIDDEN'


class ValidationError(AuthzError):
    """Raised when input validation fails."""
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = 'VALIDATION_ERROR'


class InternalError(AuthzError):
    """Raised when the store or transport fails."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = 'INTERNAL_ERROR'


class OperationCancelled(AuthzError):
    """Raised when an operation is cancelled or its deadline passes."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = 'OPERATION_CANCELLED'


class AuthenticationError(AuthzError):
    """Raised when authentication fails."""
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = 'AUTHENTICATION_FAILED'


class AccountLockedError(AuthenticationError):
    """Raised when a locked account attempts to log in."""
    status_code = status.HTTP_423_LOCKED
    error_code = 'ACCOUNT_LOCKED'


def _error_body(code, message, details=None, request_id=None):
    body = {
        'error': {
            'code': code,
            'message': message,
        }
    }
    if details:
        body['error']['details'] = details
    if request_id:
        body['request_id'] = request_id
    return body


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns a consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    log_extra = {
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
        'exception': exc.__class__.__name__,
    }

    if isinstance(exc, AuthzError):
        if exc.status_code >= 500:
            logger.error(f"API error: {exc.message}", extra=log_extra, exc_info=True)
        else:
            logger.warning(f"API error: {exc.message}", extra=log_extra)

        return Response(
            _error_body(exc.error_code, exc.message, exc.details, request_id),
            status=exc.status_code
        )

    # Call DRF's default exception handler for APIException / Http404 / PermissionDenied
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"Unhandled API exception: {exc.__class__.__name__}",
            extra=log_extra,
            exc_info=True
        )
        return Response(
            _error_body('INTERNAL_ERROR', 'An unexpected error occurred', request_id=request_id),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.warning(f"API exception: {exc.__class__.__name__}", extra=log_extra)

    if isinstance(exc, drf_exceptions.ValidationError):
        code = 'VALIDATION_ERROR'
    elif isinstance(exc, Http404):
        code = 'NOT_FOUND'
    else:
        code = str(getattr(exc, 'default_code', 'error')).upper()

    data = response.data
    if isinstance(data, dict) and set(data.keys()) == {'detail'}:
        message, details = str(data['detail']), None
    else:
        message, details = 'Invalid request', data

    response.data = _error_body(code, message, details, request_id)
    return response
