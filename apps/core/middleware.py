"""
Core middleware for request processing.
"""
import logging
import threading
import uuid

from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_request_context = threading.local()

CONTEXT_KEYS = ('request_id', 'tenant_id', 'user_id')


def set_request_context(**values):
    """Attach values to the current thread so log records pick them up."""
    for key, value in values.items():
        setattr(_request_context, key, value)


def clear_request_context():
    for key in CONTEXT_KEYS:
        if hasattr(_request_context, key):
            delattr(_request_context, key)


def get_request_context(key):
    return getattr(_request_context, key, None)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id

        # Worker threads are reused; drop whatever the previous request left
        clear_request_context()
        set_request_context(request_id=request_id)

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        clear_request_context()
        return response


class LoggingFilter(logging.Filter):
    """
    Add request_id, tenant_id and user_id to log records from thread-local storage.
    """

    def filter(self, record):
        for key in CONTEXT_KEYS:
            value = get_request_context(key)
            if value is not None and not hasattr(record, key):
                setattr(record, key, value)
        return True
