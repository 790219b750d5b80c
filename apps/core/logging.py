"""
Custom logging formatters for structured JSON logging, plus security events.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone

from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask credentials and personal data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    SECRET_PATTERN = re.compile(r'(api[_-]?key|token|secret|password|auth)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9\-_.]+', re.IGNORECASE)

    # Field names whose values are never logged
    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd',
        'token', 'access_token', 'bearer_token', 'authorization',
        'secret', 'secret_key', 'jwt_secret_key',
        'security_stamp',
    }

    @classmethod
    def mask_email(cls, text):
        """Keep the first character of the local part and the domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub('Bearer ********', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict)
                    else cls.mask_text(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id, tenant_id and user_id when the request filter set them.
    """

    RESERVED = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'taskName', 'request_id', 'tenant_id', 'user_id',
    }

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for context_key in ('request_id', 'tenant_id', 'user_id'):
            value = getattr(record, context_key, None)
            if value is not None:
                log_data[context_key] = str(value)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in self.RESERVED or key.startswith('_'):
                continue
            if key.lower() in PIIMasker.SENSITIVE_FIELDS:
                log_data[key] = '********'
                continue
            try:
                if isinstance(value, dict):
                    masked_value = PIIMasker.mask_dict(value)
                elif isinstance(value, str):
                    masked_value = PIIMasker.mask_text(value)
                else:
                    masked_value = value
                json.dumps(masked_value)
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for authentication and authorization events.

    Every event goes to the ``security`` logger with structured data.
    Events in CRITICAL_EVENTS are also sent to Sentry.
    """

    CRITICAL_EVENTS = {
        'cross_tenant_access_denied',
        'invalid_tenant_context',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Example:
            >>> SecurityLogger.log_event(
            ...     'permission_denied',
            ...     user_id='6f1c...',
            ...     tenant_id='a2b9...',
            ...     missing=['roles.edit'],
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_failed_login(email: str, ip_address: str = None, reason: str = None):
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            email=email,
            ip_address=ip_address,
            reason=reason
        )

    @staticmethod
    def log_account_locked(user, ip_address: str = None):
        SecurityLogger.log_event(
            'account_locked',
            level='warning',
            user_id=str(user.id),
            lockout_end=user.global_lockout_end.isoformat() if user.global_lockout_end else None,
            ip_address=ip_address
        )

    @staticmethod
    def log_permission_denied(user_id, tenant_id, required, missing, path: str = None):
        """
        Log a permission denial.

        Args:
            user_id: Acting user
            tenant_id: Tenant of the request
            required: Permissions the operation asked for
            missing: Permissions the user lacks
            path: Request path, if any
        """
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=str(user_id) if user_id else None,
            tenant_id=str(tenant_id) if tenant_id else None,
            required=list(required),
            missing=list(missing),
            path=path
        )

    @staticmethod
    def log_cross_tenant_denied(user_id, tenant_id, resource_tenant_id, resource: str = None):
        """Log an attempt to touch a resource owned by another tenant."""
        SecurityLogger.log_event(
            'cross_tenant_access_denied',
            level='error',
            user_id=str(user_id),
            tenant_id=str(tenant_id),
            resource_tenant_id=str(resource_tenant_id),
            resource=resource
        )

    @staticmethod
    def log_invalid_tenant_context(user_id, tenant_claim, reason: str, path: str = None):
        SecurityLogger.log_event(
            'invalid_tenant_context',
            level='error',
            user_id=str(user_id) if user_id else None,
            tenant_claim=str(tenant_claim) if tenant_claim is not None else None,
            reason=reason,
            path=path
        )

    @staticmethod
    def log_revoked_token(user_id, path: str = None):
        """Log use of a token whose security stamp no longer matches the user."""
        SecurityLogger.log_event(
            'revoked_token_used',
            level='warning',
            user_id=str(user_id),
            path=path
        )

    @staticmethod
    def log_logout(user_id, tenant_id):
        SecurityLogger.log_event(
            'logout',
            level='info',
            user_id=str(user_id),
            tenant_id=str(tenant_id) if tenant_id else None
        )
