from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging
import sys

logger = logging.getLogger(__name__)


GENERATE_HINT = "Generate a strong key with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate signing configuration before the application serves requests.

        Management commands other than runserver skip the checks so that
        migrations can run without a full environment.
        """
        if len(sys.argv) > 1 and 'pytest' not in sys.argv[0] and sys.argv[1] not in ('runserver', 'test'):
            return

        self._validate_jwt_configuration()
        self._validate_security_settings()

    def _validate_jwt_configuration(self):
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured(f"JWT_SECRET_KEY must be set. {GENERATE_HINT}")

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}. {GENERATE_HINT}"
            )

        if jwt_secret == secret_key:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be different from SECRET_KEY. {GENERATE_HINT}"
            )

        if len(set(jwt_secret)) < 16:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY has insufficient entropy "
                f"({len(set(jwt_secret))} unique characters, need 16). {GENERATE_HINT}"
            )

        logger.info("JWT configuration validated")

    def _validate_security_settings(self):
        if getattr(settings, 'DEBUG', False):
            return

        secret_key = getattr(settings, 'SECRET_KEY', '') or ''
        for pattern in ('django-insecure', 'change-me', 'dev-only'):
            if pattern in secret_key.lower():
                logger.warning(f"SECRET_KEY appears to be a development value (contains '{pattern}')")

        if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
            logger.warning("SECURE_SSL_REDIRECT is not enabled in production")
