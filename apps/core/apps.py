import logging
import sys

from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

KEY_HINT = "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate signing secrets before the server accepts requests.

        Management commands other than runserver skip the checks so that
        migrations and shell sessions work with a partial configuration.
        """
        serving = 'gunicorn' in sys.argv[0] or (len(sys.argv) > 1 and sys.argv[1] == 'runserver')
        if not serving and not settings.IS_PRODUCTION:
            return

        self._validate_jwt_configuration()
        self._validate_production_secrets()
        logger.info("Startup security validation passed")

    def _validate_jwt_configuration(self):
        jwt_secret = settings.JWT_SECRET_KEY

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long (current: {len(jwt_secret)}). {KEY_HINT}"
            )

        if jwt_secret == settings.SECRET_KEY:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be different from SECRET_KEY. {KEY_HINT}"
            )

        unique_chars = len(set(jwt_secret))
        if unique_chars < 16:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY has insufficient entropy ({unique_chars} unique characters, need 16). {KEY_HINT}"
            )

    def _validate_production_secrets(self):
        if not settings.IS_PRODUCTION:
            return

        for name in ('SECRET_KEY', 'JWT_SECRET_KEY', 'REFRESH_TOKEN_SECRET'):
            if 'insecure' in getattr(settings, name).lower():
                raise ImproperlyConfigured(
                    f"{name} still holds the development default in production. {KEY_HINT}"
                )

        if settings.REFRESH_TOKEN_SECRET == settings.JWT_SECRET_KEY:
            raise ImproperlyConfigured(
                f"REFRESH_TOKEN_SECRET must be different from JWT_SECRET_KEY. {KEY_HINT}"
            )

        if settings.DEBUG:
            logger.warning("DEBUG is enabled with ENVIRONMENT=production")
