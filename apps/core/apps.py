import logging
import sys

from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate security-critical configuration when serving requests.

        Management commands other than runserver skip the checks so that
        migrations and shells work with partial configuration.
        """
        if len(sys.argv) > 1 and sys.argv[1] != 'runserver' and 'gunicorn' not in sys.argv[0]:
            return
        self.validate_jwt_configuration()

    @staticmethod
    def validate_jwt_configuration():
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured("JWT_SECRET_KEY must be set in environment variables.")

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}."
            )

        if jwt_secret == settings.SECRET_KEY:
            raise ImproperlyConfigured("JWT_SECRET_KEY must be different from SECRET_KEY.")

        if len(set(jwt_secret)) < 16:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY has insufficient entropy (fewer than 16 unique characters)."
            )

        logger.info("JWT configuration validated")
