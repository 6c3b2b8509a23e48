"""
Custom DRF authentication classes.
"""
import logging

from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication, get_authorization_header

from apps.core.sentry_utils import set_user_context

logger = logging.getLogger(__name__)


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate requests carrying ``Authorization: Bearer <token>``.

    Tokens are HS256-signed with ``JWT_SECRET_KEY`` and issued by
    ``AuthService.generate_jwt``. Requests without a bearer token are left
    unauthenticated so that anonymous endpoints keep working.
    """
    keyword = 'Bearer'

    def authenticate(self, request):
        header = get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None

        if len(header) != 2:
            raise exceptions.AuthenticationFailed('Invalid authorization header.')

        try:
            token = header[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed('Invalid authorization header.')

        from apps.rbac.services import AuthService

        user = AuthService.get_user_from_jwt(token)
        if user is None:
            logger.info(
                "Rejected bearer token",
                extra={'request_id': getattr(request._request, 'request_id', None)}
            )
            raise exceptions.AuthenticationFailed('Invalid or expired token.')

        set_user_context(user)
        return (user, token)

    def authenticate_header(self, request):
        return self.keyword
