"""
Typed error taxonomy, discriminated results and the DRF exception handler.

Core operations return a ``Result`` for expected failures instead of
raising. Views translate a failed result with ``error_response``; the
``custom_exception_handler`` covers anything raised on the way.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class ErrorKind(enum.Enum):
    UNAUTHENTICATED = 'unauthenticated'
    FORBIDDEN = 'forbidden'
    VALIDATION_FAILED = 'validation_failed'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    INTERNAL = 'internal'

    @property
    def http_status(self):
        return ERROR_STATUS[self]


ERROR_STATUS = {
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ServiceError(Exception):
    """
    Typed failure produced by a service operation.

    ``code`` is a stable machine-readable identifier (e.g. ``ROLE_NOT_FOUND``);
    ``message`` is safe to show to the caller.
    """

    def __init__(self, kind: ErrorKind, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code or kind.name

    @property
    def status_code(self):
        return self.kind.http_status

    def to_dict(self):
        return {'error': self.message, 'code': self.code}

    def __repr__(self):
        return f"ServiceError({self.kind.name}, {self.message!r}, code={self.code!r})"


@dataclass(frozen=True)
class Result:
    """Success carrying ``value`` or failure carrying ``error``."""
    value: Any = None
    error: Optional[ServiceError] = None

    @property
    def ok(self):
        return self.error is None

    @classmethod
    def success(cls, value=None):
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, code: Optional[str] = None):
        return cls(error=ServiceError(kind, message, code))

    def unwrap(self):
        """Return the value, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value


def error_response(error: ServiceError, request=None):
    """Build the API response for a failed service result."""
    data = error.to_dict()
    request_id = getattr(request, 'request_id', None) if request else None
    if request_id:
        data['request_id'] = request_id
    return Response(data, status=error.status_code)


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    from apps.core.rate_limiting import RateLimitExceeded
    # Loaded here: rest_framework.views imports the permission classes,
    # which import this module.
    from rest_framework.views import exception_handler

    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, RateLimitExceeded):
        from apps.core.logging import SecurityLogger

        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown',
            limit=exc.limit_name,
        )
        response = Response(
            {
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED',
                'request_id': request_id,
                'retry_after': exc.retry_after,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(exc.retry_after)
        return response

    if isinstance(exc, ServiceError):
        log = logger.error if exc.kind is ErrorKind.INTERNAL else logger.info
        log(
            f"Service error: {exc.code}",
            extra={
                'request_id': request_id,
                'error_kind': exc.kind.value,
                'path': request.path if request else None,
            }
        )
        return error_response(exc, request)

    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    if response is None:
        return Response(
            {
                'error': 'Internal server error',
                'detail': 'An unexpected error occurred',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
