"""
Custom logging formatters for structured JSON logging, plus the
security event logger.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone

import sentry_sdk
from django.utils import timezone


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|authorization)["\']?\s*[:=]\s*["\']?(?:bearer\s+)?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    BEARER_PATTERN = re.compile(r'\bBearer\s+[A-Za-z0-9._-]+', re.IGNORECASE)

    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd',
        'token', 'access_token', 'refresh_token', 'authorization',
        'secret', 'secret_key', 'api_key',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses, keeping the first character and the domain."""
        if not isinstance(text, str):
            return text

        def mask_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_match, text)

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
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)
        return masked


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'message', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName',
})


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Automatically masks sensitive PII data.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [
                    PIIMasker.mask_text(line)
                    for line in traceback.format_exception(*record.exc_info)
                ],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = PIIMasker.mask_text(str(value))
            log_data[key] = value

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for authorization and abuse-related events.

    Events go to the ``security`` logger with structured data. Critical
    event types are also sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'authorization_error',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'permission_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, event_id, etc.)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_permission_denied(user, event_id, allowed_roles, reason: str, ip_address: str = None):
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=str(user.id) if user else None,
            event_id=str(event_id) if event_id else None,
            allowed_roles=sorted(str(role) for role in allowed_roles),
            reason=reason,
            ip_address=ip_address,
        )

    @staticmethod
    def log_authorization_error(user, event_id, error: str):
        """An internal failure while resolving roles; the request was denied."""
        SecurityLogger.log_event(
            'authorization_error',
            level='error',
            user_id=str(user.id) if user else None,
            event_id=str(event_id) if event_id else None,
            error=error,
        )

    @staticmethod
    def log_broad_scope_check(user, allowed_roles, scope_hint=None):
        SecurityLogger.log_event(
            'broad_scope_check',
            level='info',
            user_id=str(user.id) if user else None,
            allowed_roles=sorted(str(role) for role in allowed_roles),
            scope_hint=scope_hint,
        )

    @staticmethod
    def log_sole_admin_removal_blocked(actor, event_id, target_user_id):
        SecurityLogger.log_event(
            'sole_admin_removal_blocked',
            level='warning',
            actor_id=str(actor.id) if actor else None,
            event_id=str(event_id),
            target_user_id=str(target_user_id),
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, user_email: str = None, limit: str = None):
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            user_email=user_email,
            limit=limit,
        )
