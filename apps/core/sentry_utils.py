"""
Sentry utilities for adding context and breadcrumbs.

All helpers are no-ops when ``SENTRY_DSN`` is not configured.
"""
import sentry_sdk
from django.conf import settings


def set_user_context(user):
    """Attach the acting principal to Sentry events (no email)."""
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.set_user({"id": str(user.id)})


def add_breadcrumb(category, message, level="info", data=None):
    """
    Add a breadcrumb to Sentry for debugging.

    Args:
        category: Category of the breadcrumb (e.g., "task", "transition")
        message: Human-readable message
        level: Severity level (debug, info, warning, error)
        data: Optional dictionary of additional data
    """
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )


def capture_exception(exception, **kwargs):
    """
    Capture an exception in Sentry with optional context.

    Args:
        exception: The exception to capture
        **kwargs: Additional context blocks to attach
    """
    if not settings.SENTRY_DSN:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in kwargs.items():
            scope.set_context(key, value)
        sentry_sdk.capture_exception(exception)


def start_transaction(name, op):
    """Start a Sentry transaction, or return None if Sentry is not configured."""
    if not settings.SENTRY_DSN:
        return None

    return sentry_sdk.start_transaction(name=name, op=op)
