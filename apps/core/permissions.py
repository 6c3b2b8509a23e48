"""
DRF permission classes and decorators for role enforcement.

This module provides:
- HasEventRole: DRF permission class that runs the access control guard
- IsGlobalSuperAdmin: permission class for platform-wide operations
- @requires_roles: Decorator to declare the accepted roles on views
"""
import logging
from functools import wraps

from rest_framework import exceptions
from rest_framework.permissions import BasePermission

from apps.core.exceptions import ErrorKind, ServiceError

logger = logging.getLogger(__name__)


def _raise_for_decision(decision):
    if decision.error_kind is ErrorKind.UNAUTHENTICATED:
        raise exceptions.NotAuthenticated(decision.reason)
    if decision.error_kind is ErrorKind.FORBIDDEN:
        raise exceptions.PermissionDenied(decision.reason)
    raise ServiceError(decision.error_kind, decision.reason)


class HasEventRole(BasePermission):
    """
    Enforce ``allowed_roles`` on a view through ``AccessGuard.authorize``.

    The scope comes from the URL: ``event_id`` when present, otherwise the
    event ``slug``. Views without ``allowed_roles`` only require an
    authenticated principal.

    Usage:
        @requires_roles('Admin', 'SuperAdmin')
        class EventRolesView(APIView):
            permission_classes = [HasEventRole]
    """

    def has_permission(self, request, view):
        from apps.rbac.services import AccessGuard, ScopeHint

        allowed_roles = getattr(view, 'allowed_roles', None)
        if not allowed_roles:
            if not (request.user and request.user.is_authenticated):
                raise exceptions.NotAuthenticated('not authenticated')
            return True

        decision = AccessGuard.authorize(
            request.user,
            ScopeHint.from_kwargs(view.kwargs),
            allowed_roles,
            request=request,
        )
        request.access_decision = decision

        if not decision.allowed:
            logger.info(
                f"Access denied to {view.__class__.__name__}",
                extra={
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'reason': decision.reason,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            _raise_for_decision(decision)

        return True


class IsGlobalSuperAdmin(BasePermission):
    """Only principals with a global SuperAdmin grant pass."""

    def has_permission(self, request, view):
        from apps.rbac.services import AccessGuard

        decision = AccessGuard.require_superadmin(request.user, request=request)
        if not decision.allowed:
            _raise_for_decision(decision)
        return True


def requires_roles(*roles):
    """
    Declare the roles accepted by a view class or a single handler method.

    Sets ``allowed_roles``, which ``HasEventRole`` reads. On a method, the
    roles apply only to that HTTP verb.
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.allowed_roles = frozenset(roles)
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            from apps.rbac.services import AccessGuard, ScopeHint

            decision = AccessGuard.authorize(
                request.user, ScopeHint.from_kwargs(kwargs), roles, request=request
            )
            if not decision.allowed:
                _raise_for_decision(decision)
            request.access_decision = decision
            return view_or_method(self, request, *args, **kwargs)

        wrapped.allowed_roles = frozenset(roles)
        return wrapped

    return decorator
