from rest_framework import exceptions
from rest_framework.permissions import SAFE_METHODS, BasePermission

from apps.events.models import OrganizationMembership


class HasOrganizationRole(BasePermission):
    """
    Organization membership check for ``/organizations/{org_id}/...``.

    Reads need ``org_viewer``; writes need ``org_admin``. A global
    SuperAdmin passes both.
    """

    def has_permission(self, request, view):
        from apps.events.services import OrganizationService
        from apps.rbac.services import AuthorizationResolver

        user = request.user
        if not (user and user.is_authenticated):
            raise exceptions.NotAuthenticated('not authenticated')
        if AuthorizationResolver.is_global_superadmin(user):
            return True

        required = (
            OrganizationMembership.ROLE_VIEWER if request.method in SAFE_METHODS
            else OrganizationMembership.ROLE_ADMIN
        )
        if OrganizationService.has_organization_role(user, view.kwargs.get('org_id'), required):
            return True
        raise exceptions.PermissionDenied('insufficient role')
