"""
Event directory and organization membership services.
"""
import logging
import uuid
from typing import Optional

from django.db import IntegrityError, transaction

from apps.core.exceptions import ErrorKind, Result
from apps.events.models import Event, Organization, OrganizationMembership

logger = logging.getLogger(__name__)


def parse_uuid(value) -> Optional[uuid.UUID]:
    """Return ``value`` as a UUID, or None if it is not one."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


class EventDirectory:
    """Read-only lookups from event slugs and ids to events."""

    @staticmethod
    def resolve_slug(slug: str) -> Optional[uuid.UUID]:
        """Return the id of the event with ``slug``, or None."""
        if not slug:
            return None
        return Event.objects.filter(slug=slug).values_list('id', flat=True).first()

    @staticmethod
    def get_event(event_id) -> Optional[Event]:
        event_uuid = parse_uuid(event_id)
        if event_uuid is None:
            return None
        return Event.objects.filter(id=event_uuid).first()


class OrganizationService:
    """
    Organization membership management.

    A principal has at most one membership per organization. The last
    ``org_admin`` of an organization cannot be removed or demoted.
    """

    @staticmethod
    def organization_role(user_id, organization_id) -> Optional[str]:
        organization_id, user_id = parse_uuid(organization_id), parse_uuid(user_id)
        if organization_id is None or user_id is None:
            return None
        membership = OrganizationMembership.objects.get_membership(organization_id, user_id)
        return membership.role if membership else None

    @classmethod
    def has_organization_role(cls, user, organization_id, role: str) -> bool:
        if user is None or not user.is_authenticated:
            return False
        organization_id = parse_uuid(organization_id)
        if organization_id is None:
            return False
        membership = OrganizationMembership.objects.get_membership(organization_id, user.id)
        return membership is not None and membership.grants(role)

    @classmethod
    def add_member(cls, organization_id, user_id, role=OrganizationMembership.ROLE_VIEWER,
                   actor=None, request=None) -> Result:
        from apps.rbac.models import AuditLog, User

        if role not in dict(OrganizationMembership.ROLE_CHOICES):
            return Result.failure(ErrorKind.VALIDATION_FAILED, f"Invalid organization role: {role}", 'INVALID_ROLE')

        organization_id, user_id = parse_uuid(organization_id), parse_uuid(user_id)
        organization = Organization.objects.filter(id=organization_id).first() if organization_id else None
        if organization is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Organization does not exist.", 'ORGANIZATION_NOT_FOUND')

        user = User.objects.filter(id=user_id).first() if user_id else None
        if user is None:
            return Result.failure(ErrorKind.NOT_FOUND, "User does not exist.", 'PRINCIPAL_NOT_FOUND')

        try:
            with transaction.atomic():
                membership = OrganizationMembership.objects.create(
                    organization=organization,
                    user=user,
                    role=role,
                    invited_by=actor,
                )
                AuditLog.log_action(
                    action=AuditLog.ACTION_MEMBER_ADDED,
                    user=actor,
                    target_type='OrganizationMembership',
                    target_id=membership.id,
                    diff={'organization_id': str(organization.id), 'user_id': str(user.id), 'role': role},
                    request=request,
                )
        except IntegrityError:
            return Result.failure(ErrorKind.CONFLICT, "User is already a member", 'ALREADY_MEMBER')

        logger.info(
            "Organization member added",
            extra={'organization_id': str(organization.id), 'user_id': str(user.id), 'role': role}
        )
        return Result.success(membership)

    @classmethod
    def update_member_role(cls, organization_id, user_id, role, actor=None, request=None) -> Result:
        from apps.rbac.models import AuditLog

        if role not in dict(OrganizationMembership.ROLE_CHOICES):
            return Result.failure(ErrorKind.VALIDATION_FAILED, f"Invalid organization role: {role}", 'INVALID_ROLE')

        organization_id, user_id = parse_uuid(organization_id), parse_uuid(user_id)
        if organization_id is None or user_id is None:
            return cls._membership_not_found()

        with transaction.atomic():
            membership = (
                OrganizationMembership.objects
                .select_for_update()
                .filter(organization_id=organization_id, user_id=user_id)
                .first()
            )
            if membership is None:
                return cls._membership_not_found()

            if membership.role == role:
                return Result.success(membership)

            if membership.role == OrganizationMembership.ROLE_ADMIN and cls._is_last_admin(organization_id):
                return Result.failure(
                    ErrorKind.VALIDATION_FAILED,
                    "cannot remove the only organization admin",
                    'SOLE_ORG_ADMIN',
                )

            old_role = membership.role
            membership.role = role
            membership.save(update_fields=['role', 'updated_at'])
            AuditLog.log_action(
                action=AuditLog.ACTION_MEMBER_UPDATED,
                user=actor,
                target_type='OrganizationMembership',
                target_id=membership.id,
                diff={'role': {'old': old_role, 'new': role}},
                request=request,
            )

        return Result.success(membership)

    @classmethod
    def remove_member(cls, organization_id, user_id, actor=None, request=None) -> Result:
        from apps.rbac.models import AuditLog

        organization_id, user_id = parse_uuid(organization_id), parse_uuid(user_id)
        if organization_id is None or user_id is None:
            return cls._membership_not_found()

        with transaction.atomic():
            membership = (
                OrganizationMembership.objects
                .select_for_update()
                .filter(organization_id=organization_id, user_id=user_id)
                .first()
            )
            if membership is None:
                return cls._membership_not_found()

            if membership.role == OrganizationMembership.ROLE_ADMIN and cls._is_last_admin(organization_id):
                return Result.failure(
                    ErrorKind.VALIDATION_FAILED,
                    "cannot remove the only organization admin",
                    'SOLE_ORG_ADMIN',
                )

            membership_id = membership.id
            membership.delete()
            AuditLog.log_action(
                action=AuditLog.ACTION_MEMBER_REMOVED,
                user=actor,
                target_type='OrganizationMembership',
                target_id=membership_id,
                diff={'organization_id': str(organization_id), 'user_id': str(user_id)},
                request=request,
            )

        return Result.success(None)

    @staticmethod
    def _membership_not_found() -> Result:
        return Result.failure(ErrorKind.NOT_FOUND, "Membership not found.", 'MEMBERSHIP_NOT_FOUND')

    @staticmethod
    def _is_last_admin(organization_id) -> bool:
        admins = list(
            OrganizationMembership.objects
            .select_for_update()
            .filter(organization_id=organization_id, role=OrganizationMembership.ROLE_ADMIN)
            .values_list('id', flat=True)
        )
        return len(admins) <= 1
