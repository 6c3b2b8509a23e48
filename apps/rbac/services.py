"""
RBAC services: authorization resolution, the access control guard,
role grant administration, event invites and JWT issuing.
"""
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional, Set, Tuple

import jwt
from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.db.models import Count, F, Q, Sum
from django.utils import timezone as django_timezone

from apps.core.exceptions import ErrorKind, Result
from apps.core.logging import SecurityLogger
from apps.events.services import EventDirectory, OrganizationService, parse_uuid
from apps.rbac.models import AuditLog, EventInvite, RoleGrant, RoleName, User

logger = logging.getLogger(__name__)


def _principal_id(principal):
    return getattr(principal, 'id', principal)


def _scope_key(event_id) -> Optional[str]:
    """Canonical string form of an event scope (None for global)."""
    if event_id is None:
        return None
    parsed = parse_uuid(event_id)
    return str(parsed) if parsed else str(event_id)


class AuthorizationResolver:
    """
    Turns Role Store facts into effective roles for a principal.

    A principal's full grant list is cached under one key and rebuilt
    from the database after ``RBAC_ROLE_CACHE_TTL`` seconds or whenever a
    grant for that principal changes (see ``apps.rbac.signals``).
    """

    CACHE_KEY = 'rbac:grants:{user_id}'

    @classmethod
    def _cache_key(cls, user_id) -> str:
        return cls.CACHE_KEY.format(user_id=user_id)

    @classmethod
    def get_grants(cls, principal) -> FrozenSet[Tuple[Optional[str], RoleName]]:
        """All (scope, role) pairs held by ``principal``; scope None is global."""
        user_id = _principal_id(principal)
        key = cls._cache_key(user_id)

        cached = cache.get(key)
        if cached is not None:
            return frozenset((scope, RoleName(role)) for scope, role in cached)

        rows = [
            (_scope_key(event_id), role)
            for event_id, role in RoleGrant.objects.filter(user_id=user_id).values_list('event_id', 'role')
        ]
        ttl = getattr(settings, 'RBAC_ROLE_CACHE_TTL', 300)
        if ttl:
            cache.set(key, rows, timeout=ttl)

        return frozenset((scope, RoleName(role)) for scope, role in rows)

    @classmethod
    def invalidate(cls, principal) -> None:
        cache.delete(cls._cache_key(_principal_id(principal)))

    @classmethod
    def is_global_superadmin(cls, principal) -> bool:
        """True iff the principal holds a global SuperAdmin grant."""
        return (None, RoleName.SUPER_ADMIN) in cls.get_grants(principal)

    @classmethod
    def event_roles(cls, principal, event_id) -> Set[RoleName]:
        """Every role the principal holds at this event's scope (no global grants)."""
        scope = _scope_key(event_id)
        return {role for grant_scope, role in cls.get_grants(principal) if grant_scope == scope and scope is not None}

    @classmethod
    def all_roles(cls, principal) -> Set[RoleName]:
        return {role for _, role in cls.get_grants(principal)}

    @classmethod
    def effective_event_role(cls, principal, event_id) -> Optional[RoleName]:
        """
        The single highest-ranked role for the event.

        A global SuperAdmin resolves to SuperAdmin for every event without
        needing an event-scoped grant.
        """
        if cls.is_global_superadmin(principal):
            return RoleName.SUPER_ADMIN
        return RoleName.highest(cls.event_roles(principal, event_id))

    @staticmethod
    def organization_role(principal, organization_id) -> Optional[str]:
        return OrganizationService.organization_role(_principal_id(principal), organization_id)


@dataclass(frozen=True)
class ScopeHint:
    """Where a request points: a direct event id, an event slug, or neither."""
    event_id: Any = None
    slug: Optional[str] = None

    @classmethod
    def from_kwargs(cls, kwargs) -> 'ScopeHint':
        """Build a hint from URL kwargs (``event_id`` or ``slug``)."""
        return cls(event_id=kwargs.get('event_id'), slug=kwargs.get('slug'))


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    event_id: Optional[str] = None

    NOT_AUTHENTICATED = 'not authenticated'
    INSUFFICIENT_ROLE = 'insufficient role'
    UNAVAILABLE = 'authorization unavailable'

    @classmethod
    def allow(cls, event_id=None):
        return cls(allowed=True, event_id=event_id)

    @classmethod
    def deny(cls, kind: ErrorKind, reason: str, event_id=None):
        return cls(allowed=False, reason=reason, error_kind=kind, event_id=event_id)

    def to_result(self) -> Result:
        if self.allowed:
            return Result.success(self)
        return Result.failure(self.error_kind, self.reason, self.error_kind.name)


class AccessGuard:
    """
    The decision procedure run before every protected operation.

    ``authorize`` never raises: an internal failure while resolving roles
    is logged and returned as a deny (fail-closed).
    """

    @staticmethod
    def _implicit_superadmin_override() -> bool:
        return getattr(settings, 'RBAC_SUPERADMIN_IMPLICIT_OVERRIDE', True)

    @classmethod
    def authorize(cls, principal, scope_hint: Optional[ScopeHint], allowed_roles: Iterable,
                  request=None, global_only=False) -> AccessDecision:
        """
        Decide whether ``principal`` may act in the hinted scope.

        Args:
            principal: The authenticated user, or None
            scope_hint: Event id or slug from the request, if any
            allowed_roles: Roles that grant access; membership, not rank, is checked
            request: Optional request used for security logging
            global_only: Ignore event-scoped grants entirely

        Returns:
            AccessDecision; denials carry the ``ErrorKind`` to report
        """
        if principal is None or not getattr(principal, 'is_authenticated', False):
            return AccessDecision.deny(ErrorKind.UNAUTHENTICATED, AccessDecision.NOT_AUTHENTICATED)

        allowed = {RoleName(role) for role in allowed_roles}
        scope_hint = scope_hint or ScopeHint()
        event_id = None

        try:
            if scope_hint.event_id:
                event_id = _scope_key(scope_hint.event_id)
            elif scope_hint.slug:
                resolved = EventDirectory.resolve_slug(scope_hint.slug)
                event_id = _scope_key(resolved)

            superadmin_accepted = RoleName.SUPER_ADMIN in allowed or cls._implicit_superadmin_override()
            if superadmin_accepted and AuthorizationResolver.is_global_superadmin(principal):
                return AccessDecision.allow(event_id)

            if global_only:
                granted = set()
            elif event_id is not None:
                granted = AuthorizationResolver.event_roles(principal, event_id) & allowed
            else:
                granted = AuthorizationResolver.all_roles(principal) & allowed
                if granted:
                    # Scope could not be determined, so any event's grant counts.
                    SecurityLogger.log_broad_scope_check(
                        principal, allowed, scope_hint=scope_hint.slug
                    )
        except Exception as exc:
            # Role Store or cache failure: deny rather than guess.
            logger.error(
                "Authorization check failed",
                extra={'user_id': str(principal.id), 'event_id': event_id},
                exc_info=True
            )
            SecurityLogger.log_authorization_error(principal, event_id, error=exc.__class__.__name__)
            return AccessDecision.deny(ErrorKind.INTERNAL, AccessDecision.UNAVAILABLE, event_id)

        if granted:
            return AccessDecision.allow(event_id)

        SecurityLogger.log_permission_denied(
            principal,
            event_id,
            allowed,
            reason=AccessDecision.INSUFFICIENT_ROLE,
            ip_address=request.META.get('REMOTE_ADDR') if request is not None else None,
        )
        return AccessDecision.deny(ErrorKind.FORBIDDEN, AccessDecision.INSUFFICIENT_ROLE, event_id)

    @classmethod
    def require_superadmin(cls, principal, request=None) -> AccessDecision:
        """A pure global check: only a global SuperAdmin grant passes."""
        return cls.authorize(principal, None, {RoleName.SUPER_ADMIN}, request=request, global_only=True)


class RoleGrantService:
    """
    Administration of role grants.

    All operations return a ``Result``; expected failures never raise.
    """

    @staticmethod
    def _get_user(principal_id) -> Optional[User]:
        user_uuid = parse_uuid(_principal_id(principal_id))
        if user_uuid is None:
            return None
        return User.objects.filter(id=user_uuid).first()

    @classmethod
    def assign_role(cls, event_id, principal_id, role_name, actor=None, request=None) -> Result:
        """
        Grant ``role_name`` to a principal for one event.

        Idempotent: granting an existing triple returns the existing grant
        and writes no audit entry.

        Args:
            event_id: Event to grant the role for
            principal_id: User (or user id) receiving the role
            role_name: Any role except SuperAdmin, which is global only
            actor: User performing the change, recorded in the audit log
            request: Optional request for audit metadata

        Returns:
            Result carrying the ``RoleGrant``
        """
        role = RoleName.parse(role_name)
        if role is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Role does not exist.", 'ROLE_NOT_FOUND')
        if role is RoleName.SUPER_ADMIN:
            return Result.failure(
                ErrorKind.VALIDATION_FAILED,
                "SuperAdmin can only be granted globally.",
                'INVALID_SCOPE',
            )

        user = cls._get_user(principal_id)
        if user is None:
            return Result.failure(ErrorKind.NOT_FOUND, "User does not exist.", 'PRINCIPAL_NOT_FOUND')

        event = EventDirectory.get_event(event_id)
        if event is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Event does not exist.", 'EVENT_NOT_FOUND')

        with transaction.atomic():
            grant, created = RoleGrant.objects.get_or_create(user=user, event=event, role=role)
            if created:
                AuditLog.log_action(
                    action=AuditLog.ACTION_ROLE_ASSIGNED,
                    user=actor,
                    event=event,
                    target_type='RoleGrant',
                    target_id=grant.id,
                    diff={'user_id': str(user.id), 'user_email': user.email, 'role': role.value},
                    request=request,
                )

        if created:
            logger.info(
                "Role granted",
                extra={'event_id': str(event.id), 'user_id': str(user.id), 'role': role.value}
            )
        return Result.success(grant)

    @classmethod
    def revoke_role(cls, event_id, principal_id, role_name, actor=None, request=None) -> Result:
        """
        Remove one event-scoped grant.

        The last Admin of an event cannot be revoked.

        Args:
            event_id: Event the grant belongs to
            principal_id: User (or user id) holding the grant
            role_name: Role to revoke
            actor: User performing the change
            request: Optional request for audit metadata

        Returns:
            Empty Result, or a failure with ``GRANT_NOT_FOUND`` or ``SOLE_ADMIN``
        """
        role = RoleName.parse(role_name)
        event_uuid = parse_uuid(event_id)
        user_uuid = parse_uuid(_principal_id(principal_id))
        if role is None or event_uuid is None or user_uuid is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Role grant not found.", 'GRANT_NOT_FOUND')

        with transaction.atomic():
            grant = (
                RoleGrant.objects
                .select_for_update()
                .filter(event_id=event_uuid, user_id=user_uuid, role=role)
                .select_related('user')
                .first()
            )
            if grant is None:
                return Result.failure(ErrorKind.NOT_FOUND, "Role grant not found.", 'GRANT_NOT_FOUND')

            if role is RoleName.ADMIN and cls._admin_user_ids(event_uuid) == {user_uuid}:
                SecurityLogger.log_sole_admin_removal_blocked(actor, event_uuid, user_uuid)
                return Result.failure(
                    ErrorKind.VALIDATION_FAILED, "cannot remove the only admin", 'SOLE_ADMIN'
                )

            grant_id = grant.id
            grant.delete()
            AuditLog.log_action(
                action=AuditLog.ACTION_ROLE_REVOKED,
                user=actor,
                event=event_uuid,
                target_type='RoleGrant',
                target_id=grant_id,
                diff={'user_id': str(user_uuid), 'user_email': grant.user.email, 'role': role.value},
                request=request,
            )

        logger.info(
            "Role revoked",
            extra={'event_id': str(event_uuid), 'user_id': str(user_uuid), 'role': role.value}
        )
        return Result.success(None)

    @classmethod
    def remove_event_user(cls, event_id, principal_id, actor=None, request=None) -> Result:
        """
        Remove every grant a principal holds for the event.

        Returns:
            Result carrying the removed role names, highest first
        """
        event_uuid = parse_uuid(event_id)
        user_uuid = parse_uuid(_principal_id(principal_id))
        if event_uuid is None or user_uuid is None:
            return Result.failure(ErrorKind.NOT_FOUND, "User is not part of this event.", 'GRANT_NOT_FOUND')

        with transaction.atomic():
            grants = list(
                RoleGrant.objects
                .select_for_update()
                .filter(event_id=event_uuid, user_id=user_uuid)
            )
            if not grants:
                return Result.failure(ErrorKind.NOT_FOUND, "User is not part of this event.", 'GRANT_NOT_FOUND')

            roles = sorted((RoleName(grant.role) for grant in grants), key=lambda r: r.rank)
            if RoleName.ADMIN in roles and cls._admin_user_ids(event_uuid) == {user_uuid}:
                SecurityLogger.log_sole_admin_removal_blocked(actor, event_uuid, user_uuid)
                return Result.failure(
                    ErrorKind.VALIDATION_FAILED, "cannot remove the only admin", 'SOLE_ADMIN'
                )

            RoleGrant.objects.filter(id__in=[grant.id for grant in grants]).delete()
            AuditLog.log_action(
                action=AuditLog.ACTION_USER_REMOVED,
                user=actor,
                event=event_uuid,
                target_type='User',
                target_id=user_uuid,
                diff={'roles': [role.value for role in roles]},
                request=request,
            )

        return Result.success([role.value for role in roles])

    @staticmethod
    def _admin_user_ids(event_id) -> Set[uuid.UUID]:
        return set(
            RoleGrant.objects
            .select_for_update()
            .filter(event_id=event_id, role=RoleName.ADMIN)
            .values_list('user_id', flat=True)
        )

    @classmethod
    def grant_global_superadmin(cls, principal_id, actor=None) -> Result:
        """Grant the global SuperAdmin role. Repeating the grant is a no-op."""
        user = cls._get_user(principal_id)
        if user is None:
            return Result.failure(ErrorKind.NOT_FOUND, "User does not exist.", 'PRINCIPAL_NOT_FOUND')

        with transaction.atomic():
            grant, created = RoleGrant.objects.get_or_create(user=user, event=None, role=RoleName.SUPER_ADMIN)
            if created:
                AuditLog.log_action(
                    action=AuditLog.ACTION_ROLE_ASSIGNED,
                    user=actor,
                    target_type='RoleGrant',
                    target_id=grant.id,
                    diff={'user_id': str(user.id), 'user_email': user.email, 'role': RoleName.SUPER_ADMIN.value},
                )
        return Result.success(grant)

    @classmethod
    def revoke_global_superadmin(cls, principal_id, actor=None) -> Result:
        """
        Revoke a global SuperAdmin grant.

        Returns:
            Empty Result, or NOT_FOUND when the principal is unknown or
            holds no global grant
        """
        user = cls._get_user(principal_id)
        if user is None:
            return Result.failure(ErrorKind.NOT_FOUND, "User does not exist.", 'PRINCIPAL_NOT_FOUND')

        with transaction.atomic():
            grant = RoleGrant.objects.global_grants().filter(user=user, role=RoleName.SUPER_ADMIN).first()
            if grant is None:
                return Result.failure(ErrorKind.NOT_FOUND, "Role grant not found.", 'GRANT_NOT_FOUND')
            grant_id = grant.id
            grant.delete()
            AuditLog.log_action(
                action=AuditLog.ACTION_ROLE_REVOKED,
                user=actor,
                target_type='RoleGrant',
                target_id=grant_id,
                diff={'user_id': str(user.id), 'user_email': user.email, 'role': RoleName.SUPER_ADMIN.value},
            )
        return Result.success(None)

    @staticmethod
    def list_event_users(event_id):
        """Principals with grants for the event, each with roles highest first."""
        grants = (
            RoleGrant.objects
            .filter(event_id=event_id)
            .select_related('user')
            .order_by('user__email')
        )
        users = {}
        for grant in grants:
            entry = users.setdefault(grant.user_id, {'user': grant.user, 'roles': []})
            entry['roles'].append(RoleName(grant.role))
        for entry in users.values():
            entry['roles'].sort(key=lambda role: role.rank)
        return list(users.values())

    @staticmethod
    def users_with_roles(event_id, roles) -> Set[uuid.UUID]:
        """Ids of principals holding any of ``roles`` for the event."""
        return set(
            RoleGrant.objects
            .filter(event_id=event_id, role__in=[RoleName(role) for role in roles])
            .values_list('user_id', flat=True)
        )


@dataclass(frozen=True)
class InviteCheck:
    """Outcome of looking up an invite code without redeeming it."""
    valid: bool
    reason: Optional[str] = None
    invite: Optional[EventInvite] = None

    NOT_FOUND = 'Invite not found'


class InviteService:
    """
    Event invite links.

    An invite carries one event role. Redemption grants that role through
    ``RoleGrantService.assign_role``, so the grant and its audit entry are
    the same as for a manual assignment.
    """

    CODE_BYTES = 6
    MAX_CODE_ATTEMPTS = 10
    UPDATABLE_FIELDS = ('disabled', 'note', 'expires_at', 'max_uses')

    REASON_CODES = {
        EventInvite.REASON_DISABLED: 'INVITE_DISABLED',
        EventInvite.REASON_EXPIRED: 'INVITE_EXPIRED',
        EventInvite.REASON_EXHAUSTED: 'INVITE_EXHAUSTED',
    }

    @classmethod
    def _generate_code(cls) -> str:
        return secrets.token_urlsafe(cls.CODE_BYTES)

    @staticmethod
    def _validate_limits(max_uses, expires_at) -> Optional[Result]:
        if max_uses is not None and max_uses < 1:
            return Result.failure(ErrorKind.VALIDATION_FAILED, "max_uses must be at least 1.", 'INVALID_MAX_USES')
        if expires_at is not None and expires_at <= django_timezone.now():
            return Result.failure(ErrorKind.VALIDATION_FAILED, "expires_at must be in the future.", 'INVALID_EXPIRY')
        return None

    @staticmethod
    def _jsonable(value):
        return value.isoformat() if isinstance(value, datetime) else value

    @classmethod
    def create_invite(cls, event_id, role_name, actor=None, max_uses=None, expires_at=None,
                      note='', request=None) -> Result:
        """
        Create an invite link for an event.

        Args:
            event_id: Event the invite grants access to
            role_name: Event role granted on redemption (SuperAdmin is refused)
            actor: Admin creating the invite
            max_uses: Redemption limit, None for unlimited
            expires_at: Aware datetime after which the code stops working
            note: Free text shown to admins only

        Returns:
            Result carrying the new ``EventInvite``
        """
        role = RoleName.parse(role_name)
        if role is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Role does not exist.", 'ROLE_NOT_FOUND')
        if role is RoleName.SUPER_ADMIN:
            return Result.failure(
                ErrorKind.VALIDATION_FAILED,
                "SuperAdmin can only be granted globally.",
                'INVALID_SCOPE',
            )

        failure = cls._validate_limits(max_uses, expires_at)
        if failure is not None:
            return failure

        event = EventDirectory.get_event(event_id)
        if event is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Event does not exist.", 'EVENT_NOT_FOUND')

        for _ in range(cls.MAX_CODE_ATTEMPTS):
            code = cls._generate_code()
            if not EventInvite.objects.filter(code=code).exists():
                break
        else:
            logger.error("Could not generate a unique invite code", extra={'event_id': str(event.id)})
            return Result.failure(
                ErrorKind.INTERNAL, "Failed to generate a unique invite code.", 'INVITE_CODE_UNAVAILABLE'
            )

        with transaction.atomic():
            invite = EventInvite.objects.create(
                event=event,
                code=code,
                role=role,
                created_by=actor if actor is not None and actor.is_authenticated else None,
                max_uses=max_uses,
                expires_at=expires_at,
                note=note or '',
            )
            AuditLog.log_action(
                action=AuditLog.ACTION_INVITE_CREATED,
                user=actor,
                event=event,
                target_type='EventInvite',
                target_id=invite.id,
                diff={'role': role.value, 'max_uses': max_uses, 'expires_at': cls._jsonable(expires_at)},
                request=request,
            )

        logger.info("Invite created", extra={'event_id': str(event.id), 'invite_id': str(invite.id), 'role': role.value})
        return Result.success(invite)

    @staticmethod
    def list_invites(event_id) -> Result:
        """Invites for the event, newest first."""
        event_uuid = parse_uuid(event_id)
        if event_uuid is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Event does not exist.", 'EVENT_NOT_FOUND')
        return Result.success(EventInvite.objects.for_event(event_uuid).select_related('created_by'))

    @staticmethod
    def _locked_invite(event_id, invite_id) -> Optional[EventInvite]:
        event_uuid, invite_uuid = parse_uuid(event_id), parse_uuid(invite_id)
        if event_uuid is None or invite_uuid is None:
            return None
        return EventInvite.objects.select_for_update().filter(id=invite_uuid, event_id=event_uuid).first()

    @classmethod
    def update_invite(cls, event_id, invite_id, actor=None, request=None, **changes) -> Result:
        """
        Change an invite's ``disabled`` flag, note, expiry or use limit.

        Fields left out of ``changes`` keep their values. Lowering
        ``max_uses`` to or below ``use_count`` exhausts the invite.
        """
        unknown = set(changes) - set(cls.UPDATABLE_FIELDS)
        if unknown:
            return Result.failure(
                ErrorKind.VALIDATION_FAILED,
                f"Invite fields cannot be changed: {', '.join(sorted(unknown))}",
                'INVALID_FIELD',
            )
        failure = cls._validate_limits(changes.get('max_uses'), changes.get('expires_at'))
        if failure is not None:
            return failure

        with transaction.atomic():
            invite = cls._locked_invite(event_id, invite_id)
            if invite is None:
                return Result.failure(ErrorKind.NOT_FOUND, "Invite not found.", 'INVITE_NOT_FOUND')

            diff = {}
            for field, value in changes.items():
                if field == 'note':
                    value = value or ''
                old = getattr(invite, field)
                if old != value:
                    diff[field] = {'old': cls._jsonable(old), 'new': cls._jsonable(value)}
                    setattr(invite, field, value)

            if diff:
                invite.save(update_fields=list(diff) + ['updated_at'])
                AuditLog.log_action(
                    action=AuditLog.ACTION_INVITE_UPDATED,
                    user=actor,
                    event=invite.event_id,
                    target_type='EventInvite',
                    target_id=invite.id,
                    diff=diff,
                    request=request,
                )

        return Result.success(invite)

    @classmethod
    def delete_invite(cls, event_id, invite_id, actor=None, request=None) -> Result:
        with transaction.atomic():
            invite = cls._locked_invite(event_id, invite_id)
            if invite is None:
                return Result.failure(ErrorKind.NOT_FOUND, "Invite not found.", 'INVITE_NOT_FOUND')

            invite_uuid = invite.id
            invite.delete()
            AuditLog.log_action(
                action=AuditLog.ACTION_INVITE_DELETED,
                user=actor,
                event=invite.event_id,
                target_type='EventInvite',
                target_id=invite_uuid,
                diff={'role': invite.role, 'use_count': invite.use_count},
                request=request,
            )
        return Result.success(None)

    @staticmethod
    def _find(code, lock=False) -> Optional[EventInvite]:
        if not code:
            return None
        invites = EventInvite.objects.select_for_update() if lock else EventInvite.objects
        invite = invites.filter(code=code).first()
        # Invites of a deleted event are unknown codes.
        if invite is None or EventDirectory.get_event(invite.event_id) is None:
            return None
        return invite

    @classmethod
    def validate_invite(cls, code) -> InviteCheck:
        """
        Look up a code without redeeming it.

        Returns:
            InviteCheck with ``valid`` False and a human readable ``reason``
            for unknown, disabled, expired or used-up codes
        """
        invite = cls._find(code)
        if invite is None:
            return InviteCheck(valid=False, reason=InviteCheck.NOT_FOUND)
        reason = invite.unusable_reason()
        return InviteCheck(valid=reason is None, reason=reason, invite=invite)

    @classmethod
    def redeem_invite(cls, code, user, request=None) -> Result:
        """
        Grant the invite's role to ``user`` and count one use.

        Args:
            code: Invite code
            user: Authenticated principal redeeming the code
            request: Optional request for audit metadata

        Returns:
            Result carrying the new ``RoleGrant``. Fails with CONFLICT
            when the principal already holds the invite's role for the
            event, and with VALIDATION_FAILED for disabled, expired or
            used-up invites.
        """
        if user is None or not user.is_authenticated:
            return Result.failure(ErrorKind.UNAUTHENTICATED, "Authentication required.", 'UNAUTHENTICATED')

        with transaction.atomic():
            invite = cls._find(code, lock=True)
            if invite is None:
                return Result.failure(ErrorKind.NOT_FOUND, "Invite not found.", 'INVITE_NOT_FOUND')

            reason = invite.unusable_reason()
            if reason is not None:
                return Result.failure(ErrorKind.VALIDATION_FAILED, reason, cls.REASON_CODES[reason])

            if RoleGrant.objects.filter(event_id=invite.event_id, user_id=user.id, role=invite.role).exists():
                return Result.failure(
                    ErrorKind.CONFLICT, "You already hold this role for the event.", 'ALREADY_MEMBER'
                )

            result = RoleGrantService.assign_role(invite.event_id, user, invite.role, actor=user, request=request)
            if not result.ok:
                return result

            EventInvite.objects.filter(id=invite.id).update(use_count=F('use_count') + 1)
            AuditLog.log_action(
                action=AuditLog.ACTION_INVITE_REDEEMED,
                user=user,
                event=invite.event_id,
                target_type='EventInvite',
                target_id=invite.id,
                diff={'role': invite.role, 'grant_id': str(result.value.id)},
                request=request,
            )

        logger.info(
            "Invite redeemed",
            extra={'event_id': str(invite.event_id), 'invite_id': str(invite.id), 'user_id': str(user.id)}
        )
        return result

    @staticmethod
    def invite_stats(event_id) -> Dict[str, int]:
        """Counts of the event's invites by status, plus total redemptions."""
        now = django_timezone.now()
        invites = EventInvite.objects.for_event(parse_uuid(event_id))
        stats = invites.aggregate(
            total=Count('id'),
            expired=Count('id', filter=Q(expires_at__lte=now)),
            disabled=Count('id', filter=Q(disabled=True)),
            total_uses=Sum('use_count'),
        )
        stats['active'] = invites.usable(now).count()
        stats['total_uses'] = stats['total_uses'] or 0
        return stats


class AuthService:
    """
    JWT issuing and validation for the principal provider.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }
        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """Decoded payload, or None for an invalid or expired token."""
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Expired JWT presented")
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        payload = cls.validate_jwt(token)
        if not payload:
            return None

        user_id = parse_uuid(payload.get('user_id'))
        if user_id is None:
            return None

        return User.objects.filter(id=user_id, is_active=True).first()
