"""
RBAC models for event-scoped access control.

Implements:
- User: global principal identity (email unique, case-insensitive)
- RoleName: the closed, ranked set of roles
- RoleGrant: the Role Store; ties a principal to a role globally or for one event
- EventInvite: redeemable codes that grant an event role
- AuditLog: append-only audit trail with structured state transitions
"""
import logging
import uuid

from django.contrib.auth.hashers import check_password, make_password
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from apps.core.models import BaseModel

logger = logging.getLogger(__name__)


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email, ignoring case."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email address is required')

        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Create a Django admin superuser (site staff, not an RBAC SuperAdmin)."""
        extra_fields['is_superuser'] = True
        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        # Emails are unique case-insensitively, so the whole address is folded.
        return (email or '').strip().lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: self.normalize_email(email)})


class User(BaseModel):
    """
    Global principal identity.

    Principals are never deleted; removing every role grant is how access
    is withdrawn. This is the AUTH_USER_MODEL for the whole project.
    """

    email = models.EmailField(
        unique=True,
        help_text="Email address, stored lower-cased"
    )
    name = models.CharField(
        max_length=200,
        blank=True,
        help_text="Display name"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether the principal may authenticate"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Django admin access only; RBAC SuperAdmin is a RoleGrant"
    )
    last_login_at = models.DateTimeField(null=True, blank=True)

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self):
        return self.email

    def save(self, *args, **kwargs):
        self.email = UserManager.normalize_email(self.email)
        super().save(*args, **kwargs)

    @property
    def display_name(self):
        return self.name or self.email

    @property
    def password(self):
        """Alias used by Django admin."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def get_full_name(self):
        return self.display_name

    def get_short_name(self):
        return self.display_name

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        return self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)


class RoleName(models.TextChoices):
    """
    The closed set of roles, declared highest privilege first.

    Declaration order is the hierarchy used to pick one effective role
    when a principal holds several in the same scope.
    """
    SUPER_ADMIN = 'SuperAdmin', 'Super Admin'
    ADMIN = 'Admin', 'Event Admin'
    RESPONDER = 'Responder', 'Responder'
    REPORTER = 'Reporter', 'Reporter'

    @property
    def rank(self):
        """0 is the most privileged."""
        return list(RoleName).index(self)

    @classmethod
    def parse(cls, value):
        """Return the member for ``value`` or None if it is not a known role."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

    @classmethod
    def highest(cls, roles):
        roles = [cls(role) for role in roles]
        if not roles:
            return None
        return min(roles, key=lambda role: role.rank)


class RoleGrantQuerySet(models.QuerySet):

    def global_grants(self):
        return self.filter(event__isnull=True)

    def for_event(self, event_id):
        return self.filter(event_id=event_id)

    def for_user(self, user_id):
        return self.filter(user_id=user_id)

    def with_role(self, *roles):
        return self.filter(role__in=[RoleName(role) for role in roles])


class RoleGrant(BaseModel):
    """
    One (principal, scope, role) fact.

    ``event`` is null for a global grant; only SuperAdmin is granted
    globally. The triple is unique, and a repeated grant is a no-op at
    the service layer. Grants are removed with a hard delete so that
    the uniqueness constraint never collides with a revoked row.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='role_grants'
    )
    event = models.ForeignKey(
        'events.Event',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='role_grants',
        help_text="Event scope; null for a global grant"
    )
    role = models.CharField(
        max_length=20,
        choices=RoleName.choices,
        db_index=True
    )

    objects = RoleGrantQuerySet.as_manager()

    class Meta:
        db_table = 'role_grants'
        ordering = ['created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'event', 'role'],
                condition=Q(event__isnull=False),
                name='unique_event_role_grant',
            ),
            models.UniqueConstraint(
                fields=['user', 'role'],
                condition=Q(event__isnull=True),
                name='unique_global_role_grant',
            ),
        ]
        indexes = [
            models.Index(fields=['event', 'role']),
        ]

    def __str__(self):
        scope = self.event_id or 'global'
        return f"{self.user_id} - {self.role} @ {scope}"

    @property
    def is_global(self):
        return self.event_id is None

    def delete(self, using=None, keep_parents=False):
        return self.hard_delete(using=using, keep_parents=keep_parents)


class EventInviteQuerySet(models.QuerySet):

    def for_event(self, event_id):
        return self.filter(event_id=event_id)

    def usable(self, now=None):
        now = now or timezone.now()
        return (
            self.filter(disabled=False)
            .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
            .filter(Q(max_uses__isnull=True) | Q(use_count__lt=F('max_uses')))
        )


class EventInvite(BaseModel):
    """
    A shareable code that grants one event role to whoever redeems it.

    ``max_uses`` null means unlimited. Invites are removed with a hard
    delete; ``disabled`` is how an admin pauses one.
    """
    REASON_DISABLED = 'Invite is disabled'
    REASON_EXPIRED = 'Invite has expired'
    REASON_EXHAUSTED = 'Invite has reached maximum uses'

    event = models.ForeignKey(
        'events.Event',
        on_delete=models.CASCADE,
        related_name='invites'
    )
    code = models.CharField(
        max_length=32,
        unique=True,
        help_text="Code shared with invitees"
    )
    role = models.CharField(
        max_length=20,
        choices=RoleName.choices,
        help_text="Event role granted on redemption"
    )
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invites_created'
    )
    expires_at = models.DateTimeField(null=True, blank=True)
    max_uses = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Redemption limit; null for unlimited"
    )
    use_count = models.PositiveIntegerField(default=0)
    disabled = models.BooleanField(default=False)
    note = models.TextField(blank=True)

    objects = EventInviteQuerySet.as_manager()

    class Meta:
        db_table = 'event_invites'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.code} ({self.role} @ {self.event_id})"

    def unusable_reason(self, now=None):
        """Why the invite cannot be redeemed, or None if it can."""
        if self.disabled:
            return self.REASON_DISABLED
        if self.expires_at is not None and self.expires_at <= (now or timezone.now()):
            return self.REASON_EXPIRED
        if self.max_uses is not None and self.use_count >= self.max_uses:
            return self.REASON_EXHAUSTED
        return None

    @property
    def is_usable(self):
        return self.unusable_reason() is None

    def delete(self, using=None, keep_parents=False):
        return self.hard_delete(using=using, keep_parents=keep_parents)


class AuditLogImmutableError(Exception):
    """Raised on any attempt to modify or remove an audit entry."""


class AuditLogQuerySet(models.QuerySet):

    def for_event(self, event_id):
        return self.filter(event_id=event_id)

    def for_target(self, target_type, target_id=None):
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs

    def transitions(self):
        return self.filter(action=AuditLog.ACTION_STATE_CHANGED)

    def update(self, **kwargs):
        raise AuditLogImmutableError("Audit log entries cannot be updated")

    def delete(self):
        raise AuditLogImmutableError("Audit log entries cannot be deleted")


class AuditLog(models.Model):
    """
    Append-only audit trail.

    Transition entries carry ``from_state``/``to_state`` as structured
    columns; ``description`` is derived from them for display.
    Timestamps are assigned by the server at write time.
    """
    ACTION_STATE_CHANGED = 'report_state_changed'
    ACTION_ASSIGNED = 'report_assigned'
    ACTION_SUBMITTED = 'report_submitted'
    ACTION_DETAILS_UPDATED = 'report_details_updated'
    ACTION_COMMENT_ADDED = 'report_comment_added'
    ACTION_ROLE_ASSIGNED = 'role_assigned'
    ACTION_ROLE_REVOKED = 'role_revoked'
    ACTION_USER_REMOVED = 'event_user_removed'
    ACTION_MEMBER_ADDED = 'organization_member_added'
    ACTION_MEMBER_UPDATED = 'organization_member_updated'
    ACTION_MEMBER_REMOVED = 'organization_member_removed'
    ACTION_INVITE_CREATED = 'invite_created'
    ACTION_INVITE_UPDATED = 'invite_updated'
    ACTION_INVITE_DELETED = 'invite_deleted'
    ACTION_INVITE_REDEEMED = 'invite_redeemed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    event = models.ForeignKey(
        'events.Event',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Event scope (null for global actions)"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Actor (null for system or anonymous actions)"
    )
    action = models.CharField(max_length=100, db_index=True)
    target_type = models.CharField(max_length=50, db_index=True)
    target_id = models.UUIDField(null=True, blank=True, db_index=True)

    from_state = models.CharField(max_length=20, null=True, blank=True)
    to_state = models.CharField(max_length=20, null=True, blank=True)

    diff = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    request_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['event', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        return f"{self.action} {self.target_type}:{self.target_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AuditLogImmutableError("Audit log entries cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise AuditLogImmutableError("Audit log entries cannot be deleted")

    @property
    def description(self):
        if self.action == self.ACTION_STATE_CHANGED:
            return f"State changed from {self.from_state} to {self.to_state}"
        if self.action == self.ACTION_ASSIGNED:
            assignee = self.diff.get('assigned_to_email') or self.diff.get('assigned_to')
            return f"Assigned to {assignee}" if assignee else "Assignment cleared"
        if self.action in (self.ACTION_ROLE_ASSIGNED, self.ACTION_ROLE_REVOKED):
            verb = 'Granted' if self.action == self.ACTION_ROLE_ASSIGNED else 'Revoked'
            return f"{verb} {self.diff.get('role')} for {self.diff.get('user_email')}"
        return self.action.replace('_', ' ').capitalize()

    @classmethod
    def log_action(cls, action, user=None, event=None, target_type=None, target_id=None,
                   from_state=None, to_state=None, diff=None, metadata=None, request=None):
        """
        Append one audit entry.

        Errors propagate: callers write audit entries inside the same
        transaction as the change they describe.
        """
        if user is not None and not user.is_authenticated:
            user = None

        log_data = {
            'action': action,
            'user': user,
            'target_type': target_type or '',
            'target_id': target_id,
            'from_state': from_state,
            'to_state': to_state,
            'diff': diff or {},
            'metadata': metadata or {},
        }
        if isinstance(event, models.Model):
            log_data['event'] = event
        else:
            log_data['event_id'] = event

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', None)

        return cls.objects.create(**log_data)

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
