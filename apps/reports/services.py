"""
Report lifecycle services.

``ReportStateMachine.transition_report`` is the only code path that
changes a report's state or assigned responder. Everything it writes
(the report row, audit entries, the internal comment and notifications)
commits or rolls back together.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.core.exceptions import ErrorKind, Result, ServiceError
from apps.core.sentry_utils import add_breadcrumb
from apps.events.services import EventDirectory, parse_uuid
from apps.notifications.models import NotificationType
from apps.notifications.services import NotificationFanout
from apps.rbac.models import AuditLog, RoleName, User
from apps.rbac.services import AccessGuard, AuthorizationResolver, ScopeHint
from apps.reports.models import Report, ReportComment, ReportState

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({RoleName.SUPER_ADMIN, RoleName.ADMIN, RoleName.RESPONDER})
EDITOR_ROLES = frozenset({RoleName.SUPER_ADMIN, RoleName.ADMIN})
ASSIGNABLE_ROLES = frozenset({RoleName.ADMIN, RoleName.RESPONDER})

TITLE_MIN_LENGTH = 10
TITLE_MAX_LENGTH = 70


@dataclass(frozen=True)
class TransitionRequirement:
    requires_notes: bool = False
    requires_assignment: bool = False


TRANSITION_REQUIREMENTS = {
    ReportState.SUBMITTED: TransitionRequirement(),
    ReportState.ACKNOWLEDGED: TransitionRequirement(),
    ReportState.INVESTIGATING: TransitionRequirement(requires_notes=True, requires_assignment=True),
    ReportState.RESOLVED: TransitionRequirement(requires_notes=True),
    ReportState.CLOSED: TransitionRequirement(),
}


def allowed_transitions(state) -> List[ReportState]:
    """States strictly after ``state`` in the forward order."""
    current = ReportState(state)
    return [target for target in ReportState if target.order > current.order]


def _clean_notes(notes) -> Optional[str]:
    if notes is None:
        return None
    notes = str(notes).strip()
    return notes or None


def _roles_for(user, event_id) -> set:
    """Event roles of ``user``, plus SuperAdmin for a global SuperAdmin."""
    if user is None or not user.is_authenticated:
        return set()
    roles = set(AuthorizationResolver.event_roles(user, event_id))
    if AuthorizationResolver.is_global_superadmin(user):
        roles.add(RoleName.SUPER_ADMIN)
    return roles


@dataclass(frozen=True)
class TransitionRecord:
    from_state: str
    to_state: str
    actor_id: Optional[str]
    actor_email: Optional[str]
    timestamp: datetime


class ReportStateMachine:
    """
    Validates and applies report lifecycle transitions.

    Preconditions per target state:

    ============== ============== ==================
    target         requires notes requires assignment
    ============== ============== ==================
    acknowledged   no             no
    investigating  yes            yes
    resolved       yes            no
    closed         no             no
    ============== ============== ==================

    With ``REPORT_ENFORCE_FORWARD_TRANSITIONS`` on (the default) a report
    never moves to an earlier state, and a same-state request is accepted
    only to change the assignment.
    """

    TRANSITION_ROLES = STAFF_ROLES

    @staticmethod
    def _enforce_forward() -> bool:
        return getattr(settings, 'REPORT_ENFORCE_FORWARD_TRANSITIONS', True)

    @classmethod
    def check_preconditions(cls, current_state, target_state, notes=None, assign_to_id=None,
                            assignment_changes=False) -> Optional[ServiceError]:
        """
        Return the first unmet precondition, or None.

        Pure: does not touch the database. Missing assignment is reported
        before missing notes.
        """
        try:
            target = ReportState(target_state)
        except ValueError:
            return ServiceError(
                ErrorKind.VALIDATION_FAILED,
                f"Invalid target state: {target_state}",
                'INVALID_STATE',
            )
        current = ReportState(current_state)

        if cls._enforce_forward():
            if target.order < current.order:
                return ServiceError(
                    ErrorKind.VALIDATION_FAILED,
                    f"Cannot move a report from {current.value} back to {target.value}",
                    'BACKWARD_TRANSITION',
                )
            if target == current and not assignment_changes:
                return ServiceError(
                    ErrorKind.VALIDATION_FAILED,
                    f"Report is already {current.value}",
                    'NO_CHANGE',
                )

        requirement = TRANSITION_REQUIREMENTS[target]
        if requirement.requires_assignment and not assign_to_id:
            return ServiceError(
                ErrorKind.VALIDATION_FAILED,
                f"Transition to {target.value} requires assignment to a responder",
                'ASSIGNMENT_REQUIRED',
            )
        if requirement.requires_notes and not _clean_notes(notes):
            return ServiceError(
                ErrorKind.VALIDATION_FAILED,
                f"Transition to {target.value} requires notes",
                'NOTES_REQUIRED',
            )
        return None

    @staticmethod
    def _resolve_assignee(event_id, assign_to_id) -> Result:
        user_uuid = parse_uuid(assign_to_id)
        assignee = User.objects.filter(id=user_uuid, is_active=True).first() if user_uuid else None
        if assignee is None:
            return Result.failure(
                ErrorKind.VALIDATION_FAILED, "Assigned user does not exist", 'INVALID_ASSIGNEE'
            )
        if not AuthorizationResolver.event_roles(assignee, event_id) & ASSIGNABLE_ROLES:
            return Result.failure(
                ErrorKind.VALIDATION_FAILED,
                "Assigned user must be a Responder or Admin for this event",
                'INVALID_ASSIGNEE',
            )
        return Result.success(assignee)

    @classmethod
    def transition_report(cls, event_id, report_id, target_state, actor, notes=None,
                          assign_to_id=None, expected_revision=None, request=None) -> Result:
        """
        Move a report to ``target_state``.

        Args:
            event_id: Event the report belongs to
            report_id: Report to move
            target_state: One of the ``ReportState`` values
            actor: Event Responder, Admin or a global SuperAdmin
            notes: Required when moving to investigating or resolved
            assign_to_id: Responder to assign; required for ``investigating``
            expected_revision: Revision the caller last read, for optimistic locking
            request: Optional request for audit metadata

        Returns:
            Result carrying the updated report, or a failure of kind
            VALIDATION_FAILED, NOT_FOUND, FORBIDDEN, UNAUTHENTICATED or
            CONFLICT. A CONFLICT means the report changed since
            ``expected_revision`` (or concurrently with this call) and
            nothing was written.
        """
        decision = AccessGuard.authorize(actor, ScopeHint(event_id=event_id), cls.TRANSITION_ROLES, request=request)
        if not decision.allowed:
            return decision.to_result()

        event_uuid = parse_uuid(event_id)
        report_uuid = parse_uuid(report_id)
        if event_uuid is None or report_uuid is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Report not found for this event.", 'REPORT_NOT_FOUND')

        notes = _clean_notes(notes)

        with transaction.atomic():
            report = (
                Report.objects
                .select_for_update()
                .select_related('event')
                .filter(id=report_uuid, event_id=event_uuid)
                .first()
            )
            if report is None:
                return Result.failure(ErrorKind.NOT_FOUND, "Report not found for this event.", 'REPORT_NOT_FOUND')

            if expected_revision is not None and report.revision != expected_revision:
                return Result.failure(
                    ErrorKind.CONFLICT,
                    "Report was modified by another request; reload and retry.",
                    'REVISION_CONFLICT',
                )

            assignee = None
            if assign_to_id:
                assignee_result = cls._resolve_assignee(event_uuid, assign_to_id)
                if not assignee_result.ok:
                    # Table preconditions are reported first.
                    error = cls.check_preconditions(report.state, target_state, notes, assign_to_id, True)
                    return Result(error=error or assignee_result.error)
                assignee = assignee_result.value

            assignment_changed = assignee is not None and assignee.id != report.assigned_responder_id
            error = cls.check_preconditions(report.state, target_state, notes, assign_to_id, assignment_changed)
            if error is not None:
                return Result(error=error)

            old_state = report.state
            target = ReportState(target_state)
            state_changed = target != old_state

            updates = {
                'state': target.value,
                'revision': F('revision') + 1,
                'updated_at': timezone.now(),
            }
            if assignment_changed:
                updates['assigned_responder_id'] = assignee.id
            if target == ReportState.RESOLVED and notes:
                updates['resolution'] = notes

            updated = Report.objects.filter(id=report.id, revision=report.revision).update(**updates)
            if updated != 1:
                return Result.failure(
                    ErrorKind.CONFLICT,
                    "Report was modified by another request; reload and retry.",
                    'REVISION_CONFLICT',
                )

            if state_changed:
                AuditLog.log_action(
                    action=AuditLog.ACTION_STATE_CHANGED,
                    user=actor,
                    event=event_uuid,
                    target_type='Report',
                    target_id=report.id,
                    from_state=old_state,
                    to_state=target.value,
                    request=request,
                )
            if assignment_changed:
                AuditLog.log_action(
                    action=AuditLog.ACTION_ASSIGNED,
                    user=actor,
                    event=event_uuid,
                    target_type='Report',
                    target_id=report.id,
                    diff={
                        'previous_assignee': str(report.assigned_responder_id) if report.assigned_responder_id else None,
                        'assigned_to': str(assignee.id),
                        'assigned_to_email': assignee.email,
                    },
                    request=request,
                )
            if notes:
                ReportComment.objects.create(
                    report=report,
                    author=actor,
                    body=f"[{old_state} -> {target.value}] {notes}",
                    visibility=ReportComment.VISIBILITY_INTERNAL,
                )

            if state_changed:
                NotificationFanout.notify_report_event(
                    report.id, NotificationType.REPORT_STATUS_CHANGED, exclude_actor_id=actor.id
                )
            if assignment_changed:
                NotificationFanout.notify_report_event(
                    report.id, NotificationType.REPORT_ASSIGNED, exclude_actor_id=actor.id
                )

            report.refresh_from_db()

        logger.info(
            "Report transitioned",
            extra={
                'report_id': str(report.id),
                'event_id': str(event_uuid),
                'from_state': old_state,
                'to_state': target.value,
                'assignment_changed': assignment_changed,
                'revision': report.revision,
            }
        )
        add_breadcrumb(
            category='transition',
            message=f"Report {report.short_id} {old_state} -> {target.value}",
            data={'report_id': str(report.id)},
        )
        return Result.success(report)

    @staticmethod
    def get_transition_history(report_id) -> List[TransitionRecord]:
        """State transitions of a report, oldest first."""
        entries = (
            AuditLog.objects
            .transitions()
            .for_target('Report', report_id)
            .select_related('user')
            .order_by('created_at')
        )
        return [
            TransitionRecord(
                from_state=entry.from_state,
                to_state=entry.to_state,
                actor_id=str(entry.user_id) if entry.user_id else None,
                actor_email=entry.user.email if entry.user else None,
                timestamp=entry.created_at,
            )
            for entry in entries
        ]


class ReportService:
    """Submission, reading, comments and non-lifecycle edits of reports."""

    @staticmethod
    def _load(event_id, report_id) -> Optional[Report]:
        event_uuid = parse_uuid(event_id)
        report_uuid = parse_uuid(report_id)
        if event_uuid is None or report_uuid is None:
            return None
        return (
            Report.objects
            .select_related('event', 'reporter', 'assigned_responder')
            .filter(id=report_uuid, event_id=event_uuid)
            .first()
        )

    @staticmethod
    def _not_found() -> Result:
        return Result.failure(ErrorKind.NOT_FOUND, "Report not found for this event.", 'REPORT_NOT_FOUND')

    @staticmethod
    def can_view(user, report) -> bool:
        """Reporter of the report, event staff, or a global SuperAdmin."""
        if user is None or not user.is_authenticated:
            return False
        if report.reporter_id == user.id:
            return True
        return bool(_roles_for(user, report.event_id) & STAFF_ROLES)

    @staticmethod
    def is_staff(user, event_id) -> bool:
        return bool(_roles_for(user, event_id) & STAFF_ROLES)

    @staticmethod
    def validate_title(title) -> Optional[ServiceError]:
        title = (title or '').strip()
        if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
            return ServiceError(
                ErrorKind.VALIDATION_FAILED,
                f"title must be {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters.",
                'INVALID_TITLE',
            )
        return None

    @classmethod
    def submit_report(cls, event_id, reporter, title, description, type='other', severity=None,
                      location='', contact_preference='email', incident_at=None, request=None) -> Result:
        """
        File a new report in the ``submitted`` state.

        Args:
            event_id: Event the report is filed against; it must be active
            reporter: Submitting user, or None for an anonymous submission
            title: ``TITLE_MIN_LENGTH`` to ``TITLE_MAX_LENGTH`` characters after trimming
            description: Required free text
            severity: Optional; staff usually set it during triage
            request: Optional request for audit metadata

        Returns:
            Result carrying the new ``Report``
        """
        event = EventDirectory.get_event(event_id)
        if event is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Event does not exist.", 'EVENT_NOT_FOUND')
        if not event.is_active:
            return Result.failure(
                ErrorKind.VALIDATION_FAILED, "This event is not accepting reports.", 'EVENT_INACTIVE'
            )

        error = cls.validate_title(title)
        if error is not None:
            return Result(error=error)
        if not (description or '').strip():
            return Result.failure(ErrorKind.VALIDATION_FAILED, "description is required.", 'INVALID_DESCRIPTION')
        if severity is not None and severity not in dict(Report.SEVERITY_CHOICES):
            return Result.failure(ErrorKind.VALIDATION_FAILED, f"Invalid severity: {severity}", 'INVALID_SEVERITY')

        if reporter is not None and not reporter.is_authenticated:
            reporter = None

        with transaction.atomic():
            report = Report.objects.create(
                event=event,
                reporter=reporter,
                title=title.strip(),
                description=description,
                type=type,
                severity=severity,
                location=location or '',
                contact_preference=contact_preference,
                incident_at=incident_at,
            )
            AuditLog.log_action(
                action=AuditLog.ACTION_SUBMITTED,
                user=reporter,
                event=event,
                target_type='Report',
                target_id=report.id,
                to_state=report.state,
                request=request,
            )
            NotificationFanout.notify_report_event(
                report.id,
                NotificationType.REPORT_SUBMITTED,
                exclude_actor_id=reporter.id if reporter else None,
            )

        logger.info(
            "Report submitted",
            extra={'report_id': str(report.id), 'event_id': str(event.id), 'anonymous': reporter is None}
        )
        return Result.success(report)

    @classmethod
    def get_report(cls, event_id, report_id, user) -> Result:
        """Fetch one report the user may view; FORBIDDEN otherwise."""
        report = cls._load(event_id, report_id)
        if report is None:
            return cls._not_found()
        if not cls.can_view(user, report):
            return Result.failure(ErrorKind.FORBIDDEN, "insufficient role", 'FORBIDDEN')
        return Result.success(report)

    @classmethod
    def list_reports(cls, event_id, user, state=None, severity=None, assigned_to=None) -> Result:
        """
        List the reports of an event visible to ``user``.

        Staff see every report of the event; anyone else only their own.

        Args:
            event_id: Event UUID
            user: Requesting principal
            state: Optional state filter
            severity: Optional severity filter
            assigned_to: Optional assigned responder UUID

        Returns:
            Result: queryset of reports, or VALIDATION_FAILED (INVALID_FILTER)
            for a malformed ``assigned_to``
        """
        assignee_uuid = None
        if assigned_to:
            assignee_uuid = parse_uuid(assigned_to)
            if assignee_uuid is None:
                return Result.failure(
                    ErrorKind.VALIDATION_FAILED, "assigned_to must be a user id.", 'INVALID_FILTER'
                )

        if cls.is_staff(user, event_id):
            reports = Report.objects.for_event(event_id)
        else:
            reports = Report.objects.visible_to_reporter(event_id, user)

        if state:
            reports = reports.filter(state=state)
        if severity:
            reports = reports.filter(severity=severity)
        if assignee_uuid:
            reports = reports.filter(assigned_responder_id=assignee_uuid)
        return Result.success(reports.select_related('reporter', 'assigned_responder'))

    @classmethod
    def update_details(cls, event_id, report_id, actor, request=None, **changes) -> Result:
        """
        Edit descriptive fields. State and assignment are not editable here.

        The reporter and event Admins may edit title, description,
        location and contact preference; severity is set by staff.
        """
        editable = {'title', 'description', 'location', 'contact_preference', 'severity'}
        unknown = set(changes) - editable
        if unknown:
            return Result.failure(
                ErrorKind.VALIDATION_FAILED,
                f"Fields cannot be edited here: {', '.join(sorted(unknown))}",
                'FIELD_NOT_EDITABLE',
            )

        with transaction.atomic():
            report = cls._load(event_id, report_id)
            if report is None:
                return cls._not_found()

            roles = _roles_for(actor, report.event_id)
            is_reporter = actor is not None and actor.is_authenticated and report.reporter_id == actor.id
            if 'severity' in changes and not roles & STAFF_ROLES:
                return Result.failure(ErrorKind.FORBIDDEN, "insufficient role", 'FORBIDDEN')
            if set(changes) - {'severity'} and not (is_reporter or roles & EDITOR_ROLES):
                return Result.failure(ErrorKind.FORBIDDEN, "insufficient role", 'FORBIDDEN')

            if 'title' in changes:
                error = cls.validate_title(changes['title'])
                if error is not None:
                    return Result(error=error)
                changes['title'] = changes['title'].strip()
            if changes.get('severity') is not None and changes['severity'] not in dict(Report.SEVERITY_CHOICES):
                return Result.failure(
                    ErrorKind.VALIDATION_FAILED, f"Invalid severity: {changes['severity']}", 'INVALID_SEVERITY'
                )

            diff = {}
            for field, value in changes.items():
                old = getattr(report, field)
                if old != value:
                    diff[field] = {'old': old, 'new': value}
                    setattr(report, field, value)

            if diff:
                report.save(update_fields=list(diff) + ['updated_at'])
                AuditLog.log_action(
                    action=AuditLog.ACTION_DETAILS_UPDATED,
                    user=actor,
                    event=report.event_id,
                    target_type='Report',
                    target_id=report.id,
                    diff=diff,
                    request=request,
                )

        return Result.success(report)

    @classmethod
    def add_comment(cls, event_id, report_id, author, body, visibility=ReportComment.VISIBILITY_PUBLIC,
                    is_markdown=False) -> Result:
        """
        Comment on a report and notify its stakeholders.

        Internal comments are for event staff only, and the reporter is
        not notified about them.

        Args:
            author: Reporter of the report or event staff
            body: Comment text, required
            visibility: ``public`` or ``internal``
            is_markdown: Whether ``body`` is rendered as Markdown

        Returns:
            Result carrying the new ``ReportComment``
        """
        if visibility not in dict(ReportComment.VISIBILITY_CHOICES):
            return Result.failure(ErrorKind.VALIDATION_FAILED, f"Invalid visibility: {visibility}", 'INVALID_VISIBILITY')
        if not (body or '').strip():
            return Result.failure(ErrorKind.VALIDATION_FAILED, "Comment body is required.", 'INVALID_BODY')

        report = cls._load(event_id, report_id)
        if report is None:
            return cls._not_found()
        if not cls.can_view(author, report):
            return Result.failure(ErrorKind.FORBIDDEN, "insufficient role", 'FORBIDDEN')
        if visibility == ReportComment.VISIBILITY_INTERNAL and not cls.is_staff(author, report.event_id):
            return Result.failure(ErrorKind.FORBIDDEN, "insufficient role", 'FORBIDDEN')

        with transaction.atomic():
            comment = ReportComment.objects.create(
                report=report,
                author=author,
                body=body.strip(),
                visibility=visibility,
                is_markdown=is_markdown,
            )
            NotificationFanout.notify_report_event(
                report.id,
                NotificationType.REPORT_COMMENT_ADDED,
                exclude_actor_id=author.id,
                include_reporter=visibility == ReportComment.VISIBILITY_PUBLIC,
            )

        return Result.success(comment)

    @classmethod
    def list_comments(cls, report, user):
        comments = report.comments.select_related('author')
        if not cls.is_staff(user, report.event_id):
            comments = comments.filter(visibility=ReportComment.VISIBILITY_PUBLIC)
        return comments
