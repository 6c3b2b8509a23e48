"""
Notification fanout and inbox operations.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import ErrorKind, Result
from apps.events.services import parse_uuid
from apps.notifications.models import Notification, NotificationPriority, NotificationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationTemplate:
    priority: str
    title: str
    message: str


# ``message`` is formatted with ``report``, ``event`` and ``short_id``.
REPORT_TEMPLATES: Dict[str, NotificationTemplate] = {
    NotificationType.REPORT_SUBMITTED: NotificationTemplate(
        NotificationPriority.HIGH,
        'New Report Submitted',
        'A new report has been submitted for {event.name}',
    ),
    NotificationType.REPORT_ASSIGNED: NotificationTemplate(
        NotificationPriority.NORMAL,
        'Report Assigned',
        'Report #{short_id} has been assigned',
    ),
    NotificationType.REPORT_STATUS_CHANGED: NotificationTemplate(
        NotificationPriority.NORMAL,
        'Report Status Updated',
        'Report #{short_id} is now {report.state}',
    ),
    NotificationType.REPORT_COMMENT_ADDED: NotificationTemplate(
        NotificationPriority.NORMAL,
        'New Comment Added',
        'A new comment has been added to report #{short_id}',
    ),
}


def report_action_url(report) -> str:
    """Deep link into the report, relative to the frontend root."""
    return f"/events/{report.event.slug}/reports/{report.id}"


class NotificationFanout:
    """
    Computes report stakeholders and creates one notification per recipient.

    Not idempotent: each call creates a fresh set of records, so callers
    invoke it exactly once per logical action.
    """

    @staticmethod
    def recipients_for(report, exclude_actor_id=None, include_reporter=True) -> set:
        """
        Reporter, assigned responder, and every Admin or Responder of the
        report's event, minus the actor.
        """
        from apps.rbac.models import RoleName, User
        from apps.rbac.services import RoleGrantService

        candidates = set(
            RoleGrantService.users_with_roles(report.event_id, [RoleName.ADMIN, RoleName.RESPONDER])
        )
        if report.reporter_id and include_reporter:
            candidates.add(report.reporter_id)
        if report.assigned_responder_id:
            candidates.add(report.assigned_responder_id)

        exclude = parse_uuid(exclude_actor_id) if exclude_actor_id else None
        candidates.discard(exclude)

        return set(
            User.objects.filter(id__in=candidates, is_active=True).values_list('id', flat=True)
        )

    @classmethod
    def notify_report_event(cls, report_id, event_type, exclude_actor_id=None,
                            include_reporter=True) -> List[Notification]:
        """
        Notify the stakeholders of a report about ``event_type``.

        Returns the created notifications. Email delivery is queued after
        the surrounding transaction commits.
        """
        from apps.reports.models import Report

        event_type = NotificationType(event_type)
        template = REPORT_TEMPLATES.get(event_type)
        if template is None:
            raise ValueError(f"{event_type} is not a report notification type")

        report = Report.objects.select_related('event').get(id=report_id)
        recipients = cls.recipients_for(report, exclude_actor_id, include_reporter)

        message = template.message.format(report=report, event=report.event, short_id=report.short_id)
        action_url = report_action_url(report)
        notifications = [
            Notification(
                user_id=user_id,
                type=event_type,
                priority=template.priority,
                title=template.title,
                message=message,
                event_id=report.event_id,
                report=report,
                action_url=action_url,
            )
            for user_id in sorted(recipients, key=str)
        ]
        Notification.objects.bulk_create(notifications)

        logger.info(
            f"Report notification fanout: {event_type}",
            extra={
                'report_id': str(report.id),
                'event_id': str(report.event_id),
                'notification_type': event_type.value,
                'recipient_count': len(notifications),
            }
        )

        if notifications and getattr(settings, 'NOTIFICATION_EMAILS_ENABLED', True):
            ids = [str(notification.id) for notification in notifications]
            transaction.on_commit(lambda: cls._enqueue_emails(ids))

        return notifications

    @staticmethod
    def _enqueue_emails(notification_ids):
        from apps.notifications.tasks import deliver_notification_email

        for notification_id in notification_ids:
            deliver_notification_email.delay(notification_id)


class NotificationInbox:
    """Recipient-side operations."""

    @staticmethod
    def mark_read(notification_id, user) -> Result:
        notification = Notification.objects.filter(id=notification_id).first()
        if notification is None or notification.user_id != user.id:
            # Another principal's notification is reported as missing.
            return Result.failure(ErrorKind.NOT_FOUND, "Notification not found.", 'NOTIFICATION_NOT_FOUND')
        notification.mark_read()
        return Result.success(notification)

    @staticmethod
    def mark_all_read(user) -> int:
        return Notification.objects.unread(user).update(is_read=True, read_at=timezone.now())

    @staticmethod
    def unread_count(user) -> int:
        return Notification.objects.unread(user).count()
