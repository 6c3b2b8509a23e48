"""
Celery tasks for notification delivery.
"""
import logging
from smtplib import SMTPException

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

from apps.core.tasks import LoggedTask
from apps.notifications.models import Notification

logger = logging.getLogger(__name__)


@shared_task(bind=True, base=LoggedTask, max_retries=3, name='notifications.deliver_notification_email')
def deliver_notification_email(self, notification_id):
    """
    Email one notification to its recipient.

    Args:
        notification_id: UUID of the notification

    Returns:
        dict: Result with status
    """
    notification = (
        Notification.objects
        .select_related('user')
        .filter(id=notification_id)
        .first()
    )
    if notification is None:
        logger.error(f"Notification {notification_id} not found")
        return {'status': 'error', 'message': 'Notification not found'}

    if notification.emailed_at is not None:
        return {'status': 'skipped', 'message': 'Already emailed'}

    link = f"{settings.FRONTEND_URL.rstrip('/')}{notification.action_url}" if notification.action_url else ''
    body = notification.message if not link else f"{notification.message}\n\n{link}"

    try:
        send_mail(
            subject=notification.title,
            message=body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[notification.user.email],
        )
    except SMTPException as exc:
        raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))

    Notification.objects.filter(id=notification.id).update(emailed_at=timezone.now())
    return {'status': 'sent', 'notification_id': str(notification.id)}
