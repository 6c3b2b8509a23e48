"""
Per-recipient notification records.
"""
from django.db import models
from django.utils import timezone

from apps.core.models import BaseModel, BaseModelManager


class NotificationType(models.TextChoices):
    REPORT_SUBMITTED = 'report_submitted', 'Report submitted'
    REPORT_ASSIGNED = 'report_assigned', 'Report assigned'
    REPORT_STATUS_CHANGED = 'report_status_changed', 'Report status changed'
    REPORT_COMMENT_ADDED = 'report_comment_added', 'Report comment added'
    EVENT_INVITATION = 'event_invitation', 'Event invitation'
    EVENT_ROLE_CHANGED = 'event_role_changed', 'Event role changed'
    SYSTEM_ANNOUNCEMENT = 'system_announcement', 'System announcement'


class NotificationPriority(models.TextChoices):
    LOW = 'low', 'Low'
    NORMAL = 'normal', 'Normal'
    HIGH = 'high', 'High'
    URGENT = 'urgent', 'Urgent'


class NotificationManager(BaseModelManager):

    def for_user(self, user):
        return self.filter(user=user)

    def unread(self, user):
        return self.filter(user=user, is_read=False)


class Notification(BaseModel):
    """
    One notification for one recipient.

    Created by the report fanout; afterwards only the recipient changes
    it, by marking it read.
    """

    user = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    type = models.CharField(max_length=40, choices=NotificationType.choices, db_index=True)
    priority = models.CharField(
        max_length=10,
        choices=NotificationPriority.choices,
        default=NotificationPriority.NORMAL
    )
    title = models.CharField(max_length=200)
    message = models.TextField()

    event = models.ForeignKey(
        'events.Event',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='notifications'
    )
    report = models.ForeignKey(
        'reports.Report',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='notifications'
    )
    action_url = models.CharField(max_length=500, blank=True)

    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)
    emailed_at = models.DateTimeField(null=True, blank=True)

    objects = NotificationManager()

    class Meta:
        db_table = 'notifications'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_read', 'created_at']),
        ]

    def __str__(self):
        return f"{self.type} -> {self.user_id}"

    def mark_read(self):
        if self.is_read:
            return
        self.is_read = True
        self.read_at = timezone.now()
        self.save(update_fields=['is_read', 'read_at', 'updated_at'])
