"""
Incident report models.

A report's ``state`` and ``assigned_responder`` change only through
``ReportStateMachine.transition_report``; ``revision`` increases with
every transition and guards against lost updates.
"""
from django.db import models

from apps.core.models import BaseModel, BaseModelManager


class ReportState(models.TextChoices):
    """Lifecycle states in forward order."""
    SUBMITTED = 'submitted', 'Submitted'
    ACKNOWLEDGED = 'acknowledged', 'Acknowledged'
    INVESTIGATING = 'investigating', 'Investigating'
    RESOLVED = 'resolved', 'Resolved'
    CLOSED = 'closed', 'Closed'

    @property
    def order(self):
        return list(ReportState).index(self)


class ReportManager(BaseModelManager):

    def for_event(self, event_id):
        return self.filter(event_id=event_id)

    def visible_to_reporter(self, event_id, user):
        return self.filter(event_id=event_id, reporter=user)


class Report(BaseModel):
    SEVERITY_LOW = 'low'
    SEVERITY_MEDIUM = 'medium'
    SEVERITY_HIGH = 'high'
    SEVERITY_CRITICAL = 'critical'

    SEVERITY_CHOICES = [
        (SEVERITY_LOW, 'Low'),
        (SEVERITY_MEDIUM, 'Medium'),
        (SEVERITY_HIGH, 'High'),
        (SEVERITY_CRITICAL, 'Critical'),
    ]

    TYPE_CHOICES = [
        ('harassment', 'Harassment'),
        ('safety', 'Safety'),
        ('other', 'Other'),
    ]

    CONTACT_CHOICES = [
        ('email', 'Email'),
        ('phone', 'Phone'),
        ('in_person', 'In person'),
        ('no_contact', 'No contact'),
    ]

    event = models.ForeignKey(
        'events.Event',
        on_delete=models.PROTECT,
        related_name='reports'
    )
    reporter = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='submitted_reports',
        help_text="Null for anonymous reports"
    )
    assigned_responder = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_reports'
    )

    title = models.CharField(max_length=200)
    description = models.TextField()
    type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='other')
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES, null=True, blank=True)
    location = models.CharField(max_length=255, blank=True)
    incident_at = models.DateTimeField(null=True, blank=True)
    contact_preference = models.CharField(max_length=20, choices=CONTACT_CHOICES, default='email')

    state = models.CharField(
        max_length=20,
        choices=ReportState.choices,
        default=ReportState.SUBMITTED,
        db_index=True
    )
    resolution = models.TextField(blank=True, help_text="Resolution notes")
    revision = models.PositiveIntegerField(default=0)

    objects = ReportManager()

    class Meta:
        db_table = 'reports'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['event', 'state']),
            models.Index(fields=['assigned_responder', 'state']),
        ]

    def __str__(self):
        return f"{self.short_id} {self.title}"

    @property
    def short_id(self):
        return str(self.id)[:8]


class ReportComment(BaseModel):
    VISIBILITY_PUBLIC = 'public'
    VISIBILITY_INTERNAL = 'internal'

    VISIBILITY_CHOICES = [
        (VISIBILITY_PUBLIC, 'Public'),
        (VISIBILITY_INTERNAL, 'Internal'),
    ]

    report = models.ForeignKey(Report, on_delete=models.CASCADE, related_name='comments')
    author = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='report_comments'
    )
    body = models.TextField()
    visibility = models.CharField(max_length=10, choices=VISIBILITY_CHOICES, default=VISIBILITY_PUBLIC)
    is_markdown = models.BooleanField(default=False)

    class Meta:
        db_table = 'report_comments'
        ordering = ['created_at']

    def __str__(self):
        return f"Comment on {self.report_id} ({self.visibility})"
