"""
Organization and event models.

Events are the scope for role grants and reports. An event may belong to
an organization or stand alone.
"""
from django.db import models

from apps.core.models import BaseModel, BaseModelManager


class Organization(BaseModel):
    """An owner of events with its own membership list."""

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=100, unique=True)
    description = models.TextField(blank=True)

    class Meta:
        db_table = 'organizations'
        ordering = ['name']

    def __str__(self):
        return self.name


class OrganizationMembershipManager(models.Manager):

    def for_organization(self, organization_id):
        return self.filter(organization_id=organization_id).select_related('user')

    def get_membership(self, organization_id, user_id):
        return self.filter(organization_id=organization_id, user_id=user_id).first()


class OrganizationMembership(BaseModel):
    """
    A principal's role in an organization.

    Independent of event-level role grants. ``org_admin`` implies the
    ``org_viewer`` capability.
    """
    ROLE_ADMIN = 'org_admin'
    ROLE_VIEWER = 'org_viewer'

    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Organization Admin'),
        (ROLE_VIEWER, 'Organization Viewer'),
    ]

    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    user = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='organization_memberships'
    )
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_VIEWER)
    invited_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    objects = OrganizationMembershipManager()

    class Meta:
        db_table = 'organization_memberships'
        ordering = ['created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['organization', 'user'],
                name='unique_organization_membership',
            ),
        ]

    def __str__(self):
        return f"{self.user_id} - {self.role} @ {self.organization_id}"

    def grants(self, role):
        """Whether this membership satisfies ``role``."""
        if self.role == self.ROLE_ADMIN:
            return role in (self.ROLE_ADMIN, self.ROLE_VIEWER)
        return role == self.role

    def delete(self, using=None, keep_parents=False):
        return self.hard_delete(using=using, keep_parents=keep_parents)


class EventManager(BaseModelManager):

    def active(self):
        return self.filter(is_active=True)

    def by_slug(self, slug):
        return self.filter(slug=slug).first()


class Event(BaseModel):
    """A conference or gathering that reports are filed against."""

    organization = models.ForeignKey(
        Organization,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='events',
        help_text="Owning organization (null for standalone events)"
    )
    name = models.CharField(max_length=255)
    slug = models.SlugField(
        max_length=100,
        unique=True,
        help_text="Human-readable identifier used in URLs"
    )
    description = models.TextField(blank=True)
    contact_email = models.EmailField(blank=True)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)

    objects = EventManager()

    class Meta:
        db_table = 'events'
        ordering = ['-created_at']

    def __str__(self):
        return self.name
