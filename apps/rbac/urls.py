"""
RBAC API URLs.
"""
from django.urls import path

from apps.rbac.views import (
    EventAuditLogListView,
    EventInviteDetailView,
    EventInviteListView,
    EventInviteStatsView,
    EventRolesView,
    EventUserRemoveView,
    InviteCodeView,
    InviteRedeemView,
    MyEventRoleView,
    SuperAdminGrantView,
)

app_name = 'rbac'

urlpatterns = [
    path('events/<uuid:event_id>/roles', EventRolesView.as_view(), name='event-roles'),
    path('events/<uuid:event_id>/users/<uuid:user_id>', EventUserRemoveView.as_view(), name='event-user-remove'),
    path('events/<uuid:event_id>/audit-logs', EventAuditLogListView.as_view(), name='event-audit-logs'),
    path('events/<uuid:event_id>/invites', EventInviteListView.as_view(), name='event-invites'),
    path('events/<uuid:event_id>/invites/stats', EventInviteStatsView.as_view(), name='event-invite-stats'),
    path('events/<uuid:event_id>/invites/<uuid:invite_id>', EventInviteDetailView.as_view(), name='event-invite-detail'),
    path('events/by-slug/<slug:slug>/my-role', MyEventRoleView.as_view(), name='my-event-role'),
    path('invites/<slug:code>', InviteCodeView.as_view(), name='invite-check'),
    path('invites/<slug:code>/redeem', InviteRedeemView.as_view(), name='invite-redeem'),
    path('superadmins/<uuid:user_id>', SuperAdminGrantView.as_view(), name='superadmin-grant'),
]
