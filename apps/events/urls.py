from django.urls import path

from apps.events.views import EventBySlugView, OrganizationMemberDetailView, OrganizationMemberListView

app_name = 'events'

urlpatterns = [
    path('events/by-slug/<slug:slug>', EventBySlugView.as_view(), name='event-by-slug'),
    path(
        'organizations/<uuid:org_id>/members',
        OrganizationMemberListView.as_view(),
        name='organization-members'
    ),
    path(
        'organizations/<uuid:org_id>/members/<uuid:user_id>',
        OrganizationMemberDetailView.as_view(),
        name='organization-member-detail'
    ),
]
