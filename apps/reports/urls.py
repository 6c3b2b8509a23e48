from django.urls import path

from apps.reports.views import (
    EventReportListView,
    ReportCommentListView,
    ReportDetailView,
    ReportHistoryView,
    ReportTransitionView,
)

app_name = 'reports'

urlpatterns = [
    path('events/<uuid:event_id>/reports', EventReportListView.as_view(), name='report-list'),
    path('events/<uuid:event_id>/reports/<uuid:report_id>', ReportDetailView.as_view(), name='report-detail'),
    path(
        'events/<uuid:event_id>/reports/<uuid:report_id>/transition',
        ReportTransitionView.as_view(),
        name='report-transition'
    ),
    path('events/<uuid:event_id>/reports/<uuid:report_id>/history', ReportHistoryView.as_view(), name='report-history'),
    path(
        'events/<uuid:event_id>/reports/<uuid:report_id>/comments',
        ReportCommentListView.as_view(),
        name='report-comments'
    ),
]
