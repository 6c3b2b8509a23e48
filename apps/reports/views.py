"""
Report REST API views.

Implements endpoints for:
- Report submission (anonymous allowed, rate limited) and listing
- Report detail and descriptive edits
- State transitions and transition history
- Comments
"""
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import ErrorKind, ServiceError, error_response
from apps.core.permissions import HasEventRole
from apps.core.rate_limiting import check_report_submission_allowed
from apps.events.services import EventDirectory
from apps.reports.serializers import (
    ReportCommentCreateSerializer,
    ReportCommentSerializer,
    ReportSerializer,
    ReportSubmitSerializer,
    ReportUpdateSerializer,
    TransitionRecordSerializer,
    TransitionRequestSerializer,
)
from apps.reports.services import ReportService, ReportStateMachine


class ReportPagination(PageNumberPagination):
    page_size = 25
    page_size_query_param = 'page_size'
    max_page_size = 100


@extend_schema_view(
    get=extend_schema(
        tags=['Reports'],
        summary='List reports',
        description='Event staff see every report; other principals see the reports they submitted.',
        parameters=[
            OpenApiParameter('state', str, description='Filter by state'),
            OpenApiParameter('severity', str, description='Filter by severity'),
            OpenApiParameter('assigned_to', str, description='Filter by assigned responder id'),
        ],
        responses={200: ReportSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['Reports'],
        summary='Submit a report',
        description='Anonymous submissions are accepted. Rate limited per principal or client IP.',
        request=ReportSubmitSerializer,
        responses={201: ReportSerializer},
    ),
)
class EventReportListView(APIView):
    """
    GET/POST /v1/events/{event_id}/reports
    """
    pagination_class = ReportPagination

    def get_permissions(self):
        if self.request.method == 'POST':
            return [AllowAny()]
        return [HasEventRole()]

    def get(self, request, event_id):
        result = ReportService.list_reports(
            event_id,
            request.user,
            state=request.query_params.get('state'),
            severity=request.query_params.get('severity'),
            assigned_to=request.query_params.get('assigned_to'),
        )
        if not result.ok:
            return error_response(result.error, request)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(result.value, request, view=self)
        return paginator.get_paginated_response(ReportSerializer(page, many=True).data)

    def post(self, request, event_id):
        serializer = ReportSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        event = EventDirectory.get_event(event_id)
        # Unknown or closed events are rejected by the service without using quota.
        if event is not None and event.is_active:
            check_report_submission_allowed(request)

        result = ReportService.submit_report(
            event_id,
            request.user if request.user.is_authenticated else None,
            request=request,
            **serializer.validated_data,
        )
        if not result.ok:
            return error_response(result.error, request)
        return Response(ReportSerializer(result.value).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(tags=['Reports'], summary='Get a report', responses={200: ReportSerializer}),
    patch=extend_schema(
        tags=['Reports'],
        summary='Edit report details',
        description='State and assignment change only through the transition endpoint.',
        request=ReportUpdateSerializer,
        responses={200: ReportSerializer},
    ),
)
class ReportDetailView(APIView):
    """
    GET/PATCH /v1/events/{event_id}/reports/{report_id}
    """
    permission_classes = [HasEventRole]

    def get(self, request, event_id, report_id):
        result = ReportService.get_report(event_id, report_id, request.user)
        if not result.ok:
            return error_response(result.error, request)
        return Response(ReportSerializer(result.value).data)

    def patch(self, request, event_id, report_id):
        serializer = ReportUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = ReportService.update_details(
            event_id, report_id, request.user, request=request, **serializer.validated_data
        )
        if not result.ok:
            return error_response(result.error, request)
        return Response(ReportSerializer(result.value).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Reports'],
        summary='Transition a report',
        description=(
            'Move a report to a new state. `investigating` requires notes and `assign_to_id`; '
            '`resolved` requires notes. Pass `expected_revision` to reject stale writes with 409.'
        ),
        request=TransitionRequestSerializer,
        responses={200: ReportSerializer},
    ),
)
class ReportTransitionView(APIView):
    """
    POST /v1/events/{event_id}/reports/{report_id}/transition

    Roles are checked by ``ReportStateMachine.transition_report`` itself.
    """
    permission_classes = [HasEventRole]

    def post(self, request, event_id, report_id):
        serializer = TransitionRequestSerializer(data=request.data)
        if not serializer.is_valid():
            raise ServiceError(ErrorKind.VALIDATION_FAILED, _first_error(serializer.errors), 'INVALID_REQUEST')
        data = serializer.validated_data

        result = ReportStateMachine.transition_report(
            event_id,
            report_id,
            data['target_state'],
            request.user,
            notes=data.get('notes'),
            assign_to_id=data.get('assign_to_id'),
            expected_revision=data.get('expected_revision'),
            request=request,
        )
        if not result.ok:
            return error_response(result.error, request)
        return Response(ReportSerializer(result.value).data)


def _first_error(errors):
    field, messages = next(iter(errors.items()))
    return f"{field}: {messages[0]}"


@extend_schema_view(
    get=extend_schema(
        tags=['Reports'],
        summary='Report transition history',
        description='State transitions, oldest first.',
        responses={200: TransitionRecordSerializer(many=True)},
    ),
)
class ReportHistoryView(APIView):
    """
    GET /v1/events/{event_id}/reports/{report_id}/history
    """
    permission_classes = [HasEventRole]

    def get(self, request, event_id, report_id):
        result = ReportService.get_report(event_id, report_id, request.user)
        if not result.ok:
            return error_response(result.error, request)
        history = ReportStateMachine.get_transition_history(result.value.id)
        return Response(TransitionRecordSerializer(history, many=True).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Reports'],
        summary='List report comments',
        description='Internal comments are returned to event staff only.',
        responses={200: ReportCommentSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['Reports'],
        summary='Comment on a report',
        request=ReportCommentCreateSerializer,
        responses={201: ReportCommentSerializer},
    ),
)
class ReportCommentListView(APIView):
    """
    GET/POST /v1/events/{event_id}/reports/{report_id}/comments
    """
    permission_classes = [HasEventRole]

    def get(self, request, event_id, report_id):
        result = ReportService.get_report(event_id, report_id, request.user)
        if not result.ok:
            return error_response(result.error, request)
        comments = ReportService.list_comments(result.value, request.user)
        return Response(ReportCommentSerializer(comments, many=True).data)

    def post(self, request, event_id, report_id):
        serializer = ReportCommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ReportService.add_comment(event_id, report_id, request.user, **serializer.validated_data)
        if not result.ok:
            return error_response(result.error, request)
        return Response(ReportCommentSerializer(result.value).data, status=status.HTTP_201_CREATED)
