"""
Notification inbox API.

Every endpoint works on the caller's own notifications only.
"""
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import error_response
from apps.core.permissions import HasEventRole
from apps.notifications.models import Notification
from apps.notifications.serializers import NotificationSerializer
from apps.notifications.services import NotificationInbox


class NotificationPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


@extend_schema_view(
    get=extend_schema(
        tags=['Notifications'],
        summary='List my notifications',
        description='Newest first. Pass `unread=true` to list unread notifications only.',
        responses={200: NotificationSerializer(many=True)},
    ),
)
class NotificationListView(APIView):
    permission_classes = [HasEventRole]
    pagination_class = NotificationPagination

    def get(self, request):
        notifications = Notification.objects.for_user(request.user)
        if request.query_params.get('unread') in ('1', 'true', 'True'):
            notifications = notifications.filter(is_read=False)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(notifications, request, view=self)
        return paginator.get_paginated_response(NotificationSerializer(page, many=True).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Notifications'],
        summary='Mark a notification read',
        request=None,
        responses={200: NotificationSerializer},
    ),
)
class NotificationReadView(APIView):
    permission_classes = [HasEventRole]

    def post(self, request, notification_id):
        result = NotificationInbox.mark_read(notification_id, request.user)
        if not result.ok:
            return error_response(result.error, request)
        return Response(NotificationSerializer(result.value).data)


@extend_schema_view(
    post=extend_schema(tags=['Notifications'], summary='Mark all my notifications read', request=None),
)
class NotificationReadAllView(APIView):
    permission_classes = [HasEventRole]

    def post(self, request):
        return Response({'updated': NotificationInbox.mark_all_read(request.user)})


@extend_schema_view(
    get=extend_schema(tags=['Notifications'], summary='Unread notification count'),
)
class NotificationUnreadCountView(APIView):
    permission_classes = [HasEventRole]

    def get(self, request):
        return Response({'unread': NotificationInbox.unread_count(request.user)})
