from django.urls import path

from apps.notifications.views import (
    NotificationListView,
    NotificationReadAllView,
    NotificationReadView,
    NotificationUnreadCountView,
)

app_name = 'notifications'

urlpatterns = [
    path('notifications', NotificationListView.as_view(), name='notification-list'),
    path('notifications/read-all', NotificationReadAllView.as_view(), name='notification-read-all'),
    path('notifications/unread-count', NotificationUnreadCountView.as_view(), name='notification-unread-count'),
    path('notifications/<uuid:notification_id>/read', NotificationReadView.as_view(), name='notification-read'),
]
