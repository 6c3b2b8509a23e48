"""
Tests for the notification inbox service and API.
"""
import uuid

import pytest

from apps.core.exceptions import ErrorKind
from apps.notifications.models import Notification, NotificationType
from apps.notifications.services import NotificationFanout, NotificationInbox


@pytest.fixture
def inbox(report, responder, admin_user):
    NotificationFanout.notify_report_event(report.id, NotificationType.REPORT_SUBMITTED)
    NotificationFanout.notify_report_event(report.id, NotificationType.REPORT_COMMENT_ADDED)
    return Notification.objects.filter(user=responder)


@pytest.mark.django_db
class TestNotificationInbox:

    def test_mark_read(self, inbox, responder):
        notification = inbox.first()

        result = NotificationInbox.mark_read(notification.id, responder)

        assert result.ok
        notification.refresh_from_db()
        assert notification.is_read
        assert notification.read_at is not None

    def test_mark_read_twice_keeps_timestamp(self, inbox, responder):
        notification = inbox.first()
        NotificationInbox.mark_read(notification.id, responder)
        read_at = Notification.objects.get(id=notification.id).read_at

        NotificationInbox.mark_read(notification.id, responder)

        assert Notification.objects.get(id=notification.id).read_at == read_at

    def test_other_users_notification_not_found(self, inbox, admin_user):
        result = NotificationInbox.mark_read(inbox.first().id, admin_user)

        assert result.error.kind is ErrorKind.NOT_FOUND
        assert not inbox.first().is_read

    def test_unknown_notification(self, responder):
        assert NotificationInbox.mark_read(uuid.uuid4(), responder).error.kind is ErrorKind.NOT_FOUND

    def test_counts(self, inbox, responder, admin_user):
        assert NotificationInbox.unread_count(responder) == 2

        assert NotificationInbox.mark_all_read(responder) == 2

        assert NotificationInbox.unread_count(responder) == 0
        assert NotificationInbox.unread_count(admin_user) == 2


@pytest.mark.django_db
class TestNotificationAPI:

    def test_requires_authentication(self, api_client):
        assert api_client.get('/v1/notifications').status_code == 401

    def test_list_own(self, api_client, inbox, responder):
        api_client.force_authenticate(responder)
        response = api_client.get('/v1/notifications')

        assert response.status_code == 200
        assert response.data['count'] == 2
        assert {n['type'] for n in response.data['results']} == {'report_submitted', 'report_comment_added'}

    def test_unread_filter(self, api_client, inbox, responder):
        NotificationInbox.mark_read(inbox.first().id, responder)
        api_client.force_authenticate(responder)

        response = api_client.get('/v1/notifications', {'unread': 'true'})

        assert response.data['count'] == 1

    def test_mark_read(self, api_client, inbox, responder):
        api_client.force_authenticate(responder)
        response = api_client.post(f'/v1/notifications/{inbox.first().id}/read')

        assert response.status_code == 200
        assert response.data['is_read'] is True

    def test_mark_read_of_other_user(self, api_client, inbox, admin_user):
        api_client.force_authenticate(admin_user)
        response = api_client.post(f'/v1/notifications/{inbox.first().id}/read')

        assert response.status_code == 404
        assert response.data['code'] == 'NOTIFICATION_NOT_FOUND'

    def test_read_all_and_count(self, api_client, inbox, responder):
        api_client.force_authenticate(responder)

        assert api_client.get('/v1/notifications/unread-count').data == {'unread': 2}
        assert api_client.post('/v1/notifications/read-all').data == {'updated': 2}
        assert api_client.get('/v1/notifications/unread-count').data == {'unread': 0}
