from rest_framework import serializers

from apps.notifications.models import Notification


class NotificationSerializer(serializers.ModelSerializer):

    class Meta:
        model = Notification
        fields = [
            'id', 'type', 'priority', 'title', 'message',
            'event', 'report', 'action_url', 'is_read', 'read_at', 'created_at',
        ]
        read_only_fields = fields
