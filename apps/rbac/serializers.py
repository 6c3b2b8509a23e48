"""
RBAC serializers for REST API endpoints.
"""
from django.conf import settings
from rest_framework import serializers

from apps.rbac.models import AuditLog, EventInvite, RoleGrant, RoleName, User


class UserSerializer(serializers.ModelSerializer):

    class Meta:
        model = User
        fields = ['id', 'email', 'name']
        read_only_fields = fields


class RoleGrantSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = RoleGrant
        fields = ['id', 'user', 'event', 'role', 'created_at']
        read_only_fields = fields


class RoleAssignmentSerializer(serializers.Serializer):
    """Body for granting or revoking an event role."""

    user_id = serializers.UUIDField()
    role = serializers.CharField(max_length=20, help_text="One of: " + ", ".join(RoleName.values))


class EventUserSerializer(serializers.Serializer):
    user = UserSerializer()
    roles = serializers.ListField(child=serializers.CharField())
    effective_role = serializers.SerializerMethodField()

    def get_effective_role(self, obj):
        return obj['roles'][0] if obj['roles'] else None


class AuditLogSerializer(serializers.ModelSerializer):
    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)
    description = serializers.CharField(read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'event', 'user_email', 'action', 'description',
            'target_type', 'target_id', 'from_state', 'to_state',
            'diff', 'metadata', 'request_id', 'created_at',
        ]
        read_only_fields = fields


class EventInviteSerializer(serializers.ModelSerializer):
    created_by_email = serializers.EmailField(source='created_by.email', read_only=True, default=None)
    is_usable = serializers.BooleanField(read_only=True)
    url = serializers.SerializerMethodField()

    class Meta:
        model = EventInvite
        fields = [
            'id', 'event', 'code', 'url', 'role', 'created_by_email',
            'expires_at', 'max_uses', 'use_count', 'disabled', 'is_usable',
            'note', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_url(self, obj):
        return f"{settings.FRONTEND_URL.rstrip('/')}/invite/{obj.code}"


class EventInviteCreateSerializer(serializers.Serializer):
    role = serializers.CharField(max_length=20, help_text="Event role granted on redemption")
    max_uses = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    expires_at = serializers.DateTimeField(required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True)


class EventInviteUpdateSerializer(serializers.Serializer):
    disabled = serializers.BooleanField(required=False)
    max_uses = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    expires_at = serializers.DateTimeField(required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class InviteCheckSerializer(serializers.Serializer):
    """Public view of an invite code: enough to show an invitee what they are joining."""
    valid = serializers.BooleanField()
    reason = serializers.CharField(allow_null=True)
    role = serializers.CharField(source='invite.role', default=None)
    event_id = serializers.UUIDField(source='invite.event.id', default=None)
    event_name = serializers.CharField(source='invite.event.name', default=None)
    event_slug = serializers.CharField(source='invite.event.slug', default=None)
    expires_at = serializers.DateTimeField(source='invite.expires_at', default=None)
