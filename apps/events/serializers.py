from rest_framework import serializers

from apps.events.models import Event, Organization, OrganizationMembership
from apps.rbac.serializers import UserSerializer


class OrganizationSerializer(serializers.ModelSerializer):

    class Meta:
        model = Organization
        fields = ['id', 'name', 'slug', 'description', 'created_at']
        read_only_fields = fields


class EventSerializer(serializers.ModelSerializer):

    class Meta:
        model = Event
        fields = [
            'id', 'organization', 'name', 'slug', 'description',
            'contact_email', 'start_date', 'end_date', 'is_active',
        ]
        read_only_fields = fields


class OrganizationMembershipSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = OrganizationMembership
        fields = ['id', 'organization', 'user', 'role', 'created_at']
        read_only_fields = fields


class MemberCreateSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    role = serializers.ChoiceField(
        choices=OrganizationMembership.ROLE_CHOICES,
        default=OrganizationMembership.ROLE_VIEWER
    )


class MemberRoleSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=OrganizationMembership.ROLE_CHOICES)
