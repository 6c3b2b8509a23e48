"""
Report serializers for REST API endpoints.
"""
from rest_framework import serializers

from apps.rbac.serializers import UserSerializer
from apps.reports.models import Report, ReportComment, ReportState
from apps.reports.services import TITLE_MAX_LENGTH, TITLE_MIN_LENGTH, allowed_transitions


class ReportSerializer(serializers.ModelSerializer):
    reporter = UserSerializer(read_only=True)
    assigned_responder = UserSerializer(read_only=True)
    short_id = serializers.CharField(read_only=True)
    allowed_transitions = serializers.SerializerMethodField()

    class Meta:
        model = Report
        fields = [
            'id', 'short_id', 'event', 'reporter', 'assigned_responder',
            'title', 'description', 'type', 'severity', 'location', 'incident_at',
            'contact_preference', 'state', 'resolution', 'revision',
            'allowed_transitions', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_allowed_transitions(self, obj):
        return [state.value for state in allowed_transitions(obj.state)]


class ReportSubmitSerializer(serializers.Serializer):
    title = serializers.CharField(min_length=TITLE_MIN_LENGTH, max_length=TITLE_MAX_LENGTH)
    description = serializers.CharField()
    type = serializers.ChoiceField(choices=Report.TYPE_CHOICES, default='other')
    severity = serializers.ChoiceField(choices=Report.SEVERITY_CHOICES, required=False, allow_null=True)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    incident_at = serializers.DateTimeField(required=False, allow_null=True)
    contact_preference = serializers.ChoiceField(choices=Report.CONTACT_CHOICES, default='email')


class ReportUpdateSerializer(serializers.Serializer):
    """Partial edit of descriptive fields."""

    title = serializers.CharField(min_length=TITLE_MIN_LENGTH, max_length=TITLE_MAX_LENGTH, required=False)
    description = serializers.CharField(required=False)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    severity = serializers.ChoiceField(choices=Report.SEVERITY_CHOICES, required=False, allow_null=True)
    contact_preference = serializers.ChoiceField(choices=Report.CONTACT_CHOICES, required=False)


class TransitionRequestSerializer(serializers.Serializer):
    target_state = serializers.ChoiceField(choices=ReportState.choices)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    assign_to_id = serializers.UUIDField(required=False, allow_null=True)
    expected_revision = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class TransitionRecordSerializer(serializers.Serializer):
    from_state = serializers.CharField(allow_null=True)
    to_state = serializers.CharField(allow_null=True)
    actor_id = serializers.CharField(allow_null=True)
    actor_email = serializers.EmailField(allow_null=True)
    timestamp = serializers.DateTimeField()


class ReportCommentSerializer(serializers.ModelSerializer):
    author = UserSerializer(read_only=True)

    class Meta:
        model = ReportComment
        fields = ['id', 'report', 'author', 'body', 'visibility', 'is_markdown', 'created_at']
        read_only_fields = ['id', 'report', 'author', 'created_at']


class ReportCommentCreateSerializer(serializers.Serializer):
    body = serializers.CharField()
    visibility = serializers.ChoiceField(
        choices=ReportComment.VISIBILITY_CHOICES,
        default=ReportComment.VISIBILITY_PUBLIC
    )
    is_markdown = serializers.BooleanField(default=False)
