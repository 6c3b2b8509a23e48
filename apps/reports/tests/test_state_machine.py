"""
Tests for report lifecycle transitions.
"""
from unittest.mock import patch

import pytest
from django.db import DatabaseError
from hypothesis import given
from hypothesis import strategies as st

from apps.core.exceptions import ErrorKind
from apps.notifications.models import Notification
from apps.rbac.models import AuditLog, RoleName
from apps.reports.models import Report, ReportComment, ReportState
from apps.reports.services import ReportStateMachine, allowed_transitions


def transition(report, actor, target, **kwargs):
    return ReportStateMachine.transition_report(report.event_id, report.id, target, actor, **kwargs)


class TestAllowedTransitions:

    def test_forward_table(self):
        assert allowed_transitions('submitted') == [
            ReportState.ACKNOWLEDGED, ReportState.INVESTIGATING, ReportState.RESOLVED, ReportState.CLOSED,
        ]
        assert allowed_transitions(ReportState.RESOLVED) == [ReportState.CLOSED]
        assert allowed_transitions('closed') == []


class TestPreconditionTable:

    @given(
        current=st.sampled_from(list(ReportState)),
        target=st.sampled_from(list(ReportState)),
        notes=st.one_of(st.none(), st.just(''), st.text(min_size=1, max_size=20)),
        assign=st.one_of(st.none(), st.uuids()),
    )
    def test_unmet_requirements_always_rejected(self, current, target, notes, assign):
        error = ReportStateMachine.check_preconditions(current, target, notes, assign, assignment_changes=bool(assign))

        has_notes = bool(notes and notes.strip())
        if target.order < current.order:
            assert error.code == 'BACKWARD_TRANSITION'
        elif target == current and not assign:
            assert error.code == 'NO_CHANGE'
        elif target == ReportState.INVESTIGATING and not assign:
            assert error.code == 'ASSIGNMENT_REQUIRED'
        elif target in (ReportState.INVESTIGATING, ReportState.RESOLVED) and not has_notes:
            assert error.code == 'NOTES_REQUIRED'
        else:
            assert error is None


@pytest.mark.django_db
class TestInvestigatingPreconditions:

    def test_requires_assignment(self, report, responder):
        result = transition(report, responder, 'investigating')
        assert result.error.kind is ErrorKind.VALIDATION_FAILED
        assert 'requires assignment to a responder' in result.error.message

    def test_notes_alone_still_cites_assignment(self, report, responder):
        result = transition(report, responder, 'investigating', notes='looking into it')
        assert result.error.code == 'ASSIGNMENT_REQUIRED'

    def test_assignment_alone_cites_notes(self, report, responder):
        result = transition(report, responder, 'investigating', assign_to_id=responder.id)
        assert result.error.code == 'NOTES_REQUIRED'

    def test_blank_notes_are_missing(self, report, responder):
        result = transition(report, responder, 'investigating', notes='   ', assign_to_id=responder.id)
        assert result.error.code == 'NOTES_REQUIRED'

    def test_both_succeed(self, report, responder):
        result = transition(report, responder, 'investigating', notes='checking', assign_to_id=responder.id)

        assert result.ok
        assert result.value.state == ReportState.INVESTIGATING
        assert result.value.assigned_responder == responder


@pytest.mark.django_db
class TestResolvedPreconditions:

    def test_requires_notes(self, report, responder):
        result = transition(report, responder, 'resolved')
        assert result.error.kind is ErrorKind.VALIDATION_FAILED
        assert 'requires notes' in result.error.message

    def test_with_notes_one_audit_entry_one_comment(self, report, responder):
        audit_before = AuditLog.objects.count()

        result = transition(report, responder, 'resolved', notes='Spoke with both parties')

        assert result.ok
        assert result.value.resolution == 'Spoke with both parties'
        assert AuditLog.objects.count() == audit_before + 1
        comment = ReportComment.objects.get(report=report)
        assert comment.visibility == ReportComment.VISIBILITY_INTERNAL
        assert comment.body == '[submitted -> resolved] Spoke with both parties'


@pytest.mark.django_db
class TestScenarios:

    def test_admin_assigns_responder(self, report, admin_user, responder, reporter):
        """Admin moves a report to investigating and assigns a responder."""
        result = transition(report, admin_user, 'investigating', notes='checking', assign_to_id=responder.id)

        assert result.ok
        report.refresh_from_db()
        assert report.state == ReportState.INVESTIGATING
        assert report.assigned_responder_id == responder.id
        assert report.revision == 1

        entries = AuditLog.objects.for_target('Report', report.id)
        assert {e.action for e in entries} == {AuditLog.ACTION_STATE_CHANGED, AuditLog.ACTION_ASSIGNED}
        state_entry = entries.get(action=AuditLog.ACTION_STATE_CHANGED)
        assert (state_entry.from_state, state_entry.to_state) == ('submitted', 'investigating')
        assert state_entry.user == admin_user

        assert ReportComment.objects.filter(report=report, visibility='internal').count() == 1

        recipients = set(Notification.objects.filter(report=report).values_list('user_id', flat=True))
        assert recipients == {reporter.id, responder.id}
        assert not Notification.objects.filter(user=admin_user).exists()

    def test_missing_assignment_changes_nothing(self, report, admin_user, responder):
        result = transition(report, admin_user, 'investigating', notes='checking')

        assert result.error.kind is ErrorKind.VALIDATION_FAILED
        assert 'requires assignment to a responder' in result.error.message
        report.refresh_from_db()
        assert report.state == ReportState.SUBMITTED
        assert report.revision == 0
        assert not AuditLog.objects.for_target('Report', report.id).exists()
        assert not ReportComment.objects.filter(report=report).exists()
        assert not Notification.objects.exists()


@pytest.mark.django_db
class TestAuthorization:

    def test_reporter_cannot_transition(self, report, reporter):
        result = transition(report, reporter, 'acknowledged')
        assert result.error.kind is ErrorKind.FORBIDDEN
        assert result.error.message == 'insufficient role'

    def test_anonymous(self, report):
        from django.contrib.auth.models import AnonymousUser

        result = transition(report, AnonymousUser(), 'acknowledged')
        assert result.error.kind is ErrorKind.UNAUTHENTICATED

    def test_responder_of_other_event(self, report, make_user, grant, other_event):
        outsider = make_user()
        grant(outsider, RoleName.RESPONDER, other_event)
        assert transition(report, outsider, 'acknowledged').error.kind is ErrorKind.FORBIDDEN

    def test_global_superadmin(self, report, superadmin):
        assert transition(report, superadmin, 'acknowledged').ok


@pytest.mark.django_db
class TestValidation:

    def test_invalid_target_state(self, report, responder):
        result = transition(report, responder, 'archived')
        assert result.error.code == 'INVALID_STATE'

    def test_report_from_other_event_not_found(self, report, admin_user, make_user, grant, other_event):
        grant(admin_user, RoleName.ADMIN, other_event)
        result = ReportStateMachine.transition_report(other_event.id, report.id, 'acknowledged', admin_user)
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_malformed_report_id(self, report, responder):
        result = ReportStateMachine.transition_report(report.event_id, 'nope', 'acknowledged', responder)
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_assignee_must_be_staff(self, report, responder, reporter):
        result = transition(report, responder, 'investigating', notes='x', assign_to_id=reporter.id)
        assert result.error.code == 'INVALID_ASSIGNEE'

    def test_assignee_must_exist(self, report, responder):
        import uuid

        result = transition(report, responder, 'acknowledged', assign_to_id=uuid.uuid4())
        assert result.error.code == 'INVALID_ASSIGNEE'

    def test_assignee_can_be_admin(self, report, responder, admin_user):
        assert transition(report, responder, 'investigating', notes='x', assign_to_id=admin_user.id).ok


@pytest.mark.django_db
class TestForwardEnforcement:

    def test_backward_rejected(self, report, responder):
        assert transition(report, responder, 'closed').ok
        result = transition(report, responder, 'submitted')
        assert result.error.code == 'BACKWARD_TRANSITION'

    def test_same_state_without_assignment_change_rejected(self, report, responder):
        assert transition(report, responder, 'acknowledged').ok
        assert transition(report, responder, 'acknowledged').error.code == 'NO_CHANGE'

    def test_same_state_reassignment_allowed(self, report, admin_user, responder, make_user, grant, event):
        second = make_user()
        grant(second, RoleName.RESPONDER, event)
        assert transition(report, admin_user, 'investigating', notes='a', assign_to_id=responder.id).ok

        result = transition(report, admin_user, 'investigating', notes='handing over', assign_to_id=second.id)

        assert result.ok
        assert result.value.assigned_responder_id == second.id
        actions = list(AuditLog.objects.for_target('Report', report.id).values_list('action', flat=True))
        assert actions.count(AuditLog.ACTION_STATE_CHANGED) == 1
        assert actions.count(AuditLog.ACTION_ASSIGNED) == 2

    def test_permissive_mode(self, report, responder, settings):
        settings.REPORT_ENFORCE_FORWARD_TRANSITIONS = False
        assert transition(report, responder, 'closed').ok
        assert transition(report, responder, 'submitted').ok


@pytest.mark.django_db
class TestRevisionCheck:

    def test_stale_expected_revision_conflicts(self, report, responder):
        assert transition(report, responder, 'acknowledged', expected_revision=0).ok

        result = transition(report, responder, 'closed', expected_revision=0)

        assert result.error.kind is ErrorKind.CONFLICT
        report.refresh_from_db()
        assert report.state == ReportState.ACKNOWLEDGED

    def test_matching_revision(self, report, responder):
        assert transition(report, responder, 'acknowledged', expected_revision=0).value.revision == 1
        assert transition(report, responder, 'closed', expected_revision=1).value.revision == 2

    def test_concurrent_write_conflicts(self, report, responder):
        """A write landing between the read and the update wins; ours is rejected."""
        original_filter = Report.objects.filter

        def bump_then_filter(*args, **kwargs):
            original_filter(id=report.id).update(revision=99)
            return original_filter(*args, **kwargs)

        with patch.object(Report.objects, 'filter', side_effect=bump_then_filter):
            result = transition(report, responder, 'acknowledged')

        assert result.error.kind is ErrorKind.CONFLICT
        assert result.error.code == 'REVISION_CONFLICT'
        assert not AuditLog.objects.for_target('Report', report.id).exists()


@pytest.mark.django_db
class TestAtomicity:

    def test_audit_failure_rolls_back_transition(self, report, responder):
        with patch('apps.reports.services.AuditLog.log_action', side_effect=DatabaseError("disk full")):
            with pytest.raises(DatabaseError):
                transition(report, responder, 'resolved', notes='done')

        report.refresh_from_db()
        assert report.state == ReportState.SUBMITTED
        assert report.revision == 0
        assert not ReportComment.objects.filter(report=report).exists()


@pytest.mark.django_db
class TestTransitionHistory:

    def test_oldest_first(self, report, admin_user, responder):
        transition(report, responder, 'acknowledged')
        transition(report, admin_user, 'investigating', notes='n', assign_to_id=responder.id)
        transition(report, responder, 'resolved', notes='fixed')

        history = ReportStateMachine.get_transition_history(report.id)

        assert [(h.from_state, h.to_state) for h in history] == [
            ('submitted', 'acknowledged'),
            ('acknowledged', 'investigating'),
            ('investigating', 'resolved'),
        ]
        assert history[1].actor_email == 'admin@example.com'
        assert all(h.timestamp is not None for h in history)

    def test_empty(self, report):
        assert ReportStateMachine.get_transition_history(report.id) == []
