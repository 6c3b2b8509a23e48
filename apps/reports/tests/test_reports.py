"""
Tests for report submission, access rules, edits and comments.
"""
import uuid

import pytest

from apps.core.exceptions import ErrorKind
from apps.notifications.models import Notification, NotificationType
from apps.rbac.models import AuditLog, RoleName
from apps.reports.models import ReportComment, ReportState
from apps.reports.services import ReportService, ReportStateMachine


def submit(event, reporter, **overrides):
    data = {
        'title': 'Unsafe crowding at the main exit',
        'description': 'The exit was blocked during the keynote.',
        'type': 'safety',
    }
    data.update(overrides)
    return ReportService.submit_report(event.id, reporter, **data)


@pytest.mark.django_db
class TestSubmitReport:

    def test_submit(self, event, reporter, admin_user, responder):
        result = submit(event, reporter, severity='medium')

        assert result.ok
        report = result.value
        assert report.state == ReportState.SUBMITTED
        assert report.revision == 0
        assert report.reporter == reporter
        assert report.severity == 'medium'

        entry = AuditLog.objects.get(action=AuditLog.ACTION_SUBMITTED)
        assert entry.target_id == report.id
        assert entry.to_state == 'submitted'

        notified = set(Notification.objects.filter(type=NotificationType.REPORT_SUBMITTED).values_list('user_id', flat=True))
        assert notified == {admin_user.id, responder.id}

    def test_anonymous(self, event, admin_user):
        from django.contrib.auth.models import AnonymousUser

        result = submit(event, AnonymousUser())

        assert result.ok
        assert result.value.reporter is None
        assert AuditLog.objects.get(action=AuditLog.ACTION_SUBMITTED).user is None
        assert Notification.objects.filter(user=admin_user).count() == 1

    def test_title_is_stripped(self, event, reporter):
        assert submit(event, reporter, title='  Unsafe crowding at the exit  ').value.title == 'Unsafe crowding at the exit'

    @pytest.mark.parametrize('title', ['too short', 'x' * 71, '', '         a'])
    def test_title_length(self, event, reporter, title):
        result = submit(event, reporter, title=title)
        assert result.error.code == 'INVALID_TITLE'

    def test_title_bounds_inclusive(self, event, reporter):
        assert submit(event, reporter, title='x' * 10).ok
        assert submit(event, reporter, title='x' * 70).ok

    def test_description_required(self, event, reporter):
        assert submit(event, reporter, description='  ').error.code == 'INVALID_DESCRIPTION'

    def test_invalid_severity(self, event, reporter):
        assert submit(event, reporter, severity='apocalyptic').error.code == 'INVALID_SEVERITY'

    def test_unknown_event(self, reporter):
        result = ReportService.submit_report(uuid.uuid4(), reporter, 'Unsafe crowding at exit', 'details')
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_inactive_event(self, event, reporter):
        event.is_active = False
        event.save()

        result = submit(event, reporter)

        assert result.error.code == 'EVENT_INACTIVE'


@pytest.mark.django_db
class TestReportAccess:

    def test_reporter_sees_own(self, event, report, reporter):
        assert ReportService.get_report(event.id, report.id, reporter).value == report

    def test_staff_sees_report(self, event, report, responder, admin_user, superadmin):
        for user in (responder, admin_user, superadmin):
            assert ReportService.get_report(event.id, report.id, user).ok

    def test_other_reporter_forbidden(self, event, report, make_user, grant):
        other = make_user()
        grant(other, RoleName.REPORTER, event)

        result = ReportService.get_report(event.id, report.id, other)

        assert result.error.kind is ErrorKind.FORBIDDEN

    def test_wrong_event_not_found(self, report, other_event, superadmin):
        result = ReportService.get_report(other_event.id, report.id, superadmin)
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_list_staff_sees_all(self, event, report, responder, make_user):
        other_report = submit(event, make_user()).value

        reports = ReportService.list_reports(event.id, responder).value

        assert set(reports) == {report, other_report}

    def test_list_reporter_sees_own(self, event, report, reporter, make_user):
        submit(event, make_user())
        assert list(ReportService.list_reports(event.id, reporter).value) == [report]

    def test_list_filters(self, event, report, responder, admin_user):
        ReportStateMachine.transition_report(
            event.id, report.id, 'investigating', admin_user, notes='n', assign_to_id=responder.id
        )
        submit(event, admin_user, severity='low')

        assert list(ReportService.list_reports(event.id, responder, state='investigating').value) == [report]
        assert list(ReportService.list_reports(event.id, responder, severity='high').value) == [report]
        assert list(ReportService.list_reports(event.id, responder, assigned_to=responder.id).value) == [report]

    def test_list_malformed_assignee_filter(self, event, report, responder):
        result = ReportService.list_reports(event.id, responder, assigned_to='not-a-uuid')

        assert result.error.kind is ErrorKind.VALIDATION_FAILED
        assert result.error.code == 'INVALID_FILTER'


@pytest.mark.django_db
class TestUpdateDetails:

    def test_reporter_edits_description(self, event, report, reporter):
        result = ReportService.update_details(event.id, report.id, reporter, description='More detail here.')

        assert result.ok
        report.refresh_from_db()
        assert report.description == 'More detail here.'
        entry = AuditLog.objects.get(action=AuditLog.ACTION_DETAILS_UPDATED)
        assert entry.diff['description']['new'] == 'More detail here.'

    def test_state_not_editable(self, event, report, admin_user):
        result = ReportService.update_details(event.id, report.id, admin_user, state='closed')

        assert result.error.code == 'FIELD_NOT_EDITABLE'
        report.refresh_from_db()
        assert report.state == ReportState.SUBMITTED

    def test_assignment_not_editable(self, event, report, admin_user, responder):
        result = ReportService.update_details(event.id, report.id, admin_user, assigned_responder=responder)
        assert result.error.code == 'FIELD_NOT_EDITABLE'

    def test_reporter_cannot_set_severity(self, event, report, reporter):
        result = ReportService.update_details(event.id, report.id, reporter, severity='low')
        assert result.error.kind is ErrorKind.FORBIDDEN

    def test_responder_sets_severity(self, event, report, responder):
        assert ReportService.update_details(event.id, report.id, responder, severity='critical').value.severity == 'critical'

    def test_responder_cannot_edit_text(self, event, report, responder):
        result = ReportService.update_details(event.id, report.id, responder, title='A rewritten title')
        assert result.error.kind is ErrorKind.FORBIDDEN

    def test_no_change_no_audit(self, event, report, reporter):
        assert ReportService.update_details(event.id, report.id, reporter, location='Hall A').ok
        assert not AuditLog.objects.filter(action=AuditLog.ACTION_DETAILS_UPDATED).exists()

    def test_revision_untouched(self, event, report, admin_user):
        ReportService.update_details(event.id, report.id, admin_user, title='Harassment at the badge desk')
        report.refresh_from_db()
        assert report.revision == 0


@pytest.mark.django_db
class TestComments:

    def test_reporter_public_comment(self, event, report, reporter, responder, admin_user):
        result = ReportService.add_comment(event.id, report.id, reporter, 'Any update?')

        assert result.ok
        notified = set(
            Notification.objects.filter(type=NotificationType.REPORT_COMMENT_ADDED).values_list('user_id', flat=True)
        )
        assert notified == {responder.id, admin_user.id}

    def test_reporter_cannot_post_internal(self, event, report, reporter):
        result = ReportService.add_comment(event.id, report.id, reporter, 'psst', visibility='internal')
        assert result.error.kind is ErrorKind.FORBIDDEN

    def test_internal_comment_skips_reporter(self, event, report, reporter, responder, admin_user):
        assert ReportService.add_comment(event.id, report.id, responder, 'Talked to security', visibility='internal').ok
        assert not Notification.objects.filter(user=reporter).exists()
        assert Notification.objects.filter(user=admin_user).count() == 1

    def test_public_comment_by_staff_notifies_reporter(self, event, report, reporter, responder):
        ReportService.add_comment(event.id, report.id, responder, 'We are on it')
        assert Notification.objects.filter(user=reporter, type=NotificationType.REPORT_COMMENT_ADDED).count() == 1

    def test_blank_body(self, event, report, reporter):
        assert ReportService.add_comment(event.id, report.id, reporter, '   ').error.code == 'INVALID_BODY'

    def test_invalid_visibility(self, event, report, reporter):
        result = ReportService.add_comment(event.id, report.id, reporter, 'hi', visibility='secret')
        assert result.error.code == 'INVALID_VISIBILITY'

    def test_reporter_sees_public_only(self, event, report, reporter, responder):
        ReportService.add_comment(event.id, report.id, responder, 'Internal note', visibility='internal')
        ReportService.add_comment(event.id, report.id, responder, 'Public note')

        assert [c.body for c in ReportService.list_comments(report, reporter)] == ['Public note']
        assert ReportService.list_comments(report, responder).count() == 2
        assert ReportComment.objects.count() == 2
