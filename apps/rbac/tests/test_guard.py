"""
Tests for the Access Control Guard.
"""
from unittest.mock import patch

import pytest
from django.contrib.auth.models import AnonymousUser

from apps.core.exceptions import ErrorKind
from apps.rbac.models import RoleName
from apps.rbac.services import AccessDecision, AccessGuard, ScopeHint


@pytest.mark.django_db
class TestAuthorize:

    def test_unauthenticated(self, event):
        decision = AccessGuard.authorize(AnonymousUser(), ScopeHint(event_id=event.id), {RoleName.ADMIN})
        assert not decision.allowed
        assert decision.error_kind is ErrorKind.UNAUTHENTICATED
        assert decision.reason == 'not authenticated'

    def test_none_principal(self, event):
        decision = AccessGuard.authorize(None, ScopeHint(event_id=event.id), {RoleName.ADMIN})
        assert decision.error_kind is ErrorKind.UNAUTHENTICATED

    def test_role_in_event_allowed(self, responder, event):
        decision = AccessGuard.authorize(
            responder, ScopeHint(event_id=event.id), {RoleName.RESPONDER, RoleName.ADMIN}
        )
        assert decision.allowed
        assert decision.event_id == str(event.id)

    def test_wrong_role_forbidden(self, reporter, event):
        decision = AccessGuard.authorize(reporter, ScopeHint(event_id=event.id), {RoleName.ADMIN})
        assert not decision.allowed
        assert decision.error_kind is ErrorKind.FORBIDDEN
        assert decision.reason == 'insufficient role'

    def test_role_in_other_event_forbidden(self, responder, other_event):
        decision = AccessGuard.authorize(responder, ScopeHint(event_id=other_event.id), {RoleName.RESPONDER})
        assert decision.error_kind is ErrorKind.FORBIDDEN

    def test_slug_scope(self, admin_user, event):
        decision = AccessGuard.authorize(admin_user, ScopeHint(slug=event.slug), {RoleName.ADMIN})
        assert decision.allowed
        assert decision.event_id == str(event.id)

    def test_event_id_takes_precedence_over_slug(self, admin_user, event, other_event):
        decision = AccessGuard.authorize(
            admin_user, ScopeHint(event_id=other_event.id, slug=event.slug), {RoleName.ADMIN}
        )
        assert not decision.allowed

    def test_undetermined_scope_uses_any_event(self, responder):
        with patch('apps.rbac.services.SecurityLogger.log_broad_scope_check') as log_broad:
            decision = AccessGuard.authorize(responder, ScopeHint(), {RoleName.RESPONDER})
        assert decision.allowed
        log_broad.assert_called_once()

    def test_unknown_slug_falls_back_to_any_event(self, responder):
        decision = AccessGuard.authorize(responder, ScopeHint(slug='no-such-event'), {RoleName.RESPONDER})
        assert decision.allowed

    def test_no_grants_anywhere_forbidden(self, make_user):
        decision = AccessGuard.authorize(make_user(), ScopeHint(), {RoleName.REPORTER})
        assert decision.error_kind is ErrorKind.FORBIDDEN

    def test_denial_is_logged(self, reporter, event):
        with patch('apps.rbac.services.SecurityLogger.log_permission_denied') as log_denied:
            AccessGuard.authorize(reporter, ScopeHint(event_id=event.id), {RoleName.ADMIN})
        log_denied.assert_called_once()
        assert log_denied.call_args.kwargs['reason'] == 'insufficient role'

    def test_to_result(self, reporter, event):
        result = AccessGuard.authorize(reporter, ScopeHint(event_id=event.id), {RoleName.ADMIN}).to_result()
        assert not result.ok
        assert result.error.status_code == 403


@pytest.mark.django_db
class TestSuperAdminOverride:

    def test_superadmin_listed(self, superadmin, event):
        decision = AccessGuard.authorize(superadmin, ScopeHint(event_id=event.id), {RoleName.SUPER_ADMIN})
        assert decision.allowed

    def test_implicit_override_on(self, superadmin, event, settings):
        settings.RBAC_SUPERADMIN_IMPLICIT_OVERRIDE = True
        decision = AccessGuard.authorize(superadmin, ScopeHint(event_id=event.id), {RoleName.RESPONDER})
        assert decision.allowed

    def test_implicit_override_off(self, superadmin, event, settings):
        settings.RBAC_SUPERADMIN_IMPLICIT_OVERRIDE = False
        decision = AccessGuard.authorize(superadmin, ScopeHint(event_id=event.id), {RoleName.RESPONDER})
        assert not decision.allowed
        assert decision.error_kind is ErrorKind.FORBIDDEN

    def test_require_superadmin(self, superadmin, admin_user):
        assert AccessGuard.require_superadmin(superadmin).allowed
        assert AccessGuard.require_superadmin(admin_user).error_kind is ErrorKind.FORBIDDEN


@pytest.mark.django_db
class TestFailClosed:

    def test_resolver_failure_denies(self, admin_user, event):
        with patch(
            'apps.rbac.services.AuthorizationResolver.get_grants',
            side_effect=ConnectionError("cache unreachable"),
        ), patch('apps.rbac.services.SecurityLogger.log_authorization_error') as log_error:
            decision = AccessGuard.authorize(admin_user, ScopeHint(event_id=event.id), {RoleName.ADMIN})

        assert not decision.allowed
        assert decision.error_kind is ErrorKind.INTERNAL
        assert decision.reason == AccessDecision.UNAVAILABLE
        log_error.assert_called_once()

    def test_internal_reason_does_not_leak_detail(self, admin_user, event):
        with patch(
            'apps.rbac.services.AuthorizationResolver.get_grants',
            side_effect=RuntimeError("password=hunter2"),
        ):
            decision = AccessGuard.authorize(admin_user, ScopeHint(event_id=event.id), {RoleName.ADMIN})
        assert 'hunter2' not in decision.reason
