"""
Tests for event invites: administration, code checks and redemption.
"""
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.core.exceptions import ErrorKind
from apps.rbac.models import AuditLog, EventInvite, RoleGrant, RoleName
from apps.rbac.services import AuthorizationResolver, InviteCheck, InviteService


@pytest.fixture
def invite(admin_user, event):
    return InviteService.create_invite(event.id, RoleName.RESPONDER, actor=admin_user, max_uses=2).value


@pytest.mark.django_db
class TestCreateInvite:

    def test_create(self, admin_user, event):
        result = InviteService.create_invite(event.id, 'Responder', actor=admin_user, note='volunteers')

        assert result.ok
        invite = result.value
        assert invite.role == 'Responder'
        assert invite.created_by == admin_user
        assert invite.use_count == 0
        assert len(invite.code) >= 8
        entry = AuditLog.objects.get(action=AuditLog.ACTION_INVITE_CREATED)
        assert entry.event_id == event.id
        assert entry.diff['role'] == 'Responder'

    def test_codes_are_unique(self, event):
        codes = {InviteService.create_invite(event.id, 'Reporter').value.code for _ in range(5)}
        assert len(codes) == 5

    def test_superadmin_refused(self, event):
        result = InviteService.create_invite(event.id, RoleName.SUPER_ADMIN)
        assert result.error.code == 'INVALID_SCOPE'

    def test_unknown_role(self, event):
        assert InviteService.create_invite(event.id, 'Janitor').error.code == 'ROLE_NOT_FOUND'

    def test_unknown_event(self):
        result = InviteService.create_invite(uuid.uuid4(), 'Reporter')
        assert result.error.kind is ErrorKind.NOT_FOUND

    @pytest.mark.parametrize('limits, code', [
        ({'max_uses': 0}, 'INVALID_MAX_USES'),
        ({'expires_at': timezone.now() - timedelta(minutes=1)}, 'INVALID_EXPIRY'),
    ])
    def test_invalid_limits(self, event, limits, code):
        assert InviteService.create_invite(event.id, 'Reporter', **limits).error.code == code

    def test_code_collisions_exhausted(self, event, monkeypatch):
        taken = InviteService.create_invite(event.id, 'Reporter').value.code
        monkeypatch.setattr(InviteService, '_generate_code', classmethod(lambda cls: taken))

        result = InviteService.create_invite(event.id, 'Reporter')

        assert result.error.kind is ErrorKind.INTERNAL
        assert EventInvite.objects.count() == 1


@pytest.mark.django_db
class TestManageInvites:

    def test_list_is_event_scoped(self, invite, event, other_event):
        InviteService.create_invite(other_event.id, 'Reporter')
        assert list(InviteService.list_invites(event.id).value) == [invite]

    def test_update(self, admin_user, invite, event):
        result = InviteService.update_invite(event.id, invite.id, actor=admin_user, disabled=True, note='paused')

        assert result.value.disabled is True
        entry = AuditLog.objects.get(action=AuditLog.ACTION_INVITE_UPDATED)
        assert entry.diff['disabled'] == {'old': False, 'new': True}

    def test_update_without_changes_is_not_audited(self, invite, event):
        InviteService.update_invite(event.id, invite.id, max_uses=2)
        assert not AuditLog.objects.filter(action=AuditLog.ACTION_INVITE_UPDATED).exists()

    def test_update_rejects_other_fields(self, invite, event):
        result = InviteService.update_invite(event.id, invite.id, role='Admin')
        assert result.error.code == 'INVALID_FIELD'

    def test_update_through_wrong_event(self, invite, other_event):
        result = InviteService.update_invite(other_event.id, invite.id, disabled=True)
        assert result.error.code == 'INVITE_NOT_FOUND'

    def test_delete(self, invite, event):
        assert InviteService.delete_invite(event.id, invite.id).ok
        assert not EventInvite.objects.filter(id=invite.id).exists()
        assert InviteService.delete_invite(event.id, invite.id).error.kind is ErrorKind.NOT_FOUND

    def test_malformed_ids(self, event):
        assert InviteService.delete_invite(event.id, 'nope').error.code == 'INVITE_NOT_FOUND'
        assert InviteService.list_invites('nope').error.kind is ErrorKind.NOT_FOUND

    def test_stats(self, invite, event):
        InviteService.create_invite(event.id, 'Reporter')
        disabled = InviteService.create_invite(event.id, 'Reporter').value
        InviteService.update_invite(event.id, disabled.id, disabled=True)
        EventInvite.objects.filter(id=invite.id).update(use_count=2)

        stats = InviteService.invite_stats(event.id)

        assert stats == {'total': 3, 'active': 1, 'expired': 0, 'disabled': 1, 'total_uses': 2}


@pytest.mark.django_db
class TestValidateInvite:

    def test_valid(self, invite):
        check = InviteService.validate_invite(invite.code)
        assert check == InviteCheck(valid=True, reason=None, invite=invite)

    def test_unknown(self, event):
        check = InviteService.validate_invite('missing')
        assert not check.valid
        assert check.reason == InviteCheck.NOT_FOUND

    def test_deleted_event_hides_invite(self, invite, event):
        event.delete()
        assert InviteService.validate_invite(invite.code).reason == InviteCheck.NOT_FOUND

    @pytest.mark.parametrize('changes, reason', [
        ({'disabled': True}, EventInvite.REASON_DISABLED),
        ({'use_count': 2}, EventInvite.REASON_EXHAUSTED),
    ])
    def test_unusable(self, invite, changes, reason):
        EventInvite.objects.filter(id=invite.id).update(**changes)
        assert InviteService.validate_invite(invite.code).reason == reason

    def test_expired(self, invite):
        EventInvite.objects.filter(id=invite.id).update(expires_at=timezone.now() - timedelta(seconds=1))
        assert InviteService.validate_invite(invite.code).reason == EventInvite.REASON_EXPIRED


@pytest.mark.django_db
class TestRedeemInvite:

    def test_redeem(self, invite, make_user, event):
        user = make_user()

        result = InviteService.redeem_invite(invite.code, user)

        assert result.ok
        assert AuthorizationResolver.effective_event_role(user, event.id) is RoleName.RESPONDER
        invite.refresh_from_db()
        assert invite.use_count == 1
        actions = set(AuditLog.objects.filter(event=event).values_list('action', flat=True))
        assert {AuditLog.ACTION_ROLE_ASSIGNED, AuditLog.ACTION_INVITE_REDEEMED} <= actions

    def test_max_uses(self, invite, make_user):
        for _ in range(2):
            assert InviteService.redeem_invite(invite.code, make_user()).ok

        result = InviteService.redeem_invite(invite.code, make_user())

        assert result.error.kind is ErrorKind.VALIDATION_FAILED
        assert result.error.code == 'INVITE_EXHAUSTED'
        invite.refresh_from_db()
        assert invite.use_count == 2

    def test_already_holding_role(self, invite, responder):
        result = InviteService.redeem_invite(invite.code, responder)

        assert result.error.kind is ErrorKind.CONFLICT
        invite.refresh_from_db()
        assert invite.use_count == 0

    def test_reporter_can_join_as_responder(self, invite, reporter, event):
        assert InviteService.redeem_invite(invite.code, reporter).ok
        roles = set(RoleGrant.objects.filter(user=reporter, event=event).values_list('role', flat=True))
        assert roles == {'Reporter', 'Responder'}

    def test_disabled(self, invite, make_user):
        EventInvite.objects.filter(id=invite.id).update(disabled=True)
        assert InviteService.redeem_invite(invite.code, make_user()).error.code == 'INVITE_DISABLED'

    def test_expired(self, invite, make_user):
        EventInvite.objects.filter(id=invite.id).update(expires_at=timezone.now() - timedelta(seconds=1))
        assert InviteService.redeem_invite(invite.code, make_user()).error.code == 'INVITE_EXPIRED'

    def test_unknown_code(self, make_user):
        assert InviteService.redeem_invite('missing', make_user()).error.kind is ErrorKind.NOT_FOUND

    def test_anonymous(self, invite):
        assert InviteService.redeem_invite(invite.code, None).error.kind is ErrorKind.UNAUTHENTICATED


@pytest.mark.django_db
class TestInviteAPI:

    def invites_url(self, event, suffix=''):
        return f'/v1/events/{event.id}/invites{suffix}'

    def test_admin_creates_invite(self, api_client, admin_user, event, settings):
        settings.FRONTEND_URL = 'https://desk.example/'
        api_client.force_authenticate(admin_user)

        response = api_client.post(self.invites_url(event), {'role': 'Responder', 'max_uses': 5}, format='json')

        assert response.status_code == 201
        assert response.data['max_uses'] == 5
        assert response.data['url'] == f"https://desk.example/invite/{response.data['code']}"

    def test_responder_forbidden(self, api_client, responder, event):
        api_client.force_authenticate(responder)
        assert api_client.get(self.invites_url(event)).status_code == 403
        assert api_client.post(self.invites_url(event), {'role': 'Admin'}, format='json').status_code == 403

    def test_list(self, api_client, admin_user, invite, event):
        api_client.force_authenticate(admin_user)

        response = api_client.get(self.invites_url(event))

        assert response.status_code == 200
        assert [entry['code'] for entry in response.data['results']] == [invite.code]

    def test_patch_and_delete(self, api_client, admin_user, invite, event):
        api_client.force_authenticate(admin_user)

        response = api_client.patch(self.invites_url(event, f'/{invite.id}'), {'disabled': True}, format='json')
        assert response.status_code == 200
        assert response.data['is_usable'] is False

        assert api_client.delete(self.invites_url(event, f'/{invite.id}')).status_code == 204
        assert api_client.delete(self.invites_url(event, f'/{invite.id}')).status_code == 404

    def test_stats(self, api_client, admin_user, invite, event):
        api_client.force_authenticate(admin_user)
        response = api_client.get(self.invites_url(event, '/stats'))
        assert response.status_code == 200
        assert response.data['total'] == 1

    def test_public_code_check(self, api_client, invite, event):
        response = api_client.get(f'/v1/invites/{invite.code}')

        assert response.status_code == 200
        assert response.data['valid'] is True
        assert response.data['role'] == 'Responder'
        assert response.data['event_slug'] == event.slug

    def test_unknown_code_check(self, api_client, event):
        response = api_client.get('/v1/invites/missing')

        assert response.status_code == 200
        assert response.data['valid'] is False
        assert response.data['event_id'] is None

    def test_redeem_requires_authentication(self, api_client, invite):
        assert api_client.post(f'/v1/invites/{invite.code}/redeem').status_code == 401

    def test_redeem(self, api_client, invite, make_user, event):
        user = make_user()
        api_client.force_authenticate(user)

        response = api_client.post(f'/v1/invites/{invite.code}/redeem')

        assert response.status_code == 201
        assert response.data['role'] == 'Responder'
        assert api_client.post(f'/v1/invites/{invite.code}/redeem').status_code == 409
