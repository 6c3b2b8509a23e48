"""
API tests for organization membership and event lookup.
"""
import pytest

from apps.events.models import OrganizationMembership


@pytest.fixture
def org_admin(make_user, organization):
    user = make_user(email='orgadmin@example.com')
    OrganizationMembership.objects.create(
        organization=organization, user=user, role=OrganizationMembership.ROLE_ADMIN
    )
    return user


@pytest.fixture
def org_viewer(make_user, organization):
    user = make_user(email='viewer@example.com')
    OrganizationMembership.objects.create(
        organization=organization, user=user, role=OrganizationMembership.ROLE_VIEWER
    )
    return user


@pytest.mark.django_db
class TestOrganizationMembersAPI:

    def test_viewer_lists_members(self, api_client, org_admin, org_viewer, organization):
        api_client.force_authenticate(org_viewer)
        response = api_client.get(f'/v1/organizations/{organization.id}/members')

        assert response.status_code == 200
        assert {m['user']['email'] for m in response.data} == {'orgadmin@example.com', 'viewer@example.com'}

    def test_non_member_forbidden(self, api_client, make_user, organization):
        api_client.force_authenticate(make_user())
        assert api_client.get(f'/v1/organizations/{organization.id}/members').status_code == 403

    def test_anonymous(self, api_client, organization):
        assert api_client.get(f'/v1/organizations/{organization.id}/members').status_code == 401

    def test_viewer_cannot_add(self, api_client, org_viewer, make_user, organization):
        api_client.force_authenticate(org_viewer)
        response = api_client.post(
            f'/v1/organizations/{organization.id}/members', {'user_id': str(make_user().id)}, format='json'
        )
        assert response.status_code == 403

    def test_admin_adds_member(self, api_client, org_admin, make_user, organization):
        user = make_user()
        api_client.force_authenticate(org_admin)

        response = api_client.post(
            f'/v1/organizations/{organization.id}/members', {'user_id': str(user.id)}, format='json'
        )

        assert response.status_code == 201
        assert response.data['role'] == OrganizationMembership.ROLE_VIEWER

    def test_duplicate_is_409(self, api_client, org_admin, org_viewer, organization):
        api_client.force_authenticate(org_admin)
        response = api_client.post(
            f'/v1/organizations/{organization.id}/members', {'user_id': str(org_viewer.id)}, format='json'
        )
        assert response.status_code == 409
        assert response.data['error'] == 'User is already a member'

    def test_superadmin_manages_any_organization(self, api_client, superadmin, make_user, organization):
        api_client.force_authenticate(superadmin)
        response = api_client.post(
            f'/v1/organizations/{organization.id}/members',
            {'user_id': str(make_user().id), 'role': OrganizationMembership.ROLE_ADMIN},
            format='json',
        )
        assert response.status_code == 201

    def test_change_role(self, api_client, org_admin, org_viewer, organization):
        api_client.force_authenticate(org_admin)
        response = api_client.patch(
            f'/v1/organizations/{organization.id}/members/{org_viewer.id}',
            {'role': OrganizationMembership.ROLE_ADMIN},
            format='json',
        )
        assert response.status_code == 200
        assert response.data['role'] == OrganizationMembership.ROLE_ADMIN

    def test_remove_last_admin_rejected(self, api_client, org_admin, organization):
        api_client.force_authenticate(org_admin)
        response = api_client.delete(f'/v1/organizations/{organization.id}/members/{org_admin.id}')
        assert response.status_code == 400

    def test_remove_member(self, api_client, org_admin, org_viewer, organization):
        api_client.force_authenticate(org_admin)
        response = api_client.delete(f'/v1/organizations/{organization.id}/members/{org_viewer.id}')
        assert response.status_code == 204


@pytest.mark.django_db
class TestEventBySlugAPI:

    def test_found(self, api_client, reporter, event):
        api_client.force_authenticate(reporter)
        response = api_client.get(f'/v1/events/by-slug/{event.slug}')
        assert response.status_code == 200
        assert response.data['id'] == str(event.id)

    def test_missing(self, api_client, reporter):
        api_client.force_authenticate(reporter)
        response = api_client.get('/v1/events/by-slug/missing')
        assert response.status_code == 404
        assert response.data['code'] == 'EVENT_NOT_FOUND'
