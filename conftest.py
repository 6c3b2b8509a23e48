"""
Pytest configuration and fixtures.
"""
import pytest
from django.core.cache import cache
from django.core.management import call_command


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Create tables for apps without migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Grant lists and rate-limit counters live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def make_user(db):
    """Factory for principals with unique emails."""
    from apps.rbac.models import User

    counter = {'n': 0}

    def _make(email=None, name='', **extra):
        counter['n'] += 1
        email = email or f"user{counter['n']}@example.com"
        return User.objects.create_user(email=email, password='testpass123', name=name, **extra)

    return _make


@pytest.fixture
def organization(db):
    from apps.events.models import Organization
    return Organization.objects.create(name='PyCon Org', slug='pycon-org')


@pytest.fixture
def event(db, organization):
    """Create a test event."""
    from apps.events.models import Event
    return Event.objects.create(
        organization=organization,
        name='PyCon 2026',
        slug='pycon-2026',
        contact_email='safety@pycon.example',
    )


@pytest.fixture
def other_event(db):
    """Create another event for scope isolation tests."""
    from apps.events.models import Event
    return Event.objects.create(name='DjangoCon 2026', slug='djangocon-2026')


@pytest.fixture
def grant(db):
    """Grant ``role`` to ``user`` for ``event`` (None for global)."""
    from apps.rbac.models import RoleGrant

    def _grant(user, role, event=None):
        return RoleGrant.objects.create(user=user, event=event, role=role)

    return _grant


@pytest.fixture
def admin_user(make_user, grant, event):
    from apps.rbac.models import RoleName
    user = make_user(email='admin@example.com', name='Event Admin')
    grant(user, RoleName.ADMIN, event)
    return user


@pytest.fixture
def responder(make_user, grant, event):
    from apps.rbac.models import RoleName
    user = make_user(email='responder@example.com', name='Responder')
    grant(user, RoleName.RESPONDER, event)
    return user


@pytest.fixture
def reporter(make_user, grant, event):
    from apps.rbac.models import RoleName
    user = make_user(email='reporter@example.com', name='Reporter')
    grant(user, RoleName.REPORTER, event)
    return user


@pytest.fixture
def superadmin(make_user, grant):
    from apps.rbac.models import RoleName
    user = make_user(email='root@example.com', name='Super Admin')
    grant(user, RoleName.SUPER_ADMIN)
    return user


@pytest.fixture
def report(db, event, reporter):
    """A freshly submitted report."""
    from apps.reports.models import Report
    return Report.objects.create(
        event=event,
        reporter=reporter,
        title='Harassment near the registration desk',
        description='Someone was repeatedly harassing attendees.',
        type='harassment',
        severity='high',
        location='Hall A',
    )
