"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


TEST_PASSWORD = 'Sup3r-Secret-Pass!'


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    # Fast hashing keeps the suite quick
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations (the catalog is seeded by a data migration)."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def tenant(db):
    """Create a test tenant."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Test Tenant',
        slug='test-tenant',
    )


@pytest.fixture
def other_tenant(db):
    """Create another test tenant for isolation tests."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Other Tenant',
        slug='other-tenant',
    )


@pytest.fixture
def user(db):
    """Create a test user without any membership."""
    from apps.rbac.models import User
    return User.objects.create_user(
        email='user@example.com',
        password=TEST_PASSWORD,
        first_name='Test',
        last_name='User',
    )


@pytest.fixture
def make_member(db):
    """
    Factory: create a user who is an active member of ``tenant``.

    ``permissions`` go onto a role assigned to the user; ``direct`` are
    granted as direct claims.
    """
    from django.utils import timezone
    from apps.rbac.models import Role, User, UserRole, UserTenant
    from apps.rbac.stores import ClaimStore

    counter = {'n': 0}

    def _make_member(tenant, email=None, permissions=(), direct=(), active=True):
        counter['n'] += 1
        user = User.objects.create_user(
            email=email or f"member{counter['n']}@example.com",
            password=TEST_PASSWORD,
        )
        UserTenant.objects.create(
            user=user,
            tenant=tenant,
            is_active=active,
            joined_at=timezone.now() if active else None,
        )
        if permissions:
            role = Role.objects.create(tenant=tenant, name=f"Role {counter['n']}")
            ClaimStore().assign_to_role(role.id, list(permissions))
            UserRole.objects.create(user=user, role=role, tenant=tenant)
        if direct:
            ClaimStore().assign_direct(user.id, tenant.id, list(direct))
        return user

    return _make_member


@pytest.fixture
def member(make_member, tenant):
    """An active member of ``tenant`` with no permissions."""
    return make_member(tenant, email='member@example.com')


@pytest.fixture
def auth_client(api_client):
    """Factory: an API client carrying a JWT for ``user`` in ``tenant``."""
    from apps.rbac.services import AuthService

    def _auth_client(user, tenant):
        token = AuthService.issue_token(user.id, tenant.id, [], security_stamp=user.security_stamp)
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
        return api_client

    return _auth_client
