"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.RATELIMIT_ENABLE = False
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    settings.IS_PRODUCTION = False
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def business(db):
    """Create a test business."""
    from apps.businesses.models import Business
    return Business.objects.create(
        name='Test Bistro',
        slug='test-bistro',
        contact_email='owner@test-bistro.example.com',
    )


@pytest.fixture
def other_business(db):
    """Create another business for isolation tests."""
    from apps.businesses.models import Business
    return Business.objects.create(
        name='Other Diner',
        slug='other-diner',
    )


@pytest.fixture
def make_permission(db):
    """Return a helper that gets or creates a ``resource:action`` permission."""
    from apps.rbac.models import Permission

    def _make(code):
        resource, action = code.split(':', 1)
        return Permission.objects.get_or_create_permission(resource, action)[0]

    return _make


@pytest.fixture
def grant_permissions(db, make_permission):
    """
    Return a helper that gives ``user`` the listed permission codes through
    a fresh role and returns that role.
    """
    from apps.rbac.models import Role, RolePermission, RoleScope, UserRole

    counter = {'n': 0}

    def _grant(user, *codes, business=None):
        counter['n'] += 1
        role = Role.objects.create(
            name=f'test_role_{counter["n"]}',
            scope=RoleScope.BUSINESS,
            business=business or user.business,
        )
        for code in codes:
            RolePermission.objects.grant_permission(role, make_permission(code))
        UserRole.objects.assign(user, role)
        return role

    return _grant


@pytest.fixture
def system_admin(db):
    """System administrator holding the reserved system_admin role with every permission."""
    from apps.rbac.catalog import MATRIX_ACTIONS, MATRIX_RESOURCES
    from apps.rbac.models import AccountType, Permission, RolePermission, User, UserRole
    from apps.rbac.roles import role_registry

    user = User.objects.create_user(
        email='root@example.com',
        password='RootPass123!',
        first_name='Ada',
        last_name='Root',
        role=AccountType.SYSTEM_ADMIN,
        is_password_set=True,
    )
    role = role_registry.ensure_system_admin_role()
    for resource in MATRIX_RESOURCES:
        for action in MATRIX_ACTIONS:
            permission, _ = Permission.objects.get_or_create_permission(resource, action)
            RolePermission.objects.grant_permission(role, permission)
    UserRole.objects.assign(user, role)
    return user


@pytest.fixture
def restaurant_admin(db, business):
    """Business administrator of ``business`` with no fine-grained permissions."""
    from apps.rbac.models import AccountType, User
    return User.objects.create_user(
        email='manager@test-bistro.example.com',
        password='ManagerPass123!',
        first_name='Mia',
        last_name='Manager',
        role=AccountType.RESTAURANT_ADMIN,
        business=business,
        is_password_set=True,
    )


@pytest.fixture
def other_restaurant_admin(db, other_business):
    """Business administrator of ``other_business``."""
    from apps.rbac.models import AccountType, User
    return User.objects.create_user(
        email='manager@other-diner.example.com',
        password='ManagerPass123!',
        first_name='Olu',
        last_name='Other',
        role=AccountType.RESTAURANT_ADMIN,
        business=other_business,
        is_password_set=True,
    )


@pytest.fixture
def customer_user(db):
    """Ordinary customer account."""
    from apps.rbac.models import User
    return User.objects.create_user(
        email='diner@example.com',
        password='DinerPass123!',
        first_name='Dee',
        last_name='Diner',
        is_password_set=True,
    )


@pytest.fixture
def auth_client(api_client):
    """Return a helper that authenticates ``api_client`` with a real session token."""
    from apps.rbac.services import auth_service

    def _authenticate(user):
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {auth_service.generate_jwt(user)}')
        return api_client

    return _authenticate
