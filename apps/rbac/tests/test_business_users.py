"""
Tests for tenant-scoped user management: role assignment and revocation
within a business, the staff listing and staff account creation.
"""
import uuid

import pytest
from django.core import mail

from apps.core.exceptions import (
    AuthorizationError, NotFoundError, ValidationError,
)
from apps.rbac.models import AccountType, AuditLog, Role, RoleScope, User, UserRole
from apps.rbac.provisioning import admin_provisioning
from apps.rbac.roles import role_registry
from apps.rbac.services import rbac_service


@pytest.fixture
def staff_member(db, business):
    """Account of ``business`` with no roles."""
    return User.objects.create_user(
        email='host@test-bistro.example.com',
        first_name='Hana',
        last_name='Host',
        business=business,
        is_password_set=False,
    )


@pytest.fixture
def foreign_staff_member(db, other_business):
    return User.objects.create_user(
        email='host@other-diner.example.com',
        business=other_business,
        is_password_set=False,
    )


@pytest.mark.django_db
class TestAssignBusinessRole:
    """Test RBACService.assign_business_role."""

    def test_business_admin_assigns_own_role(self, restaurant_admin, staff_member, business):
        role = role_registry.create_role('Host', business=business)

        rbac_service.assign_business_role(restaurant_admin, staff_member.id, role.id)

        assert rbac_service.check_user_has_role(staff_member.id, ['Host'])
        assert AuditLog.objects.filter(action='role_assigned').exists()

    def test_assignment_is_idempotent(self, restaurant_admin, staff_member, business):
        role = role_registry.create_role('Host', business=business)

        rbac_service.assign_business_role(restaurant_admin, staff_member.id, role.id)
        rbac_service.assign_business_role(restaurant_admin, staff_member.id, role.id)

        assert UserRole.objects.filter(user=staff_member, role=role).count() == 1

    def test_user_outside_business_rejected(self, restaurant_admin, foreign_staff_member, business):
        role = role_registry.create_role('Host', business=business)

        with pytest.raises(AuthorizationError) as exc_info:
            rbac_service.assign_business_role(restaurant_admin, foreign_staff_member.id, role.id)

        assert exc_info.value.message == 'Cannot assign roles to users outside your business'
        assert not UserRole.objects.filter(user=foreign_staff_member).exists()

    def test_foreign_role_rejected(self, restaurant_admin, staff_member, other_business):
        role = role_registry.create_role('Host', business=other_business)

        with pytest.raises(AuthorizationError) as exc_info:
            rbac_service.assign_business_role(restaurant_admin, staff_member.id, role.id)

        assert exc_info.value.message == 'Can only assign business roles from your business'
        assert not UserRole.objects.filter(user=staff_member).exists()

    def test_shared_and_system_roles_rejected(self, restaurant_admin, staff_member):
        shared = role_registry.create_role('Shared')
        platform = role_registry.create_role('Platform', scope=RoleScope.SYSTEM)

        for role in (shared, platform):
            with pytest.raises(AuthorizationError):
                rbac_service.assign_business_role(restaurant_admin, staff_member.id, role.id)

        shared.refresh_from_db()
        assert shared.business is None

    def test_customer_actor_rejected(self, customer_user, staff_member, business):
        role = role_registry.create_role('Host', business=business)

        with pytest.raises(AuthorizationError) as exc_info:
            rbac_service.assign_business_role(customer_user, staff_member.id, role.id)

        assert exc_info.value.message == 'Access denied'

    def test_unknown_user_and_role(self, system_admin, staff_member, business):
        role = role_registry.create_role('Host', business=business)

        with pytest.raises(NotFoundError) as exc_info:
            rbac_service.assign_business_role(system_admin, uuid.uuid4(), role.id)
        assert exc_info.value.message == 'User not found'

        with pytest.raises(NotFoundError) as exc_info:
            rbac_service.assign_business_role(system_admin, staff_member.id, uuid.uuid4())
        assert exc_info.value.message == 'Role not found'

    def test_system_admin_joins_user_to_role_business(self, system_admin, customer_user, business):
        role = role_registry.create_role('Host', business=business)

        rbac_service.assign_business_role(system_admin, customer_user.id, role.id)

        customer_user.refresh_from_db()
        assert customer_user.business == business

    def test_system_admin_cannot_mix_businesses(self, system_admin, staff_member, other_business):
        role = role_registry.create_role('Host', business=other_business)

        with pytest.raises(ValidationError) as exc_info:
            rbac_service.assign_business_role(system_admin, staff_member.id, role.id)

        assert exc_info.value.message == 'Role belongs to a different business'
        assert not UserRole.objects.filter(user=staff_member).exists()

    def test_system_admin_backfills_unstamped_role(self, system_admin, staff_member, business):
        role = role_registry.create_role('Host')

        rbac_service.assign_business_role(system_admin, staff_member.id, role.id)

        role.refresh_from_db()
        assert role.business == business


@pytest.mark.django_db
class TestRevokeBusinessRole:
    """Test RBACService.revoke_business_role."""

    def test_business_admin_revokes_own_role(self, restaurant_admin, staff_member, business):
        role = role_registry.create_role('Host', business=business)
        UserRole.objects.assign(staff_member, role)

        rbac_service.revoke_business_role(restaurant_admin, staff_member.id, role.id)

        assert not UserRole.objects.filter(user=staff_member, role=role).exists()

    def test_user_outside_business_rejected(self, restaurant_admin, foreign_staff_member, other_business):
        role = role_registry.create_role('Host', business=other_business)
        UserRole.objects.assign(foreign_staff_member, role)

        with pytest.raises(AuthorizationError) as exc_info:
            rbac_service.revoke_business_role(restaurant_admin, foreign_staff_member.id, role.id)

        assert exc_info.value.message == 'Cannot revoke roles from users outside your business'
        assert UserRole.objects.filter(user=foreign_staff_member, role=role).exists()

    def test_foreign_role_rejected(self, restaurant_admin, staff_member, other_business):
        role = role_registry.create_role('Host', business=other_business)

        with pytest.raises(AuthorizationError) as exc_info:
            rbac_service.revoke_business_role(restaurant_admin, staff_member.id, role.id)

        assert exc_info.value.message == 'Can only revoke business roles from your business'

    def test_deleted_role_can_be_revoked(self, restaurant_admin, staff_member, business):
        role = role_registry.create_role('Host', business=business)
        UserRole.objects.assign(staff_member, role)
        role_registry.delete_role(role)

        rbac_service.revoke_business_role(restaurant_admin, staff_member.id, role.id)

        assert not UserRole.objects.filter(user=staff_member).exists()


@pytest.mark.django_db
class TestBusinessUsers:
    """Test RBACService.business_users and grouping."""

    def test_business_admin_sees_own_business(
        self, restaurant_admin, staff_member, foreign_staff_member, customer_user
    ):
        users = rbac_service.business_users(restaurant_admin)

        assert set(users) == {restaurant_admin, staff_member}

    def test_system_admin_sees_admins_and_staff(
        self, system_admin, restaurant_admin, staff_member, foreign_staff_member, customer_user
    ):
        users = rbac_service.business_users(system_admin)

        assert customer_user not in users
        assert {system_admin, restaurant_admin, staff_member, foreign_staff_member} <= set(users)

    def test_business_admin_without_business_sees_nobody(self, restaurant_admin, staff_member):
        restaurant_admin.business = None
        restaurant_admin.save()

        assert rbac_service.business_users(restaurant_admin) == []

    def test_customer_rejected(self, customer_user):
        with pytest.raises(AuthorizationError):
            rbac_service.business_users(customer_user)

    def test_group_by_first_role(self, restaurant_admin, staff_member, business):
        role = role_registry.create_role('Host', business=business)
        UserRole.objects.assign(staff_member, role)

        groups = rbac_service.group_by_primary_role([restaurant_admin, staff_member])

        assert groups == {'restaurant_admin': [restaurant_admin], 'Host': [staff_member]}


@pytest.mark.django_db
class TestCreateBusinessUser:
    """Test AdminProvisioning.create_business_user."""

    def test_business_admin_creates_staff(self, restaurant_admin, business):
        host = role_registry.create_role('Host', business=business)
        runner = role_registry.create_role('Runner', business=business)

        result = admin_provisioning.create_business_user(
            restaurant_admin, 'New.Host@Example.com', 'Nia', 'Host', role_ids=[str(host.id), str(runner.id)]
        )

        user = result.user
        assert user.email == 'new.host@example.com'
        assert user.role == AccountType.CUSTOMER
        assert user.business == business
        assert user.is_password_set is False
        assert sorted(r.name for r in rbac_service.get_user_roles(user.id)) == ['Host', 'Runner']
        assert len(mail.outbox) == 1
        assert AuditLog.objects.filter(action='business_user_created', target_id=user.id).exists()

    def test_business_admin_cannot_use_foreign_role(self, restaurant_admin, other_business):
        role = role_registry.create_role('Host', business=other_business)

        with pytest.raises(AuthorizationError) as exc_info:
            admin_provisioning.create_business_user(
                restaurant_admin, 'x@example.com', role_ids=[role.id]
            )

        assert exc_info.value.message == 'Can only assign business roles from your business'
        assert not User.objects.filter(email='x@example.com').exists()

    def test_email_required(self, restaurant_admin):
        with pytest.raises(ValidationError) as exc_info:
            admin_provisioning.create_business_user(restaurant_admin, '')

        assert exc_info.value.details == {'email': 'Email is required'}

    def test_unknown_role(self, restaurant_admin):
        with pytest.raises(NotFoundError):
            admin_provisioning.create_business_user(
                restaurant_admin, 'x@example.com', role_ids=[str(uuid.uuid4())]
            )

    def test_system_admin_uses_role_business(self, system_admin, business):
        role = role_registry.create_role('Host', business=business)

        result = admin_provisioning.create_business_user(system_admin, 'x@example.com', role_ids=[role.id])

        assert result.user.business == business

    def test_system_admin_cannot_mix_businesses(self, system_admin, business, other_business):
        role = role_registry.create_role('Host', business=business)

        with pytest.raises(ValidationError) as exc_info:
            admin_provisioning.create_business_user(
                system_admin, 'x@example.com', role_ids=[role.id], business_id=other_business.id
            )

        assert exc_info.value.message == 'Role belongs to a different business'
        assert not User.objects.filter(email='x@example.com').exists()

    def test_unstamped_role_needs_a_business(self, system_admin):
        role = role_registry.create_role('Host')

        with pytest.raises(ValidationError):
            admin_provisioning.create_business_user(system_admin, 'x@example.com', role_ids=[role.id])

    def test_customer_rejected(self, customer_user):
        with pytest.raises(AuthorizationError):
            admin_provisioning.create_business_user(customer_user, 'x@example.com')


@pytest.mark.django_db
class TestBusinessUserEndpoints:
    """Test /v1/users/..."""

    def test_assign_and_revoke(self, auth_client, restaurant_admin, staff_member, business):
        role = Role.objects.create(name='Host', business=business)
        client = auth_client(restaurant_admin)

        response = client.post(
            f'/v1/users/{staff_member.id}/assign-role', {'role_id': str(role.id)}, format='json'
        )
        assert response.status_code == 200
        assert response.data['message'] == 'Role assigned successfully'
        assert [r['name'] for r in response.data['user']['roles']] == ['Host']

        response = client.post(
            f'/v1/users/{staff_member.id}/revoke-role', {'role_id': str(role.id)}, format='json'
        )
        assert response.status_code == 200
        assert response.data['user']['roles'] == []

    def test_cross_business_assignment_forbidden(
        self, auth_client, restaurant_admin, foreign_staff_member, business
    ):
        role = Role.objects.create(name='Host', business=business)

        response = auth_client(restaurant_admin).post(
            f'/v1/users/{foreign_staff_member.id}/assign-role', {'role_id': str(role.id)}, format='json'
        )

        assert response.status_code == 403
        assert response.data['message'] == 'Cannot assign roles to users outside your business'

    def test_business_users(self, auth_client, restaurant_admin, staff_member, foreign_staff_member):
        response = auth_client(restaurant_admin).get('/v1/users/business-users')

        assert response.status_code == 200
        assert response.data['count'] == 2
        assert {u['email'] for u in response.data['users']} == {
            restaurant_admin.email, staff_member.email,
        }
        assert {entry['role'] for entry in response.data['roles_summary']} == {
            'restaurant_admin', 'customer',
        }

    def test_create_business_user(self, auth_client, restaurant_admin, business):
        role = Role.objects.create(name='Host', business=business)

        response = auth_client(restaurant_admin).post('/v1/users/create-business-user', {
            'email': 'new.host@example.com',
            'first_name': 'Nia',
            'role_ids': [str(role.id)],
        }, format='json')

        assert response.status_code == 201
        assert response.data['message'] == 'User created successfully'
        assert response.data['user']['business_id'] == str(business.id)
        assert 'plain_token' in response.data['dev_info']

    def test_customer_forbidden(self, auth_client, customer_user):
        response = auth_client(customer_user).get('/v1/users/business-users')

        assert response.status_code == 403

    def test_anonymous(self, api_client):
        assert api_client.get('/v1/users/business-users').status_code == 401
