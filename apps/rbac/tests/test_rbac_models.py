"""
Tests for RBAC models.

Covers soft delete behaviour, the Role scope constraint, name uniqueness and
the User password helpers.
"""
import pytest
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from apps.rbac.models import (
    AccountType, Permission, Role, RolePermission, RoleScope, User, UserRole,
)


@pytest.mark.django_db
class TestPermissionModel:
    """Test Permission defaults and identity."""

    def test_code_and_default_name(self):
        """Code is resource:action and the name defaults to action_resource."""
        permission = Permission.objects.create(resource='orders', action='read')

        assert permission.code == 'orders:read'
        assert permission.key == ('orders', 'read')
        assert permission.name == 'read_orders'

    def test_get_or_create_permission_is_idempotent(self):
        """Second call returns the existing row."""
        first, created = Permission.objects.get_or_create_permission('tables', 'update')
        second, created_again = Permission.objects.get_or_create_permission('tables', 'update')

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert first.description == 'Permission to update tables'

    def test_duplicate_pair_rejected_by_database(self):
        """(resource, action) is unique."""
        Permission.objects.create(resource='orders', action='read')

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Permission.objects.create(resource='orders', action='read')

    def test_delete_removes_row_and_role_grants(self):
        """Deleting a permission is a hard delete cascading out of roles."""
        permission = Permission.objects.create(resource='orders', action='read')
        role = Role.objects.create(name='Cashier', scope=RoleScope.SYSTEM)
        RolePermission.objects.grant_permission(role, permission)

        permission.delete()

        assert not Permission.objects_with_deleted.filter(id=permission.id).exists()
        assert not RolePermission.objects_with_deleted.filter(role=role).exists()

    def test_by_code(self):
        """Lookup by resource:action code."""
        permission = Permission.objects.create(resource='menu-items', action='create')

        assert Permission.objects.by_code('menu-items:create') == permission
        assert Permission.objects.by_code('menu-items') is None


@pytest.mark.django_db
class TestRoleModel:
    """Test Role scoping rules."""

    def test_system_role_cannot_have_business(self, business):
        """A system-scoped role never belongs to a business."""
        with pytest.raises(DjangoValidationError):
            Role.objects.create(name='Auditor', scope=RoleScope.SYSTEM, business=business)

    def test_same_name_allowed_in_different_businesses(self, business, other_business):
        """Names are unique per business, not globally."""
        Role.objects.create(name='Waiter', business=business)
        Role.objects.create(name='Waiter', business=other_business)

        assert Role.objects.filter(name='Waiter').count() == 2

    def test_same_name_in_same_business_rejected(self, business):
        """Two live roles of one business cannot share a name."""
        Role.objects.create(name='Waiter', business=business)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Role.objects.create(name='Waiter', business=business)

    def test_name_reusable_after_soft_delete(self, business):
        """Soft-deleted roles do not block their name."""
        role = Role.objects.create(name='Waiter', business=business)
        role.delete()

        replacement = Role.objects.create(name='Waiter', business=business)

        assert replacement.id != role.id

    def test_soft_delete_hides_role(self, business):
        """Soft-deleted roles disappear from the default manager."""
        role = Role.objects.create(name='Host', business=business)
        role.delete()

        assert not Role.objects.filter(id=role.id).exists()
        assert Role.objects_with_deleted.get(id=role.id).is_deleted

        role.restore()
        assert Role.objects.filter(id=role.id).exists()

    def test_needs_business(self, business):
        """Only business-scoped roles without a business need one."""
        assert Role(name='a', scope=RoleScope.BUSINESS).needs_business is True
        assert Role(name='b', scope=RoleScope.BUSINESS, business=business).needs_business is False
        assert Role(name='c', scope=RoleScope.SYSTEM).needs_business is False

    def test_visible_to_business(self, business, other_business):
        """Own roles plus global non-system roles."""
        own = Role.objects.create(name='Own', business=business)
        Role.objects.create(name='Foreign', business=other_business)
        shared = Role.objects.create(name='Shared', scope=RoleScope.BUSINESS)
        Role.objects.create(name='Platform', scope=RoleScope.SYSTEM, is_system_role=True)

        visible = set(Role.objects.visible_to_business(business).values_list('id', flat=True))

        assert visible == {own.id, shared.id}


@pytest.mark.django_db
class TestUserModel:
    """Test User helpers."""

    def test_create_user_normalizes_email(self):
        """Emails are stored lowercase."""
        user = User.objects.create_user(email='  Chef@Example.COM ', password='x')

        assert user.email == 'chef@example.com'
        assert User.objects.by_email('CHEF@example.com') == user

    def test_user_without_password_cannot_check_password(self):
        """Provisioned accounts have no usable password."""
        user = User.objects.create_user(email='new@example.com')

        assert user.is_password_set is False
        assert user.check_password('') is False
        assert user.check_password('anything') is False

    def test_set_and_check_password(self):
        """Passwords are hashed."""
        user = User.objects.create_user(email='pw@example.com', password='Secret123!')

        assert user.password_hash != 'Secret123!'
        assert user.check_password('Secret123!') is True
        assert user.check_password('wrong') is False

    def test_account_type_flags(self, system_admin, restaurant_admin, customer_user):
        """Coarse account tags."""
        assert system_admin.is_system_admin
        assert restaurant_admin.is_restaurant_admin
        assert customer_user.role == AccountType.CUSTOMER
        assert set(User.objects.admins()) == {system_admin, restaurant_admin}

    def test_has_perm_uses_resolver(self, restaurant_admin, grant_permissions):
        """Django-style has_perm understands resource:action codes."""
        grant_permissions(restaurant_admin, 'orders:read')

        assert restaurant_admin.has_perm('orders:read') is True
        assert restaurant_admin.has_perm('orders:delete') is False
        assert restaurant_admin.has_perm('malformed') is False

    def test_hard_delete_removes_assignments(self, business):
        """Deleting an account removes its role assignments."""
        user = User.objects.create_user(email='gone@example.com')
        role = Role.objects.create(name='Runner', business=business)
        UserRole.objects.assign(user, role)

        user.hard_delete()

        assert not UserRole.objects_with_deleted.filter(role=role).exists()
