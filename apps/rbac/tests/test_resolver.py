"""
Tests for the authorization resolver (RBACService).

Covers exact-match permission checks, dangling role references, role name
checks, effective permission de-duplication and assignment idempotence.
"""
import uuid
from unittest.mock import patch

import pytest
from apps.rbac.models import (
    AuditLog, Role, RolePermission, RoleScope, UserDirectPermission, UserRole,
)
from apps.rbac.services import RBACService, ResolvedRole, UnresolvedRole, rbac_service


@pytest.mark.django_db
class TestCheckPermission:
    """Test permission resolution."""

    def test_direct_permission_grants(self, customer_user, make_permission):
        """A direct grant is enough."""
        UserDirectPermission.objects.grant(customer_user, make_permission('orders:read'))

        assert rbac_service.check_permission(customer_user.id, 'orders', 'read') is True

    def test_role_permission_grants(self, restaurant_admin, grant_permissions):
        """A permission of any assigned role is enough."""
        grant_permissions(restaurant_admin, 'tables:update')

        assert rbac_service.check_permission(restaurant_admin.id, 'tables', 'update') is True

    def test_no_grant_denies(self, customer_user, make_permission):
        """A user with no roles and no direct grants holds nothing."""
        make_permission('orders:read')

        assert rbac_service.check_permission(customer_user.id, 'orders', 'read') is False

    def test_match_is_exact(self, restaurant_admin, grant_permissions):
        """No wildcards or implication between actions."""
        grant_permissions(restaurant_admin, 'orders:update')

        assert rbac_service.check_permission(restaurant_admin.id, 'orders', 'read') is False
        assert rbac_service.check_permission(restaurant_admin.id, 'order', 'update') is False
        assert rbac_service.check_permission(restaurant_admin.id, 'Orders', 'update') is False

    def test_unknown_user_denied(self):
        """Missing or malformed user ids resolve to False."""
        assert rbac_service.check_permission(uuid.uuid4(), 'orders', 'read') is False
        assert rbac_service.check_permission('not-a-uuid', 'orders', 'read') is False

    def test_storage_error_denies(self, customer_user):
        """Errors inside the check are logged and answered with False."""
        with patch.object(RBACService, 'get_user', side_effect=RuntimeError('db down')):
            assert rbac_service.check_permission(customer_user.id, 'orders', 'read') is False

    def test_soft_deleted_role_contributes_nothing(self, restaurant_admin, grant_permissions):
        """A dangling reference is skipped; the check still answers."""
        role = grant_permissions(restaurant_admin, 'orders:read')
        role.delete()

        assert rbac_service.check_permission(restaurant_admin.id, 'orders', 'read') is False

        role.restore()
        assert rbac_service.check_permission(restaurant_admin.id, 'orders', 'read') is True

    def test_dangling_reference_does_not_hide_other_roles(self, restaurant_admin, grant_permissions):
        """Other assigned roles keep granting."""
        dead = grant_permissions(restaurant_admin, 'orders:read')
        grant_permissions(restaurant_admin, 'orders:read', 'tables:read')
        dead.delete()

        assert rbac_service.check_permission(restaurant_admin.id, 'orders', 'read') is True
        assert rbac_service.check_permission(restaurant_admin.id, 'tables', 'read') is True


@pytest.mark.django_db
class TestRoleReferences:
    """Test the tagged role reference resolution."""

    def test_refs_in_assignment_order(self, restaurant_admin, grant_permissions):
        """Every assignment yields a reference; dead roles are unresolved."""
        first = grant_permissions(restaurant_admin, 'orders:read')
        second = grant_permissions(restaurant_admin, 'tables:read')
        second.delete()

        refs = rbac_service.resolve_role_refs(restaurant_admin)

        assert len(refs) == 2
        assert isinstance(refs[0], ResolvedRole)
        assert refs[0].role_id == first.id
        assert isinstance(refs[1], UnresolvedRole)
        assert refs[1].role_id == second.id
        assert rbac_service.get_user_roles(restaurant_admin.id) == [first]


@pytest.mark.django_db
class TestCheckUserHasRole:
    """Test role name checks."""

    def test_any_of_names(self, restaurant_admin, business):
        role = Role.objects.create(name='Floor Manager', business=business)
        UserRole.objects.assign(restaurant_admin, role)

        assert rbac_service.check_user_has_role(restaurant_admin.id, ['Chef', 'Floor Manager']) is True
        assert rbac_service.check_user_has_role(restaurant_admin.id, ['Chef']) is False

    def test_deleted_role_does_not_count(self, restaurant_admin, business):
        role = Role.objects.create(name='Floor Manager', business=business)
        UserRole.objects.assign(restaurant_admin, role)
        role.delete()

        assert rbac_service.check_user_has_role(restaurant_admin.id, ['Floor Manager']) is False

    def test_system_admin_role(self, system_admin):
        assert rbac_service.check_user_has_role(system_admin.id, ['system_admin']) is True


@pytest.mark.django_db
class TestEffectivePermissions:
    """Test getUserPermissions."""

    def test_union_without_duplicates(self, restaurant_admin, grant_permissions, make_permission):
        """Direct and role permissions are merged by (resource, action)."""
        grant_permissions(restaurant_admin, 'orders:read', 'tables:read')
        grant_permissions(restaurant_admin, 'orders:read')
        UserDirectPermission.objects.grant(restaurant_admin, make_permission('orders:read'))
        UserDirectPermission.objects.grant(restaurant_admin, make_permission('invoices:read'))

        codes = [p.code for p in rbac_service.get_user_permissions(restaurant_admin.id)]

        assert sorted(codes) == ['invoices:read', 'orders:read', 'tables:read']
        assert len(codes) == len(set(codes))

    def test_unknown_user_has_no_permissions(self):
        assert rbac_service.get_user_permissions(uuid.uuid4()) == []


@pytest.mark.django_db
class TestAssignments:
    """Test role and direct permission membership changes."""

    def test_assign_role_is_idempotent(self, customer_user, business, system_admin):
        role = Role.objects.create(name='Cashier', business=business)

        assert rbac_service.assign_role_to_user(customer_user.id, role.id, assigned_by=system_admin)
        assert rbac_service.assign_role_to_user(customer_user.id, role.id, assigned_by=system_admin)

        assert UserRole.objects.filter(user=customer_user, role=role).count() == 1
        assert AuditLog.objects.filter(action='role_assigned').count() == 1

    def test_assign_unknown_role_returns_false(self, customer_user):
        assert rbac_service.assign_role_to_user(customer_user.id, uuid.uuid4()) is False
        assert not UserRole.objects.filter(user=customer_user).exists()

    def test_remove_role_is_idempotent(self, customer_user, business):
        role = Role.objects.create(name='Cashier', business=business)
        UserRole.objects.assign(customer_user, role)

        assert rbac_service.remove_role_from_user(customer_user.id, role.id)
        assert rbac_service.remove_role_from_user(customer_user.id, role.id)
        assert not UserRole.objects.filter(user=customer_user).exists()

    def test_remove_dangling_role(self, customer_user, business):
        """Assignments of a soft-deleted role can still be removed."""
        role = Role.objects.create(name='Cashier', business=business)
        UserRole.objects.assign(customer_user, role)
        role.delete()

        assert rbac_service.remove_role_from_user(customer_user.id, role.id) is True
        assert not UserRole.objects.filter(user=customer_user).exists()

    def test_direct_permission_grant_and_revoke(self, customer_user, make_permission):
        permission = make_permission('orders:read')

        assert rbac_service.assign_permission_to_user(customer_user.id, permission.id)
        assert rbac_service.assign_permission_to_user(customer_user.id, permission.id)
        assert UserDirectPermission.objects.filter(user=customer_user).count() == 1
        assert rbac_service.check_permission(customer_user.id, 'orders', 'read')

        assert rbac_service.remove_permission_from_user(customer_user.id, permission.id)
        assert not rbac_service.check_permission(customer_user.id, 'orders', 'read')

    def test_role_permission_changes_apply_immediately(self, customer_user, business, make_permission):
        """No caching: the next check sees the new grant."""
        role = Role.objects.create(name='Cashier', scope=RoleScope.BUSINESS, business=business)
        UserRole.objects.assign(customer_user, role)
        assert not rbac_service.check_permission(customer_user.id, 'invoices', 'create')

        RolePermission.objects.grant_permission(role, make_permission('invoices:create'))

        assert rbac_service.check_permission(customer_user.id, 'invoices', 'create')
