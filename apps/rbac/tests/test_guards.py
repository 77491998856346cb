"""
Tests for the authorization guards (DRF permission classes).
"""
import pytest
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework.views import APIView

from apps.rbac.models import AccountType, Role, UserRole
from apps.rbac.permissions import (
    HasPermission, require_account_type, require_permission, require_role,
)


class OrdersView(APIView):
    permission_classes = [require_permission('orders', 'read')]
    rbac_service = None

    def get(self, request):
        return Response({'ok': True})


class MenuView(APIView):
    permission_classes = [HasPermission]
    required_permissions = {
        'GET': ('menu-items', 'read'),
        'POST': ('menu-items', 'create'),
    }

    def get(self, request):
        return Response({'ok': True})

    def post(self, request):
        return Response({'ok': True}, status=201)


class ManagersOnlyView(APIView):
    permission_classes = [require_role('Floor Manager', 'General Manager')]
    rbac_service = None

    def get(self, request):
        return Response({'ok': True})


class SystemAdminsOnlyView(APIView):
    permission_classes = [require_account_type(AccountType.SYSTEM_ADMIN)]

    def get(self, request):
        return Response({'ok': True})


class ExplodingResolver:
    def check_permission(self, user_id, resource, action):
        raise RuntimeError('resolver unavailable')

    def check_user_has_role(self, user_id, role_names):
        raise RuntimeError('resolver unavailable')


class DenyingResolver:
    def check_permission(self, user_id, resource, action):
        return False


def call(view_class, user=None, method='get', **view_attrs):
    factory = APIRequestFactory()
    request = getattr(factory, method)('/guarded', format='json')
    if user is not None:
        force_authenticate(request, user=user)
    return view_class.as_view(**view_attrs)(request)


@pytest.mark.django_db
class TestRequirePermission:
    """Test the permission guard."""

    def test_anonymous_gets_401(self):
        response = call(OrdersView)

        assert response.status_code == 401
        assert response.data['message'] == 'Authentication required'

    def test_missing_permission_gets_403(self, restaurant_admin):
        response = call(OrdersView, restaurant_admin)

        assert response.status_code == 403
        assert response.data['message'] == 'Access denied. Insufficient permissions.'
        assert response.data['details'] == 'Required permission: read on orders'

    def test_holder_passes(self, restaurant_admin, grant_permissions):
        grant_permissions(restaurant_admin, 'orders:read')

        response = call(OrdersView, restaurant_admin)

        assert response.status_code == 200

    def test_resolver_failure_gets_500(self, restaurant_admin):
        response = call(OrdersView, restaurant_admin, rbac_service=ExplodingResolver())

        assert response.status_code == 500
        assert response.data['message'] == 'Authorization error'

    def test_injected_resolver_is_used(self, system_admin):
        """Views can substitute the resolver instance."""
        response = call(OrdersView, system_admin, rbac_service=DenyingResolver())

        assert response.status_code == 403


@pytest.mark.django_db
class TestMethodPermissionMap:
    """Test required_permissions keyed by HTTP method."""

    def test_each_method_has_its_own_requirement(self, restaurant_admin, grant_permissions):
        grant_permissions(restaurant_admin, 'menu-items:read')

        assert call(MenuView, restaurant_admin).status_code == 200

        response = call(MenuView, restaurant_admin, method='post')
        assert response.status_code == 403
        assert response.data['details'] == 'Required permission: create on menu-items'


@pytest.mark.django_db
class TestRequireRole:
    """Test the role guard."""

    def test_anonymous_gets_401(self):
        assert call(ManagersOnlyView).status_code == 401

    def test_without_role_gets_403(self, restaurant_admin):
        response = call(ManagersOnlyView, restaurant_admin)

        assert response.status_code == 403
        assert response.data['message'] == 'Access denied. Insufficient role.'
        assert response.data['details'] == 'Required roles: Floor Manager, General Manager'

    def test_any_listed_role_passes(self, restaurant_admin, business):
        role = Role.objects.create(name='General Manager', business=business)
        UserRole.objects.assign(restaurant_admin, role)

        assert call(ManagersOnlyView, restaurant_admin).status_code == 200

    def test_resolver_failure_gets_500(self, restaurant_admin):
        response = call(ManagersOnlyView, restaurant_admin, rbac_service=ExplodingResolver())

        assert response.status_code == 500


@pytest.mark.django_db
class TestRequireAccountType:
    """Test the coarse account tag guard."""

    def test_matching_type_passes(self, system_admin):
        assert call(SystemAdminsOnlyView, system_admin).status_code == 200

    def test_other_type_gets_403(self, restaurant_admin):
        response = call(SystemAdminsOnlyView, restaurant_admin)

        assert response.status_code == 403
        assert response.data['message'] == 'Insufficient permissions'
