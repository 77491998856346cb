"""
RBAC API URLs.

Provides endpoints for:
- Permission catalog (CRUD, batch, grid creation, bulk delete, check)
- Permission coverage matrix
- Role management (CRUD, permission membership)
- Business user management (role assignment within a business, staff accounts)
"""
from django.urls import path
from apps.rbac.views import (
    PermissionListView,
    PermissionDetailView,
    PermissionsByResourceView,
    PermissionBatchView,
    CreateSelectedPermissionsView,
    PermissionBulkDeleteView,
    PermissionCheckView,
    PermissionMatrixView,
    PermissionMatrixRoleView,
    RoleListView,
    RoleDetailView,
    RolePermissionsView,
    RolePermissionRemoveView,
)
from apps.rbac.views_users import (
    AssignBusinessRoleView,
    RevokeBusinessRoleView,
    BusinessUsersView,
    CreateBusinessUserView,
)

app_name = 'rbac'

urlpatterns = [
    # Permission endpoints
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path('permissions/check', PermissionCheckView.as_view(), name='permission-check'),
    path('permissions/batch', PermissionBatchView.as_view(), name='permission-batch'),
    path('permissions/create-selected', CreateSelectedPermissionsView.as_view(), name='permission-create-selected'),
    path('permissions/bulk', PermissionBulkDeleteView.as_view(), name='permission-bulk-delete'),
    path('permissions/resource/<str:resource>', PermissionsByResourceView.as_view(), name='permission-by-resource'),
    path('permissions/<uuid:permission_id>', PermissionDetailView.as_view(), name='permission-detail'),

    # Permission matrix endpoints
    path('permission-matrix', PermissionMatrixView.as_view(), name='permission-matrix'),
    path('permission-matrix/roles', PermissionMatrixRoleView.as_view(), name='permission-matrix-role'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/permissions', RolePermissionsView.as_view(), name='role-permissions'),
    path('roles/<uuid:role_id>/permissions/<uuid:permission_id>', RolePermissionRemoveView.as_view(), name='role-permission-remove'),

    # Business user endpoints
    path('users/business-users', BusinessUsersView.as_view(), name='business-users'),
    path('users/create-business-user', CreateBusinessUserView.as_view(), name='create-business-user'),
    path('users/<uuid:user_id>/assign-role', AssignBusinessRoleView.as_view(), name='user-assign-role'),
    path('users/<uuid:user_id>/revoke-role', RevokeBusinessRoleView.as_view(), name='user-revoke-role'),
]
