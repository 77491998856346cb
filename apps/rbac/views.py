"""
RBAC REST API views.

Implements endpoints for:
- Permission catalog (CRUD, batch and grid creation, coverage matrix, bulk delete)
- Permission pre-flight check
- Role management (CRUD, permission membership)
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from apps.rbac.catalog import permission_catalog
from apps.rbac.permissions import HasPermission
from apps.rbac.roles import role_registry
from apps.rbac.serializers import (
    PermissionCheckSerializer, PermissionIdsSerializer, PermissionSerializer,
    RoleCreateSerializer, RoleSerializer, RoleUpdateSerializer,
)
from apps.rbac.services import rbac_service


def _bulk_result(result):
    return {
        'message': result.message,
        'created': PermissionSerializer(result.created, many=True).data,
        'existing': PermissionSerializer(result.existing, many=True).data,
        'created_count': len(result.created),
        'existing_count': len(result.existing),
    }


# ===== PERMISSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permissions',
        description='All catalog permissions ordered by resource and action.\n\n**Required permission:** `permissions:read`',
        responses={200: PermissionSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Create permission',
        description='''
Create one (resource, action) permission. Duplicate pairs are rejected with 400.

**Required permission:** `permissions:create`
        ''',
        request=OpenApiTypes.OBJECT,
        responses={201: PermissionSerializer, 400: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Create Request',
                value={'resource': 'orders', 'action': 'refund', 'description': 'Refund an order'},
                request_only=True
            )
        ]
    ),
)
class PermissionListView(APIView):
    """
    GET/POST /v1/permissions
    """
    permission_classes = [HasPermission]
    required_permissions = {
        'GET': ('permissions', 'read'),
        'POST': ('permissions', 'create'),
    }
    catalog = permission_catalog

    def get(self, request):
        permissions = self.catalog.list_permissions()
        return Response({
            'count': permissions.count(),
            'permissions': PermissionSerializer(permissions, many=True).data,
        })

    def post(self, request):
        permission = self.catalog.create_permission(
            resource=request.data.get('resource'),
            action=request.data.get('action'),
            description=request.data.get('description', ''),
            name=request.data.get('name', ''),
            actor=request.user,
        )
        return Response(PermissionSerializer(permission).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Get permission',
        description='**Required permission:** `permissions:read`',
        responses={200: PermissionSerializer, 404: OpenApiTypes.OBJECT},
    ),
    patch=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Update permission',
        description='**Required permission:** `permissions:update`',
        request=OpenApiTypes.OBJECT,
        responses={200: PermissionSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Delete permission',
        description='''
Delete a permission. It is removed from every role and from every user's
direct grants in the same transaction.

**Required permission:** `permissions:delete`
        ''',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class PermissionDetailView(APIView):
    """
    GET/PATCH/DELETE /v1/permissions/{permission_id}
    """
    permission_classes = [HasPermission]
    required_permissions = {
        'GET': ('permissions', 'read'),
        'PATCH': ('permissions', 'update'),
        'DELETE': ('permissions', 'delete'),
    }
    catalog = permission_catalog

    def get(self, request, permission_id):
        return Response(PermissionSerializer(self.catalog.get_permission(permission_id)).data)

    def patch(self, request, permission_id):
        fields = {
            key: request.data[key]
            for key in ('resource', 'action', 'name', 'description')
            if key in request.data
        }
        permission = self.catalog.update_permission(permission_id, actor=request.user, **fields)
        return Response(PermissionSerializer(permission).data)

    def delete(self, request, permission_id):
        self.catalog.delete_permission(permission_id, actor=request.user)
        return Response({'message': 'Permission deleted successfully'})


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='List permissions of a resource',
    description='**Required permission:** `permissions:read`',
    responses={200: PermissionSerializer(many=True)},
)
class PermissionsByResourceView(APIView):
    """
    GET /v1/permissions/resource/{resource}
    """
    permission_classes = [HasPermission]
    required_permissions = {'GET': ('permissions', 'read')}
    catalog = permission_catalog

    def get(self, request, resource):
        permissions = self.catalog.permissions_by_resource(resource)
        return Response({
            'resource': resource,
            'count': permissions.count(),
            'permissions': PermissionSerializer(permissions, many=True).data,
        })


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='Create permissions in batch',
    description='''
Create permissions from a list of `{resource, action, description?}` items.
Pairs that already exist are reported under `existing`.

**Required permission:** `permissions:create`
    ''',
    request=OpenApiTypes.OBJECT,
    responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
)
class PermissionBatchView(APIView):
    """
    POST /v1/permissions/batch
    """
    permission_classes = [HasPermission]
    required_permissions = {'POST': ('permissions', 'create')}
    catalog = permission_catalog

    def post(self, request):
        result = self.catalog.create_permissions_batch(
            request.data.get('permissions'),
            actor=request.user,
        )
        return Response(_bulk_result(result), status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='Create permission grid',
    description='''
Create every (resource, action) pair of `resources` x `actions` that does not
exist yet. Idempotent: pairs already in the catalog come back under `existing`.

**Required permission:** `permissions:create`
    ''',
    request=OpenApiTypes.OBJECT,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample(
            'Grid Request',
            value={'resources': ['orders'], 'actions': ['read', 'update']},
            request_only=True
        )
    ]
)
class CreateSelectedPermissionsView(APIView):
    """
    POST /v1/permissions/create-selected
    """
    permission_classes = [HasPermission]
    required_permissions = {'POST': ('permissions', 'create')}
    catalog = permission_catalog

    def post(self, request):
        result = self.catalog.create_selected_permissions(
            request.data.get('resources'),
            request.data.get('actions'),
            actor=request.user,
        )
        return Response(_bulk_result(result), status=status.HTTP_200_OK)


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='Delete permissions in bulk',
    description='''
Delete several permissions and pull them from every role.

**System administrators only.**
    ''',
    request=PermissionIdsSerializer,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
)
class PermissionBulkDeleteView(APIView):
    """
    DELETE /v1/permissions/bulk
    """
    permission_classes = [IsAuthenticated]
    catalog = permission_catalog

    def delete(self, request):
        deleted = self.catalog.delete_permissions(request.user, request.data.get('permission_ids'))
        return Response({
            'message': f'Deleted {deleted} permissions and removed them from roles',
            'deleted_count': deleted,
        })


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='Check a permission',
    description='''
Pre-flight check: does the authenticated caller hold `action` on `resource`?
Used by clients to decide which UI affordances to show.
    ''',
    request=PermissionCheckSerializer,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample('Check Request', value={'resource': 'orders', 'action': 'read'}, request_only=True),
        OpenApiExample('Check Response', value={'hasPermission': True}, response_only=True),
    ]
)
class PermissionCheckView(APIView):
    """
    POST /v1/permissions/check
    """
    permission_classes = [IsAuthenticated]
    rbac_service = rbac_service

    def post(self, request):
        serializer = PermissionCheckSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {'hasPermission': False, 'message': 'Resource and action are required'},
                status=status.HTTP_400_BAD_REQUEST
            )

        has_permission = self.rbac_service.check_permission(
            request.user.id,
            serializer.validated_data['resource'],
            serializer.validated_data['action'],
        )
        return Response({'hasPermission': has_permission})


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='Permission coverage matrix',
    description='''
Existence grid over the known resources and the create/read/update/delete
actions, with coverage statistics.

**Required permission:** `permissions:read`
    ''',
    responses={200: OpenApiTypes.OBJECT},
)
class PermissionMatrixView(APIView):
    """
    GET /v1/permission-matrix
    """
    permission_classes = [HasPermission]
    required_permissions = {'GET': ('permissions', 'read')}
    catalog = permission_catalog

    def get(self, request):
        return Response(self.catalog.get_permission_matrix())


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Create role from matrix selection',
    description='''
Create a role with a selection of permission ids. Scoping follows the caller:
system administrators may create system roles, business administrators only
roles of their own business.

**Required permission:** `roles:create`
    ''',
    request=RoleCreateSerializer,
    responses={201: RoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
)
class PermissionMatrixRoleView(APIView):
    """
    POST /v1/permission-matrix/roles
    """
    permission_classes = [HasPermission]
    required_permissions = {'POST': ('roles', 'create')}
    registry = role_registry

    def post(self, request):
        name = request.data.get('name')
        permission_ids = request.data.get('permission_ids')
        if not name or not isinstance(permission_ids, list):
            raise ValidationError('Role name and permission IDs are required')

        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        role = self.registry.create_role_for_actor(
            request.user,
            name=data['name'],
            description=data['description'] or f"Custom role: {data['name']}",
            permission_ids=data['permission_ids'],
            scope=data['scope'],
            business_id=data.get('business_id'),
        )
        return Response(
            {'message': 'Role created successfully', 'role': RoleSerializer(role).data},
            status=status.HTTP_201_CREATED
        )


# ===== ROLES =====

class RoleAccessMixin:
    registry = role_registry

    def get_visible_role(self, request, role_id):
        role = self.registry.get_role(role_id)
        if not self.registry.can_access_role(request.user, role):
            raise NotFoundError('Role not found')
        return role

    def get_manageable_role(self, request, role_id):
        role = self.get_visible_role(request, role_id)
        if not self.registry.can_manage_role(request.user, role):
            raise AuthorizationError('Access denied')
        return role


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
Roles visible to the caller: everything for system administrators, otherwise
the caller's business roles plus global non-system roles.

**Required permission:** `roles:read`
        ''',
        responses={200: RoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='''
Create a role. A business administrator asking for a system role or for
another business's role receives 403 and nothing is created.

**Required permission:** `roles:create`
        ''',
        request=RoleCreateSerializer,
        responses={201: RoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
class RoleListView(RoleAccessMixin, APIView):
    """
    GET/POST /v1/roles
    """
    permission_classes = [HasPermission]
    required_permissions = {
        'GET': ('roles', 'read'),
        'POST': ('roles', 'create'),
    }

    def get(self, request):
        roles = self.registry.roles_visible_to(request.user).prefetch_related('permissions')
        return Response({
            'count': roles.count(),
            'roles': RoleSerializer(roles, many=True).data,
        })

    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        role = self.registry.create_role_for_actor(
            request.user,
            name=data['name'],
            description=data['description'],
            permission_ids=data['permission_ids'],
            scope=data['scope'],
            business_id=data.get('business_id'),
        )
        return Response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role',
        description='**Required permission:** `roles:read`',
        responses={200: RoleSerializer, 404: OpenApiTypes.OBJECT},
    ),
    patch=extend_schema(
        tags=['RBAC - Roles'],
        summary='Update role',
        description='**Required permission:** `roles:update`',
        request=RoleUpdateSerializer,
        responses={200: RoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role',
        description='''
Soft delete a role. Users keep their assignment rows, which stop granting
anything until the role is restored.

**Required permission:** `roles:delete`
        ''',
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class RoleDetailView(RoleAccessMixin, APIView):
    """
    GET/PATCH/DELETE /v1/roles/{role_id}
    """
    permission_classes = [HasPermission]
    required_permissions = {
        'GET': ('roles', 'read'),
        'PATCH': ('roles', 'update'),
        'DELETE': ('roles', 'delete'),
    }

    def get(self, request, role_id):
        return Response(RoleSerializer(self.get_visible_role(request, role_id)).data)

    def patch(self, request, role_id):
        role = self.get_manageable_role(request, role_id)

        serializer = RoleUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = self.registry.update_role(
            role,
            name=serializer.validated_data.get('name'),
            description=serializer.validated_data.get('description'),
            actor=request.user,
        )
        return Response(RoleSerializer(role).data)

    def delete(self, request, role_id):
        role = self.get_manageable_role(request, role_id)
        self.registry.delete_role(role, actor=request.user)
        return Response({'message': 'Role deleted successfully'})


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List role permissions',
        description='**Required permission:** `roles:read`',
        responses={200: PermissionSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Add permissions to role',
        description='Set-union of `permission_ids` into the role. **Required permission:** `roles:update`',
        request=PermissionIdsSerializer,
        responses={200: RoleSerializer, 400: OpenApiTypes.OBJECT},
    ),
)
class RolePermissionsView(RoleAccessMixin, APIView):
    """
    GET/POST /v1/roles/{role_id}/permissions
    """
    permission_classes = [HasPermission]
    required_permissions = {
        'GET': ('roles', 'read'),
        'POST': ('roles', 'update'),
    }

    def get(self, request, role_id):
        role = self.get_visible_role(request, role_id)
        return Response(PermissionSerializer(self.registry.role_permissions(role), many=True).data)

    def post(self, request, role_id):
        role = self.get_manageable_role(request, role_id)
        permission_ids = request.data.get('permission_ids')
        role = self.registry.add_permissions_to_role(role, permission_ids, actor=request.user)
        return Response(RoleSerializer(role).data)


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Remove permission from role',
    description='Set-difference; idempotent. **Required permission:** `roles:update`',
    responses={200: RoleSerializer, 404: OpenApiTypes.OBJECT},
)
class RolePermissionRemoveView(RoleAccessMixin, APIView):
    """
    DELETE /v1/roles/{role_id}/permissions/{permission_id}
    """
    permission_classes = [HasPermission]
    required_permissions = {'DELETE': ('roles', 'update')}

    def delete(self, request, role_id, permission_id):
        role = self.get_manageable_role(request, role_id)
        role = self.registry.remove_permission_from_role(role, permission_id, actor=request.user)
        return Response(RoleSerializer(role).data)
