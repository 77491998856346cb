"""
Business user management REST API views.

Implements endpoints for:
- Assigning and revoking roles within the caller's business
- Listing the staff of the caller's business
- Creating staff accounts inside a business

All endpoints are reserved for system and restaurant administrators. A
restaurant administrator only ever touches accounts and roles of its own
business.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.rbac.permissions import RequireAccountType
from apps.rbac.provisioning import admin_provisioning, dev_info_for
from apps.rbac.serializers import AdminSerializer, UserRoleAssignmentSerializer
from apps.rbac.services import rbac_service


@extend_schema(
    tags=['RBAC - Business Users'],
    summary='Assign a role within the business',
    description='''
Assign `role_id` to the user. A restaurant administrator can only assign
business roles of its own business to users of its own business; a system
administrator can assign any role. Assigning a role the user already holds
is a no-op.
    ''',
    request=UserRoleAssignmentSerializer,
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
class AssignBusinessRoleView(APIView):
    """
    POST /v1/users/{user_id}/assign-role
    """
    permission_classes = [RequireAccountType]
    rbac_service = rbac_service

    def post(self, request, user_id):
        serializer = UserRoleAssignmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = self.rbac_service.assign_business_role(
            request.user, user_id, serializer.validated_data['role_id']
        )
        return Response({
            'message': 'Role assigned successfully',
            'user': AdminSerializer(user).data,
        })


@extend_schema(
    tags=['RBAC - Business Users'],
    summary='Revoke a role within the business',
    description='Revoke `role_id` from the user under the same business rules as assignment.',
    request=UserRoleAssignmentSerializer,
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
class RevokeBusinessRoleView(APIView):
    """
    POST /v1/users/{user_id}/revoke-role
    """
    permission_classes = [RequireAccountType]
    rbac_service = rbac_service

    def post(self, request, user_id):
        serializer = UserRoleAssignmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = self.rbac_service.revoke_business_role(
            request.user, user_id, serializer.validated_data['role_id']
        )
        return Response({
            'message': 'Role revoked successfully',
            'user': AdminSerializer(user).data,
        })


@extend_schema(
    tags=['RBAC - Business Users'],
    summary='List business users',
    description='''
Staff accounts visible to the caller, grouped by their first role.

System administrators see every administrator and every account tied to a
business; restaurant administrators see the accounts of their business.
    ''',
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
)
class BusinessUsersView(APIView):
    """
    GET /v1/users/business-users
    """
    permission_classes = [RequireAccountType]
    rbac_service = rbac_service

    def get(self, request):
        users = self.rbac_service.business_users(request.user)
        groups = self.rbac_service.group_by_primary_role(users)

        return Response({
            'count': len(users),
            'users': AdminSerializer(users, many=True).data,
            'users_by_role': {
                name: [str(user.id) for user in members]
                for name, members in groups.items()
            },
            'roles_summary': [
                {'role': name, 'count': len(members)}
                for name, members in groups.items()
            ],
        })


@extend_schema(
    tags=['RBAC - Business Users'],
    summary='Create business user',
    description='''
Create a staff account holding `role_ids` and send it a password setup link.

A restaurant administrator creates the account in its own business and can
only hand out business roles of that business. A system administrator may
pass `business_id`; otherwise the business of the given roles is used.
Outside production the response carries `dev_info`.
    ''',
    request=OpenApiTypes.OBJECT,
    responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample(
            'Create Request',
            value={
                'email': 'host@test-bistro.example.com',
                'first_name': 'Hana',
                'last_name': 'Host',
                'role_ids': ['123e4567-e89b-12d3-a456-426614174000'],
            },
            request_only=True
        )
    ]
)
class CreateBusinessUserView(APIView):
    """
    POST /v1/users/create-business-user
    """
    permission_classes = [RequireAccountType]
    provisioning = admin_provisioning

    def post(self, request):
        result = self.provisioning.create_business_user(
            request.user,
            email=request.data.get('email'),
            first_name=request.data.get('first_name', ''),
            last_name=request.data.get('last_name', ''),
            role_ids=request.data.get('role_ids'),
            business_id=request.data.get('business_id'),
            request=request,
        )

        body = {
            'message': 'User created successfully',
            'user': AdminSerializer(result.user).data,
        }
        dev_info = dev_info_for(result.token)
        if dev_info:
            body['dev_info'] = dev_info
        return Response(body, status=status.HTTP_201_CREATED)
