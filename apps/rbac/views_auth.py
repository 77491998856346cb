"""
Authentication REST API views.

Implements endpoints for:
- Customer registration
- Login, logout and token refresh
- Current user profile with effective permissions
- Role and direct permission assignment on users
"""
import json

from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_ratelimit.decorators import ratelimit
from django.utils.decorators import method_decorator
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import NotFoundError, rate_limited_response
from apps.rbac.permissions import HasPermission
from apps.rbac.serializers import (
    LoginSerializer, PermissionSerializer, RefreshTokenSerializer, RegistrationSerializer,
    RoleSummarySerializer, UserPermissionAssignmentSerializer,
    UserRoleAssignmentSerializer, UserSerializer,
)
from apps.rbac.services import auth_service, rbac_service


def login_email_key(group, request):
    """Rate limit key: the email in a JSON or form login body."""
    email = request.POST.get('email')
    if not email and request.content_type == 'application/json':
        try:
            email = json.loads(request.body or b'{}').get('email')
        except (ValueError, AttributeError):
            email = None
    return (email or '').strip().lower()


TOKEN_EXAMPLE = OpenApiExample(
    'Success Response',
    value={
        'message': 'Login successful',
        'token': 'eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...',
        'refresh_token': 'eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...',
        'user': {
            'id': '123e4567-e89b-12d3-a456-426614174000',
            'email': 'user@example.com',
            'first_name': 'Jane',
            'last_name': 'Doe',
            'role': 'customer',
            'business_id': None,
        }
    },
    response_only=True
)


@extend_schema(
    tags=['Authentication'],
    summary='Register new customer',
    description='''
Create an ordinary customer account and return a session token.

No authentication required. Rate limited to 3 requests per hour per IP.
    ''',
    request=RegistrationSerializer,
    responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT},
)
@method_decorator(ratelimit(key='ip', rate='3/h', method='POST', block=False), name='dispatch')
class RegistrationView(APIView):
    """
    POST /v1/auth/register
    """
    authentication_classes = []
    permission_classes = []
    auth_service = auth_service

    def post(self, request):
        if getattr(request, 'limited', False):
            return rate_limited_response(request, limit='3/hour per IP', retry_after=3600)

        serializer = RegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.auth_service.register_user(**serializer.validated_data)

        return Response(
            {
                'message': 'User registered successfully',
                'token': result['token'],
                'refresh_token': result['refresh_token'],
                'user': UserSerializer(result['user']).data,
            },
            status=status.HTTP_201_CREATED
        )


@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email and password and return a session token (HS256 JWT).

Accounts provisioned by an administrator cannot log in until they have set
a password through their setup link.

Rate limited to 5 requests per minute per IP and 10 per hour per email.
    ''',
    request=LoginSerializer,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT},
    examples=[TOKEN_EXAMPLE],
)
@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='dispatch')
@method_decorator(ratelimit(key=login_email_key, rate='10/h', method='POST', block=False), name='dispatch')
class LoginView(APIView):
    """
    POST /v1/auth/login
    """
    authentication_classes = []
    permission_classes = []
    auth_service = auth_service

    def post(self, request):
        if getattr(request, 'limited', False):
            return rate_limited_response(request, limit='5/min per IP or 10/hour per email')

        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.auth_service.login(
            serializer.validated_data['email'],
            serializer.validated_data['password'],
            request=request,
        )

        return Response(
            {
                'message': 'Login successful',
                'token': result['token'],
                'refresh_token': result['refresh_token'],
                'user': UserSerializer(result['user']).data,
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Logout',
    description='Session tokens are stateless; the client discards its token. Requires authentication.',
    request=None,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT},
)
class LogoutView(APIView):
    """
    POST /v1/auth/logout
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        return Response({'message': 'Logout successful'}, status=status.HTTP_200_OK)


@extend_schema(
    tags=['Authentication'],
    summary='Refresh session token',
    description='''
Exchange the refresh token issued at login or registration for a new access
token and refresh token. Works after the access token has expired.

The refresh token is read from the `refresh_token` body field, or from the
`refresh_token` cookie when the body has none. No bearer token required.
    ''',
    request=RefreshTokenSerializer,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT},
)
class RefreshTokenView(APIView):
    """
    POST /v1/auth/refresh-token
    """
    authentication_classes = []
    permission_classes = []
    auth_service = auth_service

    def post(self, request):
        serializer = RefreshTokenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        refresh_token = (
            serializer.validated_data['refresh_token']
            or request.COOKIES.get('refresh_token', '')
        )

        result = self.auth_service.refresh_session(refresh_token)

        return Response(
            {
                'message': 'Token refreshed successfully',
                'token': result['token'],
                'refresh_token': result['refresh_token'],
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Current user profile',
    description='Profile of the authenticated user with roles and effective permissions.',
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT},
)
class MeView(APIView):
    """
    GET /v1/auth/me
    """
    permission_classes = [IsAuthenticated]
    rbac_service = rbac_service

    def get(self, request):
        user = request.user
        data = UserSerializer(user).data
        data['roles'] = RoleSummarySerializer(self.rbac_service.get_user_roles(user.id), many=True).data
        data['permissions'] = [
            permission.code for permission in self.rbac_service.get_user_permissions(user.id)
        ]
        return Response(data)


def _assignment_id(request, serializer_class, field):
    """Read ``field`` from the body, falling back to the query string for DELETE."""
    data = request.data if request.data else request.query_params
    serializer = serializer_class(data=data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data[field]


@extend_schema(
    tags=['RBAC - User Assignments'],
    summary='Manage user roles',
    description='''
GET lists the user's resolved roles (`users:read`). POST assigns `role_id`
and DELETE removes it (`users:update`). Both mutations are idempotent.
    ''',
    request=UserRoleAssignmentSerializer,
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
class UserRolesView(APIView):
    """
    /v1/auth/users/{user_id}/roles
    """
    permission_classes = [HasPermission]
    required_permissions = {
        'GET': ('users', 'read'),
        'POST': ('users', 'update'),
        'DELETE': ('users', 'update'),
    }
    rbac_service = rbac_service

    def get(self, request, user_id):
        if self.rbac_service.get_user(user_id) is None:
            raise NotFoundError('User not found')
        roles = self.rbac_service.get_user_roles(user_id)
        return Response({
            'user_id': str(user_id),
            'roles': RoleSummarySerializer(roles, many=True).data,
        })

    def post(self, request, user_id):
        role_id = _assignment_id(request, UserRoleAssignmentSerializer, 'role_id')
        if not self.rbac_service.assign_role_to_user(user_id, role_id, assigned_by=request.user):
            raise NotFoundError('User or role not found')
        return Response({'message': 'Role assigned successfully'})

    def delete(self, request, user_id):
        role_id = _assignment_id(request, UserRoleAssignmentSerializer, 'role_id')
        if not self.rbac_service.remove_role_from_user(user_id, role_id, removed_by=request.user):
            raise NotFoundError('User or role not found')
        return Response({'message': 'Role removed successfully'})


@extend_schema(
    tags=['RBAC - User Assignments'],
    summary='Manage user direct permissions',
    description='''
GET lists the user's effective permissions, split into direct grants and the
de-duplicated union with role permissions (`users:read`). POST grants
`permission_id` directly and DELETE revokes it (`users:update`).
    ''',
    request=UserPermissionAssignmentSerializer,
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
class UserPermissionsView(APIView):
    """
    /v1/auth/users/{user_id}/permissions
    """
    permission_classes = [HasPermission]
    required_permissions = {
        'GET': ('users', 'read'),
        'POST': ('users', 'update'),
        'DELETE': ('users', 'update'),
    }
    rbac_service = rbac_service

    def get(self, request, user_id):
        if self.rbac_service.get_user(user_id) is None:
            raise NotFoundError('User not found')
        return Response({
            'user_id': str(user_id),
            'direct_permissions': PermissionSerializer(
                self.rbac_service.get_user_direct_permissions(user_id), many=True
            ).data,
            'permissions': PermissionSerializer(
                self.rbac_service.get_user_permissions(user_id), many=True
            ).data,
        })

    def post(self, request, user_id):
        permission_id = _assignment_id(request, UserPermissionAssignmentSerializer, 'permission_id')
        if not self.rbac_service.assign_permission_to_user(user_id, permission_id, granted_by=request.user):
            raise NotFoundError('User or permission not found')
        return Response({'message': 'Permission assigned successfully'})

    def delete(self, request, user_id):
        permission_id = _assignment_id(request, UserPermissionAssignmentSerializer, 'permission_id')
        if not self.rbac_service.remove_permission_from_user(user_id, permission_id, removed_by=request.user):
            raise NotFoundError('User or permission not found')
        return Response({'message': 'Permission removed successfully'})
