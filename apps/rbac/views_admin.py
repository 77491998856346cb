"""
System administration REST API views.

Implements endpoints for:
- System administrator bootstrap
- Magic link verification and password setup
- Administrator account management scoped to the caller's business
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from django_ratelimit.decorators import ratelimit
from django.utils.decorators import method_decorator
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiExample, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import rate_limited_response
from apps.rbac.models import AccountType
from apps.rbac.permissions import RequireAccountType
from apps.rbac.provisioning import admin_provisioning, dev_info_for
from apps.rbac.serializers import AdminSerializer, RoleSummarySerializer


def _with_dev_info(body, token):
    dev_info = dev_info_for(token)
    if dev_info:
        body['dev_info'] = dev_info
    return body


def _new_admin_payload(result):
    user = result.user
    return {
        'id': str(user.id),
        'email': user.email,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'role': user.role,
        'business_id': str(user.business_id) if user.business_id else None,
        'assigned_role': {
            'id': str(result.role.id),
            'name': result.role.name,
            'description': result.role.description,
        },
    }


# ===== PUBLIC ENDPOINTS =====

@extend_schema(
    tags=['System Admin'],
    summary='Bootstrap system administrator',
    description='''
Create a system administrator holding the reserved `system_admin` role and
send a password setup link to the given email.

Outside production the response carries `dev_info` with the plaintext token
and the setup URL. Rate limited to 100 requests per minute per IP.
    ''',
    request=OpenApiTypes.OBJECT,
    responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample(
            'Setup Request',
            value={'email': 'root@example.com', 'first_name': 'Ada', 'last_name': 'Admin'},
            request_only=True
        )
    ]
)
@method_decorator(ratelimit(key='ip', rate='100/m', method='POST', block=False), name='dispatch')
class SystemAdminSetupView(APIView):
    """
    POST /v1/system-admin/setup
    """
    authentication_classes = []
    permission_classes = []
    provisioning = admin_provisioning

    def post(self, request):
        if getattr(request, 'limited', False):
            return rate_limited_response(request, limit='100/min per IP')

        result = self.provisioning.setup_sys_admin(
            email=request.data.get('email'),
            first_name=request.data.get('first_name'),
            last_name=request.data.get('last_name'),
            request=request,
        )

        body = {
            'message': 'System administrator account created successfully',
            'user': {
                'id': str(result.user.id),
                'email': result.user.email,
                'first_name': result.user.first_name,
                'last_name': result.user.last_name,
            },
        }
        return Response(_with_dev_info(body, result.token), status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['System Admin'],
    summary='Verify setup token',
    parameters=[
        OpenApiParameter('token', OpenApiTypes.STR, OpenApiParameter.QUERY, required=True),
    ],
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
)
class VerifySetupTokenView(APIView):
    """
    GET /v1/system-admin/verify-setup-token?token=...
    """
    authentication_classes = []
    permission_classes = []
    provisioning = admin_provisioning

    def get(self, request):
        user = self.provisioning.verify_setup_token(request.query_params.get('token'))
        return Response({
            'message': 'Token is valid',
            'user': {
                'email': user.email,
                'first_name': user.first_name,
                'last_name': user.last_name,
            },
        })


@extend_schema(
    tags=['System Admin'],
    summary='Set password from setup link',
    description='''
Redeem a setup token. The password must be at least 8 characters with an
uppercase letter, a lowercase letter, a digit and one of `@$!%*?&`.
The token cannot be used again.
    ''',
    request=OpenApiTypes.OBJECT,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
)
@method_decorator(ratelimit(key='ip', rate='10/m', method='POST', block=False), name='dispatch')
class SetupPasswordView(APIView):
    """
    POST /v1/system-admin/setup-password
    """
    authentication_classes = []
    permission_classes = []
    provisioning = admin_provisioning

    def post(self, request):
        if getattr(request, 'limited', False):
            return rate_limited_response(request, limit='10/min per IP')

        self.provisioning.complete_password_setup(
            request.data.get('token'),
            request.data.get('password'),
        )
        return Response({'message': 'Password set successfully'})


# ===== ADMIN ACCOUNT ENDPOINTS =====

@extend_schema(
    tags=['System Admin'],
    summary='Roles available for new admins',
    description='''
System administrators see every role. Business administrators see their
business's roles plus global non-system roles.
    ''',
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
)
class AvailableRolesView(APIView):
    """
    GET /v1/system-admin/roles/available
    """
    permission_classes = [RequireAccountType]
    provisioning = admin_provisioning

    def get(self, request):
        roles = self.provisioning.get_available_roles(request.user).order_by('name')
        return Response({
            'roles': RoleSummarySerializer(roles, many=True).data,
            'context': request.user.role,
            'business_id': str(request.user.business_id) if request.user.business_id else None,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['System Admin'],
        summary='List admins',
        parameters=[
            OpenApiParameter('role', OpenApiTypes.STR, OpenApiParameter.QUERY,
                             description='Filter by account type'),
        ],
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
    post=extend_schema(
        tags=['System Admin'],
        summary='Create admin',
        description='''
Create an administrator holding `role_id` and email them a setup link.

A business administrator may only assign roles of its own business (or global
non-system roles); the new account always lands in that business.
Rate limited to 10 requests per 15 minutes per IP.
        ''',
        request=OpenApiTypes.OBJECT,
        responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT,
                   403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
@method_decorator(ratelimit(key='ip', rate='10/15m', method='POST', block=False), name='dispatch')
class AdminListView(APIView):
    """
    GET/POST /v1/system-admin/admins
    """
    permission_classes = [RequireAccountType]
    provisioning = admin_provisioning

    def get(self, request):
        admins = self.provisioning.list_admins(request.user, role=request.query_params.get('role'))
        return Response({
            'message': 'Admin users retrieved successfully',
            'count': len(admins),
            'admins': AdminSerializer(admins, many=True).data,
        })

    def post(self, request):
        if getattr(request, 'limited', False):
            return rate_limited_response(request, limit='10/15min per IP', retry_after=900)

        result = self.provisioning.create_admin(
            request.user,
            email=request.data.get('email'),
            first_name=request.data.get('first_name'),
            last_name=request.data.get('last_name'),
            role_id=request.data.get('role_id'),
            business_id=request.data.get('business_id'),
            request=request,
        )

        if result.user.role == AccountType.SYSTEM_ADMIN:
            message = 'System administrator account created successfully'
        else:
            message = 'Admin account created successfully'

        body = {'message': message, 'user': _new_admin_payload(result)}
        return Response(_with_dev_info(body, result.token), status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['System Admin'],
        summary='Get admin',
        responses={200: AdminSerializer, 404: OpenApiTypes.OBJECT},
    ),
    patch=extend_schema(
        tags=['System Admin'],
        summary='Update admin',
        description='Update `first_name`, `last_name` and optionally replace the role with `role_id`.',
        request=OpenApiTypes.OBJECT,
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['System Admin'],
        summary='Delete admin',
        description='Permanently delete an admin account. Self-deletion is refused.',
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class AdminDetailView(APIView):
    """
    GET/PATCH/DELETE /v1/system-admin/admins/{admin_id}
    """
    permission_classes = [RequireAccountType]
    provisioning = admin_provisioning

    def get(self, request, admin_id):
        admin = self.provisioning.get_admin(request.user, admin_id)
        return Response(AdminSerializer(admin).data)

    def patch(self, request, admin_id):
        admin = self.provisioning.update_admin(
            request.user,
            admin_id,
            first_name=request.data.get('first_name'),
            last_name=request.data.get('last_name'),
            role_id=request.data.get('role_id'),
            business_id=request.data.get('business_id'),
            request=request,
        )
        return Response({
            'message': 'Admin updated successfully',
            'admin': AdminSerializer(admin).data,
        })

    def delete(self, request, admin_id):
        self.provisioning.delete_admin(request.user, admin_id, request=request)
        return Response({'message': 'Admin deleted successfully'})


@extend_schema(
    tags=['System Admin'],
    summary='Reissue setup link',
    description='Replace the admin\'s outstanding setup token and resend the email.',
    request=None,
    responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
class AdminResetTokenView(APIView):
    """
    POST /v1/system-admin/admins/{admin_id}/reset-token
    """
    permission_classes = [RequireAccountType]
    provisioning = admin_provisioning

    def post(self, request, admin_id):
        result = self.provisioning.issue_reset_token(request.user, admin_id, request=request)
        body = {
            'message': 'Password setup link sent',
            'user': {'id': str(result.user.id), 'email': result.user.email},
        }
        return Response(_with_dev_info(body, result.token))
