"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (registration, login)
- Users and administrators
- Permissions and roles
"""
from rest_framework import serializers
from apps.rbac.models import Permission, Role, RoleScope, User


# ===== AUTHENTICATION SERIALIZERS =====

class RegistrationSerializer(serializers.Serializer):
    """Serializer for customer self-registration."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        min_length=8,
        style={'input_type': 'password'}
    )
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')

    def validate_email(self, value):
        return value.strip().lower()


class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        return value.strip().lower()


class RefreshTokenSerializer(serializers.Serializer):
    """Serializer for exchanging a refresh token."""

    refresh_token = serializers.CharField(required=False, allow_blank=True, default='')


# ===== PERMISSION SERIALIZERS =====

class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for catalog permissions."""

    code = serializers.CharField(read_only=True)

    class Meta:
        model = Permission
        fields = ['id', 'resource', 'action', 'code', 'name', 'description', 'created_at']
        read_only_fields = fields


class PermissionCheckSerializer(serializers.Serializer):
    resource = serializers.CharField(required=True)
    action = serializers.CharField(required=True)


# ===== ROLE SERIALIZERS =====

class RoleSummarySerializer(serializers.ModelSerializer):
    """Identifying fields of a role."""

    business_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Role
        fields = ['id', 'name', 'description', 'scope', 'is_system_role', 'business_id']
        read_only_fields = fields


class RoleSerializer(RoleSummarySerializer):
    """Role with its permissions."""

    permissions = PermissionSerializer(many=True, read_only=True)

    class Meta(RoleSummarySerializer.Meta):
        fields = RoleSummarySerializer.Meta.fields + ['permissions', 'created_at', 'updated_at']
        read_only_fields = fields


class RoleCreateSerializer(serializers.Serializer):
    name = serializers.CharField(required=True, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    permission_ids = serializers.ListField(
        child=serializers.UUIDField(),
        required=False,
        default=list,
    )
    scope = serializers.ChoiceField(choices=RoleScope.choices, default=RoleScope.BUSINESS)
    business_id = serializers.UUIDField(required=False, allow_null=True)


class RoleUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True)


class PermissionIdsSerializer(serializers.Serializer):
    permission_ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=False,
    )


# ===== USER SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Public profile of an account."""

    business_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'role', 'business_id',
            'is_active', 'is_password_set', 'last_login_at', 'created_at',
        ]
        read_only_fields = fields


class AdminSerializer(UserSerializer):
    """Administrator account with its roles and business."""

    roles = RoleSummarySerializer(many=True, read_only=True)
    business_name = serializers.SerializerMethodField()

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ['roles', 'business_name', 'updated_at']
        read_only_fields = fields

    def get_business_name(self, obj):
        return obj.business.name if obj.business_id else None


class UserRoleAssignmentSerializer(serializers.Serializer):
    role_id = serializers.UUIDField(required=True)


class UserPermissionAssignmentSerializer(serializers.Serializer):
    permission_id = serializers.UUIDField(required=True)
