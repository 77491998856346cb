"""
RBAC models for multi-tenant admin access control.

Implements:
- User identity with a coarse account tag and an optional business
- Permission (global (resource, action) catalog)
- Role (system-wide or business-scoped bundles of permissions)
- RolePermission (maps permissions to roles)
- UserRole (maps roles to users)
- UserDirectPermission (permissions granted to a user outside any role)
- AuditLog (audit trail for provisioning and RBAC changes)
"""
import logging
from django.db import models
from django.db.models import Q
from django.contrib.auth.hashers import make_password, check_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone
from apps.core.models import BaseModel, BaseModelManager

logger = logging.getLogger(__name__)


SYSTEM_ADMIN_ROLE_NAME = 'system_admin'
SYSTEM_ADMIN_ROLE_DESCRIPTION = 'System Administrator with full system access'


class AccountType(models.TextChoices):
    """Coarse account tag carried on the user and inside session tokens."""
    SYSTEM_ADMIN = 'system_admin', 'System Administrator'
    RESTAURANT_ADMIN = 'restaurant_admin', 'Restaurant Administrator'
    CUSTOMER = 'customer', 'Customer'


ADMIN_ACCOUNT_TYPES = (AccountType.SYSTEM_ADMIN, AccountType.RESTAURANT_ADMIN)


class RoleScope(models.TextChoices):
    SYSTEM = 'system', 'System'
    BUSINESS = 'business', 'Business'


class UserManager(BaseModelManager):
    """
    Manager for User queries.

    Compatible with Django's authentication system.
    """

    def by_email(self, email):
        """Find user by email (case-insensitive)."""
        if not email:
            return None
        return self.filter(email__iexact=email.strip()).first()

    def admins(self):
        return self.filter(role__in=ADMIN_ACCOUNT_TYPES)

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.

        Users created without a password keep ``is_password_set=False`` until
        they redeem a setup token.
        """
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    @classmethod
    def normalize_email(cls, email):
        """Lowercase the whole address; emails are unique case-insensitively."""
        return (email or '').strip().lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Account identity.

    ``role`` is the coarse account tag used for fast routing decisions
    (system admin, restaurant admin, customer). Fine-grained authorization
    comes from ``roles`` and ``direct_permissions`` and is resolved by
    ``apps.rbac.services.RBACService``.

    This is the AUTH_USER_MODEL for the project.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password",
        db_column='password_hash'
    )
    is_password_set = models.BooleanField(
        default=False,
        help_text="False until the account owner chooses a password"
    )
    first_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User first name"
    )
    last_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User last name"
    )

    # Status
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Platform superuser flag"
    )

    role = models.CharField(
        max_length=32,
        choices=AccountType.choices,
        default=AccountType.CUSTOMER,
        db_index=True,
        help_text="Coarse account tag"
    )
    business = models.ForeignKey(
        'businesses.Business',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='users',
        help_text="Business a restaurant admin is bound to (null for system accounts)"
    )

    roles = models.ManyToManyField(
        'Role',
        through='UserRole',
        through_fields=('user', 'role'),
        related_name='users',
        blank=True,
    )
    direct_permissions = models.ManyToManyField(
        'Permission',
        through='UserDirectPermission',
        through_fields=('user', 'permission'),
        related_name='direct_users',
        blank=True,
    )

    # One-time setup / reset token, stored hashed only
    password_reset_token_hash = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="SHA-256 of the outstanding setup token"
    )
    password_reset_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the outstanding setup token expires"
    )

    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
            models.Index(fields=['role', 'business']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash, expected by Django's auth machinery."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        if not self.password_hash:
            return False
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def get_username(self):
        return self.email

    def update_last_login(self):
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at', 'updated_at'])

    def clear_reset_token(self):
        self.password_reset_token_hash = None
        self.password_reset_expires_at = None

    @property
    def is_system_admin(self):
        return self.role == AccountType.SYSTEM_ADMIN

    @property
    def is_restaurant_admin(self):
        return self.role == AccountType.RESTAURANT_ADMIN

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        """
        Django-style permission check.

        Accepts ``resource:action`` codes and delegates to the resolver.
        """
        if self.is_superuser:
            return True
        resource, sep, action = perm.partition(':')
        if not sep:
            return False
        from apps.rbac.services import rbac_service
        return rbac_service.check_permission(self.id, resource, action)

    def has_perms(self, perm_list, obj=None):
        return all(self.has_perm(perm, obj) for perm in perm_list)

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)


class PermissionManager(BaseModelManager):
    """Manager for Permission queries."""

    def by_code(self, code):
        """Find permission by ``resource:action`` code."""
        resource, sep, action = (code or '').partition(':')
        if not sep:
            return None
        return self.filter(resource=resource, action=action).first()

    def by_resource(self, resource):
        return self.filter(resource=resource)

    def get_or_create_permission(self, resource, action, description='', name=''):
        """Get or create permission (idempotent)."""
        permission, created = self.get_or_create(
            resource=resource,
            action=action,
            defaults={
                'description': description or f'Permission to {action} {resource}',
                'name': name or f'{action}_{resource}',
            }
        )
        return permission, created


class Permission(BaseModel):
    """
    A (resource, action) pair the system understands.

    Permissions are global; roles and users reference them. Deleting a
    permission removes the row for real, which cascades it out of every
    role and every user's direct grants.
    """

    resource = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Resource name (e.g., 'orders')"
    )
    action = models.CharField(
        max_length=50,
        help_text="Action name (e.g., 'read')"
    )
    name = models.CharField(
        max_length=150,
        blank=True,
        help_text="Display name, defaults to '<action>_<resource>'"
    )
    description = models.TextField(
        blank=True,
        help_text="What this permission grants"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['resource', 'action']
        constraints = [
            models.UniqueConstraint(
                fields=['resource', 'action'],
                name='unique_permission_resource_action',
            ),
        ]

    def __str__(self):
        return self.code

    def save(self, *args, **kwargs):
        if not self.name:
            self.name = f'{self.action}_{self.resource}'
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        return self.hard_delete(using=using, keep_parents=keep_parents)

    @property
    def code(self):
        return f'{self.resource}:{self.action}'

    @property
    def key(self):
        """Identity of a permission: the (resource, action) tuple."""
        return (self.resource, self.action)


class RoleManager(BaseModelManager):
    """Manager for Role queries with business scoping."""

    def global_non_system(self):
        """Roles that belong to no business and are not system roles."""
        return self.filter(business__isnull=True, is_system_role=False)

    def visible_to_business(self, business):
        return self.filter(
            Q(business=business) | Q(business__isnull=True, is_system_role=False)
        )

    def by_name(self, name, scope=None, business=None):
        qs = self.filter(name=name, business=business)
        if scope:
            qs = qs.filter(scope=scope)
        return qs.first()


class Role(BaseModel):
    """
    Named bundle of permissions.

    System-scoped roles never carry a business. Business-scoped roles may be
    created without one and are stamped with a business the first time they
    are assigned inside a tenant.
    """

    name = models.CharField(
        max_length=100,
        help_text="Role name (e.g., 'system_admin', 'Floor Manager')"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    scope = models.CharField(
        max_length=20,
        choices=RoleScope.choices,
        default=RoleScope.BUSINESS,
        db_index=True,
        help_text="system (platform-wide) or business (tenant-limited)"
    )
    is_system_role = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Reserved platform role"
    )
    business = models.ForeignKey(
        'businesses.Business',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='roles',
        help_text="Owning business (null for system and global roles)"
    )
    permissions = models.ManyToManyField(
        Permission,
        through='RolePermission',
        related_name='roles',
        blank=True,
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['name', 'scope'],
                condition=Q(business__isnull=True, deleted_at__isnull=True),
                name='unique_global_role_name_per_scope',
            ),
            models.UniqueConstraint(
                fields=['name', 'business', 'scope'],
                condition=Q(business__isnull=False, deleted_at__isnull=True),
                name='unique_business_role_name_per_scope',
            ),
        ]
        indexes = [
            models.Index(fields=['business', 'scope']),
        ]

    def __str__(self):
        owner = self.business.name if self.business_id else self.scope
        return f"{owner} - {self.name}"

    def clean(self):
        super().clean()
        if self.scope == RoleScope.SYSTEM and self.business_id:
            raise DjangoValidationError("System-scoped roles cannot belong to a business")

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)

    @property
    def needs_business(self):
        """Business-scoped role that has not been stamped with a business yet."""
        return self.scope == RoleScope.BUSINESS and self.business_id is None


class RolePermissionManager(BaseModelManager):
    """Manager for RolePermission queries."""

    def grant_permission(self, role, permission):
        """Grant permission to role (idempotent)."""
        return self.get_or_create(role=role, permission=permission)

    def revoke_permission(self, role, permission):
        return self.filter(role=role, permission=permission).hard_delete()


class RolePermission(BaseModel):
    """Maps permissions to roles."""

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Role that grants this permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Permission being granted"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.name} -> {self.permission.code}"


class UserRoleManager(BaseModelManager):

    def assign(self, user, role, assigned_by=None):
        """Assign role to user (idempotent)."""
        return self.get_or_create(
            user=user,
            role=role,
            defaults={'assigned_by': assigned_by},
        )

    def unassign(self, user, role):
        return self.filter(user=user, role=role).hard_delete()


class UserRole(BaseModel):
    """
    Maps roles to users.

    A row keeps pointing at its role after the role is soft deleted; the
    resolver reports such rows as unresolved references.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_roles',
        help_text="User who has this role"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='user_roles',
        help_text="Role assigned to the user"
    )
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="User who assigned this role"
    )

    objects = UserRoleManager()

    class Meta:
        db_table = 'user_roles'
        unique_together = [('user', 'role')]
        ordering = ['created_at']

    def __str__(self):
        return f"{self.user_id} -> {self.role_id}"


class UserDirectPermissionManager(BaseModelManager):

    def grant(self, user, permission, granted_by=None):
        """Grant permission directly to user (idempotent)."""
        return self.get_or_create(
            user=user,
            permission=permission,
            defaults={'granted_by': granted_by},
        )

    def revoke(self, user, permission):
        return self.filter(user=user, permission=permission).hard_delete()


class UserDirectPermission(BaseModel):
    """Permission granted to a user outside any role."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_direct_permissions',
        help_text="User holding the permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='user_direct_permissions',
        help_text="Permission granted"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='direct_permissions_granted',
        help_text="User who granted this permission"
    )

    objects = UserDirectPermissionManager()

    class Meta:
        db_table = 'user_direct_permissions'
        unique_together = [('user', 'permission')]
        ordering = ['created_at']

    def __str__(self):
        return f"{self.user_id} -> {self.permission.code}"


class AuditLog(BaseModel):
    """
    Audit trail for provisioning and RBAC changes.
    """

    business = models.ForeignKey(
        'businesses.Business',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Business this action belongs to (null for platform-level)"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'admin_created', 'role_assigned')"
    )
    target_type = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Type of target entity (e.g., 'User', 'Role')"
    )
    target_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of target entity"
    )
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after changes"
    )
    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address of the request"
    )
    user_agent = models.TextField(
        blank=True,
        help_text="User agent string"
    )
    request_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Request ID for tracing"
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context"
    )

    objects = BaseModelManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['business', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        user_str = self.user.email if self.user else 'System'
        business_str = self.business.name if self.business else 'Platform'
        return f"{business_str} - {user_str} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, business=None, target_type=None,
                   target_id=None, diff=None, metadata=None, request=None):
        """
        Create an audit log entry.

        Runs inside the caller's transaction, so an aborted provisioning
        call leaves no audit row behind.
        """
        if user is not None and not user.is_authenticated:
            user = None

        log_data = {
            'action': action,
            'user': user,
            'business': business,
            'target_type': target_type or '',
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', None)

        return cls.objects.create(**log_data)

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
