"""
Role registry.

Roles are named bundles of permissions, either system-wide or bound to a
business. Membership changes are idempotent set operations.
"""
import logging
import uuid
from typing import Iterable, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from apps.businesses.models import Business
from apps.core.exceptions import (
    AuthorizationError, ConflictError, NotFoundError, ValidationError,
)
from apps.rbac.models import (
    AccountType, AuditLog, Permission, Role, RolePermission, RoleScope,
    SYSTEM_ADMIN_ROLE_DESCRIPTION, SYSTEM_ADMIN_ROLE_NAME,
)

logger = logging.getLogger(__name__)


def get_business(business_id) -> Business:
    try:
        return Business.objects.get(id=business_id)
    except (Business.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFoundError('Business not found')


class RoleRegistry:
    """
    Create, look up and mutate roles.

    ``create_role`` trusts its scope and business arguments; callers acting
    on behalf of a user go through ``create_role_for_actor``, which applies
    the caller-identity scoping rules first.
    """

    def get_role(self, role_id) -> Role:
        try:
            return Role.objects.get(id=role_id)
        except (Role.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFoundError('Role not found')

    def find_by_name(self, name: str, scope: Optional[str] = None, business=None) -> Optional[Role]:
        return Role.objects.by_name(name, scope=scope, business=business)

    def roles_visible_to(self, actor):
        """
        System administrators see every role. Everyone else sees the roles of
        their own business plus global non-system roles.
        """
        if actor.role == AccountType.SYSTEM_ADMIN:
            return Role.objects.all()
        if actor.business_id:
            return Role.objects.visible_to_business(actor.business_id)
        return Role.objects.global_non_system()

    def can_access_role(self, actor, role: Role) -> bool:
        if actor.role == AccountType.SYSTEM_ADMIN:
            return True
        if role.business_id:
            return role.business_id == actor.business_id
        return not role.is_system_role

    def can_manage_role(self, actor, role: Role) -> bool:
        """Only system admins edit shared roles; business admins edit their own."""
        if actor.role == AccountType.SYSTEM_ADMIN:
            return True
        return bool(role.business_id) and role.business_id == actor.business_id

    def role_permissions(self, role: Role) -> List[Permission]:
        return list(role.permissions.all().order_by('resource', 'action'))

    def _check_name_available(self, name, scope, business_id, exclude_id=None):
        qs = Role.objects.filter(name=name, scope=scope, business_id=business_id)
        if exclude_id:
            qs = qs.exclude(id=exclude_id)
        if qs.exists():
            raise ConflictError('Role with this name already exists in this scope')

    def _load_permissions(self, permission_ids: Iterable) -> List[Permission]:
        permission_ids = list(permission_ids or [])
        if not permission_ids:
            return []
        try:
            unique_ids = {uuid.UUID(str(pid)) for pid in permission_ids}
        except (ValueError, TypeError):
            raise ValidationError('One or more permissions do not exist')
        permissions = list(Permission.objects.filter(id__in=unique_ids))
        if len(permissions) != len(unique_ids):
            raise ValidationError('One or more permissions do not exist')
        return permissions

    @transaction.atomic
    def create_role(self, name: str, description: str = '', permission_ids=None,
                    scope: str = RoleScope.BUSINESS, business: Optional[Business] = None,
                    actor=None) -> Role:
        """
        Create a role.

        System roles never carry a business and are flagged ``is_system_role``.

        Raises:
            ValidationError: Missing name, unknown scope or unknown permissions
            ConflictError: Name already used in the same scope and business
        """
        if not name:
            raise ValidationError('Role name is required')
        if scope not in RoleScope.values:
            raise ValidationError('Invalid role scope', details={'scope': scope})

        if scope == RoleScope.SYSTEM:
            business = None

        self._check_name_available(name, scope, business.id if business else None)
        permissions = self._load_permissions(permission_ids)

        try:
            with transaction.atomic():
                role = Role.objects.create(
                    name=name,
                    description=description or '',
                    scope=scope,
                    is_system_role=(scope == RoleScope.SYSTEM),
                    business=business,
                )
        except IntegrityError:
            raise ConflictError('Role with this name already exists in this scope')

        for permission in permissions:
            RolePermission.objects.grant_permission(role, permission)

        AuditLog.log_action(
            action='role_created',
            user=actor,
            business=business,
            target_type='Role',
            target_id=role.id,
            metadata={'name': name, 'scope': scope, 'permission_count': len(permissions)},
        )
        logger.info(
            "Role created",
            extra={'role_id': str(role.id), 'scope': scope,
                   'business_id': str(business.id) if business else None}
        )
        return role

    def create_role_for_actor(self, actor, name: str, description: str = '',
                              permission_ids=None, scope: str = RoleScope.BUSINESS,
                              business_id=None) -> Role:
        """
        Create a role on behalf of ``actor``.

        A system administrator may create system roles, or business roles for
        any business (or for none, to be stamped on first use). A business
        administrator may only create business roles for its own business.
        """
        if actor.role == AccountType.SYSTEM_ADMIN:
            business = None
            if scope == RoleScope.BUSINESS and business_id:
                business = get_business(business_id)
            return self.create_role(name, description, permission_ids, scope, business, actor=actor)

        if actor.role != AccountType.RESTAURANT_ADMIN:
            raise AuthorizationError('Insufficient permissions to create roles')

        if not actor.business_id:
            raise AuthorizationError('Restaurant admin must be associated with a business')

        if scope == RoleScope.SYSTEM or name == SYSTEM_ADMIN_ROLE_NAME:
            logger.warning(
                "Business admin attempted to create a system role",
                extra={'user_id': str(actor.id), 'business_id': str(actor.business_id)}
            )
            raise AuthorizationError('Business administrators cannot create system roles')

        if business_id and str(business_id) != str(actor.business_id):
            raise AuthorizationError('Cannot create roles for another business')

        return self.create_role(
            name, description, permission_ids, RoleScope.BUSINESS, actor.business, actor=actor
        )

    @transaction.atomic
    def update_role(self, role: Role, name: Optional[str] = None,
                    description: Optional[str] = None, actor=None) -> Role:
        before = {'name': role.name, 'description': role.description}

        if name and name != role.name:
            self._check_name_available(name, role.scope, role.business_id, exclude_id=role.id)
            role.name = name
        if description is not None:
            role.description = description

        role.save()

        AuditLog.log_action(
            action='role_updated',
            user=actor,
            business=role.business,
            target_type='Role',
            target_id=role.id,
            diff={'before': before, 'after': {'name': role.name, 'description': role.description}},
        )
        return role

    @transaction.atomic
    def delete_role(self, role: Role, actor=None):
        """
        Soft delete a role.

        Assignments pointing at it are left in place and stop resolving.
        """
        if role.is_system_role and role.name == SYSTEM_ADMIN_ROLE_NAME:
            raise ValidationError('The system_admin role cannot be deleted')

        role.delete()

        AuditLog.log_action(
            action='role_deleted',
            user=actor,
            business=role.business,
            target_type='Role',
            target_id=role.id,
            metadata={'name': role.name},
        )

    @transaction.atomic
    def add_permissions_to_role(self, role: Role, permission_ids, actor=None) -> Role:
        """Set-union of ``permission_ids`` into the role's permissions."""
        if not isinstance(permission_ids, list) or not permission_ids:
            raise ValidationError('Permissions array is required')

        permissions = self._load_permissions(permission_ids)
        added = [
            permission.code
            for permission in permissions
            if RolePermission.objects.grant_permission(role, permission)[1]
        ]

        if added:
            AuditLog.log_action(
                action='role_permissions_added',
                user=actor,
                business=role.business,
                target_type='Role',
                target_id=role.id,
                diff={'added': added},
            )
        return role

    @transaction.atomic
    def remove_permission_from_role(self, role: Role, permission_id, actor=None) -> Role:
        """Set-difference; removing a permission the role lacks is a no-op."""
        try:
            permission = Permission.objects.get(id=permission_id)
        except (Permission.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFoundError('Permission not found')

        deleted_count, _ = RolePermission.objects.revoke_permission(role, permission)

        if deleted_count:
            AuditLog.log_action(
                action='role_permission_removed',
                user=actor,
                business=role.business,
                target_type='Role',
                target_id=role.id,
                diff={'removed': [permission.code]},
            )
        return role

    def ensure_system_admin_role(self) -> Role:
        """Return the reserved system_admin role, creating it if missing."""
        role, created = Role.objects.get_or_create(
            name=SYSTEM_ADMIN_ROLE_NAME,
            scope=RoleScope.SYSTEM,
            business=None,
            defaults={
                'description': SYSTEM_ADMIN_ROLE_DESCRIPTION,
                'is_system_role': True,
            }
        )
        if created:
            logger.info("Created system_admin role", extra={'role_id': str(role.id)})
        return role

    def backfill_business(self, role: Role, business: Optional[Business]) -> Role:
        """
        Stamp a business-scoped role that has no business yet.

        Roles that already carry a business, and system roles, are left alone.
        """
        if not role.needs_business or business is None:
            return role

        role.business = business
        try:
            with transaction.atomic():
                role.save(update_fields=['business', 'updated_at'])
        except IntegrityError:
            raise ConflictError('Role with this name already exists in this scope')

        logger.info(
            "Back-filled role business",
            extra={'role_id': str(role.id), 'business_id': str(business.id)}
        )
        return role


role_registry = RoleRegistry()
