"""
RBAC and Authentication services.

Implements:
- RBACService: permission resolution, role checks, role and direct permission membership
- AuthService: JWT session tokens, registration, login

Both are stateless and instantiated once at import time (``rbac_service``,
``auth_service``); views and guards reference the instances through a class
attribute so that tests can substitute them.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Dict, Any, Iterable, List, Optional, Union

import jwt
from django.conf import settings
from django.contrib.auth import authenticate
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q

from apps.core.exceptions import (
    AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.core.services.email_service import EmailService
from apps.rbac.models import (
    ADMIN_ACCOUNT_TYPES, AccountType, AuditLog, Permission, Role, RoleScope, User,
    UserDirectPermission, UserRole,
)
from apps.rbac.roles import role_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedRole:
    """Role reference whose Role row was loaded, permissions included."""
    role: Role
    resolved = True

    @property
    def role_id(self):
        return self.role.id


@dataclass(frozen=True)
class UnresolvedRole:
    """Role reference that could not be loaded; contributes nothing."""
    role_id: uuid.UUID
    resolved = False


RoleRef = Union[ResolvedRole, UnresolvedRole]


def _get_or_none(model, pk, manager=None):
    """Fetch by primary key; malformed ids count as missing."""
    manager = manager or model.objects
    try:
        return manager.get(pk=pk)
    except (model.DoesNotExist, ValueError, TypeError, DjangoValidationError):
        return None


class RBACService:
    """
    Authorization resolver.

    Answers "may this user perform ``action`` on ``resource``?" from the
    user's direct permissions and the permissions of every role reference
    that resolves to a live Role. Checks never raise: storage errors are
    logged and answered with False.
    """

    def get_user(self, user_id) -> Optional[User]:
        return _get_or_none(User, user_id)

    def resolve_role_refs(self, user: User) -> List[RoleRef]:
        """
        Resolve the user's role references.

        Every assignment row yields one reference, in assignment order. Rows
        whose role is missing or soft deleted come back as UnresolvedRole.
        """
        role_ids = list(
            UserRole.objects.filter(user=user)
            .order_by('created_at')
            .values_list('role_id', flat=True)
        )
        if not role_ids:
            return []

        roles = {
            role.id: role
            for role in Role.objects.filter(id__in=role_ids).prefetch_related('permissions')
        }
        return [
            ResolvedRole(roles[role_id]) if role_id in roles else UnresolvedRole(role_id)
            for role_id in role_ids
        ]

    def resolved_roles(self, user: User) -> List[Role]:
        return [ref.role for ref in self.resolve_role_refs(user) if ref.resolved]

    def check_permission(self, user_id, resource: str, action: str) -> bool:
        """
        True iff a direct permission or a permission of a resolved role matches
        (resource, action) exactly.
        """
        try:
            user = self.get_user(user_id)
            if user is None:
                return False

            if UserDirectPermission.objects.filter(
                user=user,
                permission__resource=resource,
                permission__action=action,
            ).exists():
                return True

            for role in self.resolved_roles(user):
                for permission in role.permissions.all():
                    if permission.resource == resource and permission.action == action:
                        return True

            return False

        except Exception as e:
            logger.error(
                f"Permission check failed: {e.__class__.__name__}",
                extra={'user_id': str(user_id), 'resource': resource, 'action': action},
                exc_info=True
            )
            return False

    def check_user_has_role(self, user_id, role_names: Iterable[str]) -> bool:
        """True iff any resolved role of the user is named in ``role_names``."""
        try:
            user = self.get_user(user_id)
            if user is None:
                return False

            wanted = set(role_names)
            return any(role.name in wanted for role in self.resolved_roles(user))

        except Exception as e:
            logger.error(
                f"Role check failed: {e.__class__.__name__}",
                extra={'user_id': str(user_id)},
                exc_info=True
            )
            return False

    def get_user_roles(self, user_id) -> List[Role]:
        user = self.get_user(user_id)
        if user is None:
            return []
        return self.resolved_roles(user)

    def get_user_direct_permissions(self, user_id) -> List[Permission]:
        user = self.get_user(user_id)
        if user is None:
            return []
        return list(
            Permission.objects.filter(user_direct_permissions__user=user)
            .order_by('resource', 'action')
        )

    def get_user_permissions(self, user_id) -> List[Permission]:
        """
        Effective permissions: direct grants plus every resolved role's
        permissions, de-duplicated on (resource, action).
        """
        user = self.get_user(user_id)
        if user is None:
            return []

        effective = {}
        for permission in self.get_user_direct_permissions(user.id):
            effective.setdefault(permission.key, permission)
        for role in self.resolved_roles(user):
            for permission in role.permissions.all():
                effective.setdefault(permission.key, permission)

        return list(effective.values())

    @transaction.atomic
    def assign_role_to_user(self, user_id, role_id, assigned_by: Optional[User] = None) -> bool:
        """
        Add a role to the user's roles (idempotent).

        Returns False without mutation when the user or the role does not exist.
        """
        user = self.get_user(user_id)
        role = _get_or_none(Role, role_id)
        if user is None or role is None:
            return False

        user_role, created = UserRole.objects.assign(user, role, assigned_by=assigned_by)

        if created:
            AuditLog.log_action(
                action='role_assigned',
                user=assigned_by,
                business=role.business,
                target_type='UserRole',
                target_id=user_role.id,
                diff={'role': role.name, 'action': 'assigned'},
                metadata={'target_user_id': str(user.id), 'role_id': str(role.id)},
            )
            logger.info(
                "Role assigned",
                extra={'user_id': str(user.id), 'role_id': str(role.id)}
            )

        return True

    @transaction.atomic
    def remove_role_from_user(self, user_id, role_id, removed_by: Optional[User] = None) -> bool:
        """
        Remove a role from the user's roles (idempotent).

        The role row itself may be soft deleted; dangling assignments can
        still be removed.
        """
        user = self.get_user(user_id)
        role = _get_or_none(Role, role_id, manager=Role.objects_with_deleted)
        if user is None or role is None:
            return False

        deleted_count, _ = UserRole.objects.unassign(user, role)

        if deleted_count:
            AuditLog.log_action(
                action='role_removed',
                user=removed_by,
                business=role.business,
                target_type='UserRole',
                diff={'role': role.name, 'action': 'removed'},
                metadata={'target_user_id': str(user.id), 'role_id': str(role.id)},
            )

        return True

    @transaction.atomic
    def assign_permission_to_user(self, user_id, permission_id, granted_by: Optional[User] = None) -> bool:
        user = self.get_user(user_id)
        permission = _get_or_none(Permission, permission_id)
        if user is None or permission is None:
            return False

        grant, created = UserDirectPermission.objects.grant(user, permission, granted_by=granted_by)

        if created:
            AuditLog.log_action(
                action='permission_granted',
                user=granted_by,
                target_type='UserDirectPermission',
                target_id=grant.id,
                diff={'permission': permission.code, 'action': 'granted'},
                metadata={'target_user_id': str(user.id)},
            )

        return True

    @transaction.atomic
    def remove_permission_from_user(self, user_id, permission_id, removed_by: Optional[User] = None) -> bool:
        user = self.get_user(user_id)
        permission = _get_or_none(Permission, permission_id)
        if user is None or permission is None:
            return False

        deleted_count, _ = UserDirectPermission.objects.revoke(user, permission)

        if deleted_count:
            AuditLog.log_action(
                action='permission_revoked',
                user=removed_by,
                target_type='UserDirectPermission',
                diff={'permission': permission.code, 'action': 'revoked'},
                metadata={'target_user_id': str(user.id)},
            )

        return True

    # Tenant-scoped user management

    TENANT_DENIALS = {
        'assign': (
            'Cannot assign roles to users outside your business',
            'Can only assign business roles from your business',
        ),
        'revoke': (
            'Cannot revoke roles from users outside your business',
            'Can only revoke business roles from your business',
        ),
    }

    def check_tenant_role_scope(self, actor: User, target: User, role: Role, verb: str = 'assign'):
        """
        Scope rules for changing another account's roles.

        A system administrator may touch any account and any role. A
        restaurant administrator may only touch accounts of its own business,
        and only with business-scoped roles that belong to that business.

        Raises:
            AuthorizationError: Actor is not an administrator, or the account
                or role lies outside the actor's business
        """
        if actor.role == AccountType.SYSTEM_ADMIN:
            return
        if actor.role != AccountType.RESTAURANT_ADMIN or not actor.business_id:
            raise AuthorizationError('Access denied')

        user_denial, role_denial = self.TENANT_DENIALS[verb]
        if target.business_id != actor.business_id:
            denial = user_denial
        elif role.scope != RoleScope.BUSINESS or role.business_id != actor.business_id:
            denial = role_denial
        else:
            return

        SecurityLogger.log_suspicious_activity(
            'cross_business_access_attempt',
            denial,
            user_id=str(actor.id),
            business_id=str(actor.business_id),
            target_user_id=str(target.id),
            role_id=str(role.id),
        )
        raise AuthorizationError(denial)

    def align_business(self, user: User, role: Role):
        """
        Keep a business-scoped account in the business of its business-scoped role.

        An account with no business joins the role's business; a role with no
        business is back-filled with the account's business.

        Raises:
            ValidationError: Account and role belong to different businesses
        """
        if role.scope != RoleScope.BUSINESS or role.is_system_role:
            return
        if role.business_id is None:
            if user.business_id:
                role_registry.backfill_business(role, user.business)
            return
        if user.business_id is None:
            user.business = role.business
            user.save(update_fields=['business', 'updated_at'])
        elif user.business_id != role.business_id:
            raise ValidationError(
                'Role belongs to a different business',
                details='A business-scoped role can only be held by users of its own business',
            )

    @transaction.atomic
    def assign_business_role(self, actor: User, user_id, role_id) -> User:
        """Assign a role to an account within the actor's tenant (idempotent)."""
        target = self.get_user(user_id)
        if target is None:
            raise NotFoundError('User not found')
        role = _get_or_none(Role, role_id)
        if role is None:
            raise NotFoundError('Role not found')

        self.check_tenant_role_scope(actor, target, role, 'assign')
        self.align_business(target, role)
        self.assign_role_to_user(target.id, role.id, assigned_by=actor)
        return target

    @transaction.atomic
    def revoke_business_role(self, actor: User, user_id, role_id) -> User:
        """Remove a role from an account within the actor's tenant (idempotent)."""
        target = self.get_user(user_id)
        if target is None:
            raise NotFoundError('User not found')
        role = _get_or_none(Role, role_id, manager=Role.objects_with_deleted)
        if role is None:
            raise NotFoundError('Role not found')

        self.check_tenant_role_scope(actor, target, role, 'revoke')
        self.remove_role_from_user(target.id, role.id, removed_by=actor)
        return target

    def business_users(self, actor: User) -> List[User]:
        """
        Staff accounts visible to ``actor``.

        System administrators see every administrator and every account tied
        to a business; restaurant administrators see the accounts of their
        own business.
        """
        users = User.objects.select_related('business').order_by('email')

        if actor.role == AccountType.SYSTEM_ADMIN:
            return list(users.filter(Q(role__in=ADMIN_ACCOUNT_TYPES) | Q(business__isnull=False)))
        if actor.role == AccountType.RESTAURANT_ADMIN:
            if not actor.business_id:
                return []
            return list(users.filter(business_id=actor.business_id))

        raise AuthorizationError('Access denied')

    def group_by_primary_role(self, users: Iterable[User]) -> Dict[str, List[User]]:
        """Group accounts by their first resolved role, falling back to the account tag."""
        groups: Dict[str, List[User]] = {}
        for user in users:
            roles = self.resolved_roles(user)
            key = roles[0].name if roles else (str(user.role) if user.role else 'unassigned')
            groups.setdefault(key, []).append(user)
        return groups


class AuthService:
    """
    Session tokens, registration and login for ordinary accounts.
    """

    def generate_jwt(self, user: User) -> str:
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'role': user.role,
            'business_id': str(user.business_id) if user.business_id else None,
            'iat': now,
            'exp': now + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
        }
        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )

    def generate_refresh_token(self, user: User) -> str:
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': str(user.id),
            'type': 'refresh',
            'iat': now,
            'exp': now + timedelta(days=settings.REFRESH_TOKEN_EXPIRATION_DAYS),
        }
        return jwt.encode(
            payload,
            settings.REFRESH_TOKEN_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )

    def issue_tokens(self, user: User) -> Dict[str, str]:
        return {
            'token': self.generate_jwt(user),
            'refresh_token': self.generate_refresh_token(user),
        }

    def refresh_session(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new access and refresh token pair.

        Works after the access token has expired. Access tokens are rejected
        because they are signed with a different secret.

        Raises:
            AuthenticationError: Missing, expired or invalid refresh token, or
                the account no longer exists or is inactive
        """
        if not refresh_token:
            raise AuthenticationError('Refresh token missing')

        try:
            payload = jwt.decode(
                refresh_token,
                settings.REFRESH_TOKEN_SECRET,
                algorithms=[settings.JWT_ALGORITHM],
            )
        except jwt.InvalidTokenError:
            raise AuthenticationError('Invalid refresh token')

        if payload.get('type') != 'refresh':
            raise AuthenticationError('Invalid refresh token')

        user = _get_or_none(User, payload.get('user_id'))
        if user is None or not user.is_active:
            raise AuthenticationError('Invalid refresh token')

        return {'user': user, **self.issue_tokens(user)}

    def validate_jwt(self, token: str) -> Optional[Dict[str, Any]]:
        """Decoded payload, or None if the token is invalid or expired."""
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM],
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    def get_user_from_jwt(self, token: str) -> Optional[User]:
        payload = self.validate_jwt(token)
        if not payload:
            return None

        user_id = payload.get('user_id')
        if not user_id:
            return None

        user = _get_or_none(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @transaction.atomic
    def register_user(self, email: str, password: str, first_name: str = '',
                      last_name: str = '') -> Dict[str, Any]:
        """
        Create an ordinary customer account and sign it in.

        Raises:
            ValidationError: Invalid email
            ConflictError: Email already registered
        """
        email = User.objects.normalize_email(email)
        if not EmailService.is_valid_email(email):
            raise ValidationError('Invalid email address')

        if User.objects.by_email(email):
            raise ConflictError('User with this email already exists')

        try:
            user = User.objects.create_user(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
                role=AccountType.CUSTOMER,
                is_password_set=True,
            )
        except IntegrityError:
            raise ConflictError('User with this email already exists')

        AuditLog.log_action(
            action='user_registered',
            user=user,
            target_type='User',
            target_id=user.id,
        )
        logger.info("User registered", extra={'user_id': str(user.id)})

        return {'user': user, **self.issue_tokens(user)}

    def login(self, email: str, password: str, request=None) -> Dict[str, Any]:
        """
        Authenticate through the configured backends and issue a session token.

        Raises:
            AuthenticationError: Unknown user, wrong password, inactive
                account or password not yet set
        """
        user = authenticate(request, username=email, password=password)

        if user is None or not user.is_password_set:
            SecurityLogger.log_failed_login(
                email=email,
                ip_address=request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown',
                reason='invalid_credentials',
            )
            raise AuthenticationError('Invalid email or password')

        user.update_last_login()
        AuditLog.log_action(
            action='user_login',
            user=user,
            business=user.business,
            target_type='User',
            target_id=user.id,
            request=request,
        )

        return {'user': user, **self.issue_tokens(user)}


rbac_service = RBACService()
auth_service = AuthService()
