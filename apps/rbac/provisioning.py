"""
Admin provisioning workflow.

Creates and administers privileged accounts. New accounts have no password;
they receive a magic link carrying a one-time token and choose a password
when they redeem it.

Every mutating operation runs in a single transaction: role ensure and
back-fill, business validation and the user write commit together or not at
all. The setup email is sent from inside that transaction; a delivery
failure aborts it only in production.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from apps.businesses.models import Business
from apps.core.exceptions import (
    AuthorizationError, ConflictError, EmailDeliveryError, InternalError,
    NotFoundError, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.core.services.email_service import EmailService, EmailServiceError
from apps.rbac.models import (
    AccountType, AuditLog, Role, RoleScope, User, UserRole, SYSTEM_ADMIN_ROLE_NAME,
)
from apps.rbac.roles import get_business, role_registry
from apps.rbac.tokens import (
    ResetToken, generate_password_reset_token, hash_token, verify_token,
)

logger = logging.getLogger(__name__)


PASSWORD_PATTERN = re.compile(
    r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$'
)

PASSWORD_REQUIREMENTS = {
    'length': 'Minimum 8 characters',
    'uppercase': 'At least one uppercase letter',
    'lowercase': 'At least one lowercase letter',
    'number': 'At least one number',
    'special': 'At least one special character (@$!%*?&)',
}

FIELD_LABELS = {
    'email': 'Email',
    'first_name': 'First name',
    'last_name': 'Last name',
    'role_id': 'Role ID',
    'token': 'Token',
    'password': 'Password',
}


@dataclass
class ProvisioningResult:
    """Outcome of an operation that issued a setup token."""
    user: User
    token: ResetToken
    role: Optional[Role] = None


def setup_url(plain_token: str) -> str:
    base = settings.ADMIN_FRONTEND_URL.rstrip('/')
    return f"{base}/password-setup?token={plain_token}"


def dev_info_for(token: ResetToken) -> Optional[Dict]:
    """
    Developer convenience fields for a provisioning response.

    Returns None in production; the plaintext token must never reach a
    production response.
    """
    if settings.IS_PRODUCTION:
        return None
    return {
        'plain_token': token.plain_token,
        'hashed_token': token.hashed_token,
        'expires': token.expires_at.isoformat(),
        'setup_url': setup_url(token.plain_token),
    }


def account_type_for_role(role: Role) -> str:
    if role.is_system_role or role.name == SYSTEM_ADMIN_ROLE_NAME:
        return AccountType.SYSTEM_ADMIN
    return AccountType.RESTAURANT_ADMIN


def require_fields(**fields):
    missing = {
        name: f"{FIELD_LABELS.get(name, name)} is required"
        for name, value in fields.items()
        if not value
    }
    if missing:
        raise ValidationError('Missing required fields', details=missing)


def _same_id(left, right) -> bool:
    try:
        return uuid.UUID(str(left)) == uuid.UUID(str(right))
    except (ValueError, TypeError):
        return False


class AdminProvisioning:
    """
    Privileged account lifecycle.

    ``actor`` is always the authenticated user making the request; its coarse
    account tag decides what it can see and assign.
    """

    email_service = EmailService
    roles = role_registry

    # Email

    def send_setup_email(self, user: User, token: ResetToken):
        """
        Deliver the magic link.

        Outside production a failed delivery is logged and the account is
        kept; in production it raises EmailDeliveryError, which aborts the
        enclosing transaction.
        """
        try:
            self.email_service.send_password_setup_email(
                user.email,
                user.get_full_name(),
                setup_url(token.plain_token),
            )
        except EmailServiceError as e:
            if settings.IS_PRODUCTION:
                logger.error(
                    "Password setup email failed, aborting",
                    extra={'user_id': str(user.id)}
                )
                raise EmailDeliveryError('Failed to send password setup email') from e
            logger.warning(
                "Password setup email failed, continuing outside production",
                extra={'user_id': str(user.id)}
            )

    # Creation

    def _check_email(self, email: str) -> str:
        email = User.objects.normalize_email(email)
        if User.objects.by_email(email):
            raise ConflictError('User with this email already exists')
        if not self.email_service.is_valid_email(email):
            raise ValidationError('Invalid email address')
        return email

    def _create_account(self, email, first_name, last_name, account_type, business,
                        roles, token, assigned_by=None) -> User:
        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    role=account_type,
                    business=business,
                    is_password_set=False,
                    password_reset_token_hash=token.hashed_token,
                    password_reset_expires_at=token.expires_at,
                )
        except IntegrityError:
            raise ConflictError('User with this email already exists')

        for role in roles:
            UserRole.objects.assign(user, role, assigned_by=assigned_by)
        return user

    @transaction.atomic
    def setup_sys_admin(self, email: str, first_name: str, last_name: str,
                        request=None) -> ProvisioningResult:
        """
        Bootstrap a system administrator.

        Ensures the reserved system_admin role exists, creates the account
        with that role and sends the magic link.
        """
        role = self.roles.ensure_system_admin_role()

        require_fields(email=email, first_name=first_name, last_name=last_name)
        email = self._check_email(email)

        token = generate_password_reset_token()
        user = self._create_account(
            email, first_name, last_name, AccountType.SYSTEM_ADMIN, None, [role], token
        )

        self.send_setup_email(user, token)

        AuditLog.log_action(
            action='system_admin_created',
            target_type='User',
            target_id=user.id,
            metadata={'role_id': str(role.id)},
            request=request,
        )
        logger.info("System administrator created", extra={'user_id': str(user.id)})

        return ProvisioningResult(user=user, token=token, role=role)

    def validate_role_assignment(self, actor: User, role: Role,
                                 requested_business: Optional[Business] = None):
        """
        Check that ``actor`` may hand out ``role`` and back-fill the role's
        business where it is missing.

        Raises:
            InternalError: Restaurant admin without a business
            AuthorizationError: Role belongs to another business or is a system role
        """
        if actor.role == AccountType.RESTAURANT_ADMIN:
            if not actor.business_id:
                raise InternalError(
                    'Current user has no business ID',
                    details='Your account is not properly associated with a business',
                )

            if role.business_id:
                allowed = role.business_id == actor.business_id
            else:
                allowed = not role.is_system_role

            if not allowed:
                SecurityLogger.log_suspicious_activity(
                    'cross_business_access_attempt',
                    'Business admin tried to assign a role outside its business',
                    user_id=str(actor.id),
                    business_id=str(actor.business_id),
                    role_id=str(role.id),
                )
                raise AuthorizationError(
                    'Insufficient permissions',
                    details='You can only assign roles that belong to your business',
                )

            self.roles.backfill_business(role, actor.business)

        elif actor.role == AccountType.SYSTEM_ADMIN:
            self.roles.backfill_business(role, requested_business)

        else:
            raise AuthorizationError('Insufficient permissions')

    def business_for_new_admin(self, actor: User, role: Role,
                               requested_business: Optional[Business]) -> Optional[Business]:
        """
        Business the account holding ``role`` belongs to.

        A business-scoped account always shares the business of its
        business-scoped role.
        """
        if actor.role == AccountType.RESTAURANT_ADMIN:
            return actor.business
        if role.is_system_role:
            return None

        if requested_business and role.business_id and role.business_id != requested_business.id:
            raise ValidationError(
                'Role belongs to a different business',
                details='A business-scoped role can only be held by users of its own business',
            )

        business = requested_business or role.business
        if business is None:
            raise ValidationError(
                'Business ID is required for business-scoped roles',
                details='Business-scoped roles must be associated with a business',
            )
        return business

    @transaction.atomic
    def create_admin(self, actor: User, email: str, first_name: str, last_name: str,
                     role_id, business_id=None, request=None) -> ProvisioningResult:
        """
        Create an administrator holding ``role_id``.

        A system administrator may assign any role; a restaurant
        administrator only roles of its own business or global non-system
        roles, and the new account always lands in its business.
        """
        require_fields(email=email, first_name=first_name, last_name=last_name, role_id=role_id)

        try:
            role = Role.objects.get(id=role_id)
        except (Role.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFoundError('Selected role not found', details='The specified role does not exist')

        requested_business = None
        if business_id and actor.role == AccountType.SYSTEM_ADMIN:
            requested_business = get_business(business_id)

        self.validate_role_assignment(actor, role, requested_business)
        business = self.business_for_new_admin(actor, role, requested_business)

        email = self._check_email(email)

        token = generate_password_reset_token()
        user = self._create_account(
            email, first_name, last_name, account_type_for_role(role), business, [role], token,
            assigned_by=actor,
        )

        self.send_setup_email(user, token)

        AuditLog.log_action(
            action='admin_created',
            user=actor,
            business=business,
            target_type='User',
            target_id=user.id,
            metadata={'role_id': str(role.id), 'account_type': user.role},
            request=request,
        )
        logger.info(
            "Admin created",
            extra={'user_id': str(user.id), 'role_id': str(role.id),
                   'business_id': str(business.id) if business else None}
        )

        return ProvisioningResult(user=user, token=token, role=role)

    def _load_roles(self, role_ids) -> List[Role]:
        """Roles for ``role_ids`` in request order; every id must exist."""
        try:
            ids = list(dict.fromkeys(uuid.UUID(str(role_id)) for role_id in role_ids))
        except (ValueError, TypeError):
            raise NotFoundError('Selected role not found', details='One or more roles do not exist')

        roles = {role.id: role for role in Role.objects.filter(id__in=ids)}
        if len(roles) != len(ids):
            raise NotFoundError('Selected role not found', details='One or more roles do not exist')
        return [roles[role_id] for role_id in ids]

    def _business_for_roles(self, roles: List[Role], business: Optional[Business]) -> Optional[Business]:
        """
        Settle the business of an account holding ``roles``.

        Business-scoped roles that already carry a business must all agree
        with it; unstamped ones are back-filled.
        """
        for role in roles:
            if role.scope != RoleScope.BUSINESS or role.is_system_role or role.business_id is None:
                continue
            if business is None:
                business = role.business
            elif role.business_id != business.id:
                raise ValidationError(
                    'Role belongs to a different business',
                    details='A business-scoped role can only be held by users of its own business',
                )

        for role in roles:
            if role.needs_business:
                if business is None:
                    raise ValidationError(
                        'Business ID is required for business-scoped roles',
                        details='Business-scoped roles must be associated with a business',
                    )
                self.roles.backfill_business(role, business)
        return business

    @transaction.atomic
    def create_business_user(self, actor: User, email: str, first_name: str = '',
                             last_name: str = '', role_ids=None, business_id=None,
                             request=None) -> ProvisioningResult:
        """
        Create a staff account inside a business.

        The account carries the ``customer`` tag; its authority comes only
        from the roles it is given. A restaurant administrator creates staff
        in its own business, with business roles of that business only. Like
        every provisioned account it receives a magic link.
        """
        if actor.role == AccountType.RESTAURANT_ADMIN and actor.business_id:
            business = actor.business
        elif actor.role == AccountType.SYSTEM_ADMIN:
            business = get_business(business_id) if business_id else None
        else:
            raise AuthorizationError('Access denied')

        require_fields(email=email)
        if role_ids is not None and not isinstance(role_ids, list):
            raise ValidationError('Role IDs must be an array')
        roles = self._load_roles(role_ids or [])

        if actor.role == AccountType.RESTAURANT_ADMIN:
            for role in roles:
                if role.scope != RoleScope.BUSINESS or role.business_id != actor.business_id:
                    raise AuthorizationError('Can only assign business roles from your business')

        business = self._business_for_roles(roles, business)
        email = self._check_email(email)

        token = generate_password_reset_token()
        user = self._create_account(
            email, first_name or '', last_name or '', AccountType.CUSTOMER, business, roles, token,
            assigned_by=actor,
        )

        self.send_setup_email(user, token)

        AuditLog.log_action(
            action='business_user_created',
            user=actor,
            business=business,
            target_type='User',
            target_id=user.id,
            metadata={'role_ids': [str(role.id) for role in roles]},
            request=request,
        )
        logger.info(
            "Business user created",
            extra={'user_id': str(user.id),
                   'business_id': str(business.id) if business else None}
        )

        return ProvisioningResult(user=user, token=token)

    # Visibility

    def get_available_roles(self, actor: User):
        """Roles ``actor`` may assign to a new administrator."""
        if actor.role == AccountType.SYSTEM_ADMIN:
            return Role.objects.all()

        if actor.role == AccountType.RESTAURANT_ADMIN:
            if not actor.business_id:
                raise InternalError(
                    'Current user has no business ID',
                    details='Your account is not properly associated with a business',
                )
            return Role.objects.visible_to_business(actor.business_id)

        raise AuthorizationError(
            'Insufficient permissions',
            details='You do not have permission to view available roles',
        )

    def admins_visible_to(self, actor: User):
        admins = User.objects.admins().select_related('business')

        if actor.role == AccountType.SYSTEM_ADMIN:
            return admins
        if actor.role == AccountType.RESTAURANT_ADMIN:
            if not actor.business_id:
                return admins.none()
            return admins.filter(business_id=actor.business_id)

        raise AuthorizationError('Insufficient permissions')

    def list_admins(self, actor: User, role: Optional[str] = None):
        admins = self.admins_visible_to(actor)
        if role:
            admins = admins.filter(role=role)
        return admins.prefetch_related('roles').order_by('-created_at')

    def get_admin(self, actor: User, admin_id) -> User:
        try:
            admin = self.admins_visible_to(actor).filter(id=admin_id).first()
        except (ValueError, DjangoValidationError):
            admin = None
        if admin is None:
            raise NotFoundError('Admin not found or access denied')
        return admin

    # Updates

    @transaction.atomic
    def update_admin(self, actor: User, admin_id, first_name: Optional[str] = None,
                     last_name: Optional[str] = None, role_id=None, business_id=None,
                     request=None) -> User:
        """
        Update profile fields and optionally reassign the admin's role.

        A new role goes through the same scope checks as ``create_admin`` and
        replaces every role the admin held.
        """
        admin = self.get_admin(actor, admin_id)
        diff = {}

        if first_name is not None:
            diff['first_name'] = [admin.first_name, first_name]
            admin.first_name = first_name
        if last_name is not None:
            diff['last_name'] = [admin.last_name, last_name]
            admin.last_name = last_name

        if role_id:
            role = self.roles.get_role(role_id)

            requested_business = None
            if actor.role == AccountType.SYSTEM_ADMIN:
                if business_id:
                    requested_business = get_business(business_id)
                elif role.needs_business:
                    requested_business = admin.business

            self.validate_role_assignment(actor, role, requested_business)
            business = self.business_for_new_admin(actor, role, requested_business)

            UserRole.objects.filter(user=admin).hard_delete()
            UserRole.objects.assign(admin, role, assigned_by=actor)

            diff['role'] = [admin.role, account_type_for_role(role)]
            diff['role_id'] = str(role.id)
            admin.role = account_type_for_role(role)
            admin.business = business

        admin.save()

        AuditLog.log_action(
            action='admin_updated',
            user=actor,
            business=admin.business,
            target_type='User',
            target_id=admin.id,
            diff=diff,
            request=request,
        )
        return admin

    @transaction.atomic
    def delete_admin(self, actor: User, admin_id, request=None):
        """Hard delete an admin. An actor can never delete itself."""
        if _same_id(admin_id, actor.id):
            SecurityLogger.log_suspicious_activity(
                'self_deletion_attempt',
                'Admin attempted to delete its own account',
                user_id=str(actor.id),
            )
            raise ValidationError('Cannot delete your own account')

        admin = self.get_admin(actor, admin_id)
        target_id = admin.id
        business = admin.business

        AuditLog.log_action(
            action='admin_deleted',
            user=actor,
            business=business,
            target_type='User',
            target_id=target_id,
            metadata={'account_type': admin.role},
            request=request,
        )
        admin.hard_delete()
        logger.info("Admin deleted", extra={'user_id': str(target_id)})

    @transaction.atomic
    def issue_reset_token(self, actor: User, admin_id, request=None) -> ProvisioningResult:
        """Replace the admin's outstanding token with a new one and resend the link."""
        admin = self.get_admin(actor, admin_id)

        token = generate_password_reset_token()
        admin.password_reset_token_hash = token.hashed_token
        admin.password_reset_expires_at = token.expires_at
        admin.save(update_fields=['password_reset_token_hash', 'password_reset_expires_at', 'updated_at'])

        self.send_setup_email(admin, token)

        AuditLog.log_action(
            action='reset_token_issued',
            user=actor,
            business=admin.business,
            target_type='User',
            target_id=admin.id,
            request=request,
        )
        return ProvisioningResult(user=admin, token=token)

    # Token redemption

    def _user_for_token(self, plain_token: str, lock: bool = False) -> User:
        qs = User.objects.filter(password_reset_token_hash=hash_token(plain_token))
        if lock:
            qs = qs.select_for_update()
        user = qs.first()

        if user is None or not verify_token(
            plain_token, user.password_reset_token_hash, user.password_reset_expires_at
        ):
            raise ValidationError('Invalid or expired password reset token')
        return user

    def verify_setup_token(self, plain_token: str) -> User:
        if not plain_token:
            raise ValidationError('Token is required')
        return self._user_for_token(plain_token)

    @transaction.atomic
    def complete_password_setup(self, plain_token: str, password: str) -> User:
        """
        Redeem a setup token: store the password and burn the token.
        """
        require_fields(token=plain_token, password=password)

        if not PASSWORD_PATTERN.match(password):
            raise ValidationError(
                'Password does not meet requirements',
                details=PASSWORD_REQUIREMENTS,
            )

        user = self._user_for_token(plain_token, lock=True)

        user.set_password(password)
        user.is_password_set = True
        user.clear_reset_token()
        user.save()

        AuditLog.log_action(
            action='password_setup_completed',
            user=user,
            business=user.business,
            target_type='User',
            target_id=user.id,
        )
        logger.info("Password setup completed", extra={'user_id': str(user.id)})
        return user


admin_provisioning = AdminProvisioning()
