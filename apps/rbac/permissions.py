"""
DRF permission classes enforcing RBAC on API endpoints.

This module provides:
- HasPermission: checks a (resource, action) requirement through the resolver
- HasRole: checks that the caller holds one of the named roles
- RequireAccountType: fast check on the coarse account tag
- require_permission / require_role / require_account_type: factories

Guards are stateless. They assume an upstream authentication step has set
``request.user`` and never cache decisions.
"""
import logging
from typing import Dict, Optional, Tuple

from rest_framework.permissions import BasePermission

from apps.core.exceptions import AuthenticationError, AuthorizationError, InternalError
from apps.core.logging import SecurityLogger
from apps.rbac.models import ADMIN_ACCOUNT_TYPES
from apps.rbac.services import rbac_service

logger = logging.getLogger(__name__)

Requirement = Tuple[str, str]


def _client_ip(request):
    return request.META.get('REMOTE_ADDR', 'unknown')


def _authenticated_user(request):
    user = getattr(request, 'user', None)
    if user is None or not user.is_authenticated:
        raise AuthenticationError('Authentication required')
    return user


def _resolver_for(guard, view):
    """Views may carry their own resolver instance as ``rbac_service``."""
    return getattr(view, 'rbac_service', None) or guard.rbac_service


class HasPermission(BasePermission):
    """
    Enforce a (resource, action) permission.

    The requirement comes from ``required_permission`` on the guard (set by
    ``require_permission``) or from the view's ``required_permissions`` map
    keyed by HTTP method:

        class RoleListView(APIView):
            permission_classes = [HasPermission]
            required_permissions = {
                'GET': ('roles', 'read'),
                'POST': ('roles', 'create'),
            }

    Raises 401 without an identity, 403 when the resolver says no and 500
    when the resolver itself fails.
    """

    required_permission: Optional[Requirement] = None
    rbac_service = rbac_service

    def get_requirement(self, request, view) -> Optional[Requirement]:
        if self.required_permission:
            return self.required_permission
        mapping: Dict[str, Requirement] = getattr(view, 'required_permissions', None) or {}
        return mapping.get(request.method)

    def has_permission(self, request, view):
        requirement = self.get_requirement(request, view)
        if requirement is None:
            return True

        user = _authenticated_user(request)
        resource, action = requirement

        try:
            allowed = _resolver_for(self, view).check_permission(user.id, resource, action)
        except Exception as e:
            logger.error(
                f"Authorization check raised {e.__class__.__name__}",
                extra={'user_id': str(user.id), 'resource': resource, 'action': action},
                exc_info=True
            )
            SecurityLogger.log_event(
                'authorization_error',
                level='error',
                user_id=str(user.id),
                path=request.path,
            )
            raise InternalError('Authorization error')

        if not allowed:
            SecurityLogger.log_access_denied(
                user,
                f'{action} on {resource}',
                path=request.path,
                ip_address=_client_ip(request),
            )
            raise AuthorizationError(
                'Access denied. Insufficient permissions.',
                details=f'Required permission: {action} on {resource}',
            )

        return True


class HasRole(BasePermission):
    """
    Require one of ``required_roles`` (guard attribute or view attribute).
    """

    required_roles: Tuple[str, ...] = ()
    rbac_service = rbac_service

    def has_permission(self, request, view):
        role_names = self.required_roles or tuple(getattr(view, 'required_roles', ()))
        if not role_names:
            return True

        user = _authenticated_user(request)

        try:
            allowed = _resolver_for(self, view).check_user_has_role(user.id, role_names)
        except Exception as e:
            logger.error(
                f"Role check raised {e.__class__.__name__}",
                extra={'user_id': str(user.id)},
                exc_info=True
            )
            SecurityLogger.log_event(
                'authorization_error',
                level='error',
                user_id=str(user.id),
                path=request.path,
            )
            raise InternalError('Authorization error')

        if not allowed:
            SecurityLogger.log_access_denied(
                user,
                f"roles: {', '.join(role_names)}",
                path=request.path,
                ip_address=_client_ip(request),
            )
            raise AuthorizationError(
                'Access denied. Insufficient role.',
                details=f"Required roles: {', '.join(role_names)}",
            )

        return True


class RequireAccountType(BasePermission):
    """
    Allow only accounts whose coarse tag is in ``allowed_types``.

    Used on the provisioning routes, which are reserved for system and
    restaurant administrators.
    """

    allowed_types = tuple(ADMIN_ACCOUNT_TYPES)

    def has_permission(self, request, view):
        user = _authenticated_user(request)

        if user.role not in self.allowed_types:
            SecurityLogger.log_access_denied(
                user,
                f"account type in {', '.join(self.allowed_types)}",
                path=request.path,
                ip_address=_client_ip(request),
            )
            raise AuthorizationError('Insufficient permissions')

        return True


def require_permission(resource: str, action: str):
    """Permission class requiring ``action`` on ``resource``."""
    return type(
        f'Require_{resource}_{action}',
        (HasPermission,),
        {'required_permission': (resource, action)},
    )


def require_role(*role_names: str):
    """Permission class requiring any of ``role_names``."""
    return type(
        'RequireRole',
        (HasRole,),
        {'required_roles': tuple(role_names)},
    )


def require_account_type(*account_types: str):
    return type(
        'RequireAccountTypeOf',
        (RequireAccountType,),
        {'allowed_types': tuple(account_types)},
    )
