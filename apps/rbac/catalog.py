"""
Permission catalog.

The catalog is the set of (resource, action) pairs the system understands.
Bulk creation is idempotent: pairs that already exist are reported back
untouched.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from apps.core.exceptions import (
    AuthorizationError, ConflictError, NotFoundError, ValidationError,
)
from apps.rbac.models import AccountType, AuditLog, Permission

logger = logging.getLogger(__name__)


MATRIX_RESOURCES = [
    'users',
    'roles',
    'permissions',
    'businesses',
    'restaurants',
    'venues',
    'tables',
    'menu-items',
    'categories',
    'subcategories',
    'subsubcategories',
    'modifiers',
    'orders',
    'invoices',
    'customers',
    'inventory',
    'analytics',
    'settings',
]

MATRIX_ACTIONS = ['create', 'read', 'update', 'delete']


@dataclass
class BulkCreateResult:
    created: List[Permission] = field(default_factory=list)
    existing: List[Permission] = field(default_factory=list)

    @property
    def message(self):
        return f"Created {len(self.created)} permissions"


def _parse_ids(ids: Iterable) -> List[uuid.UUID]:
    try:
        return [uuid.UUID(str(value)) for value in ids]
    except (ValueError, TypeError):
        raise ValidationError('Invalid permission id', details={'permission_ids': list(ids)})


class PermissionCatalog:
    """
    Create, look up and remove catalog permissions.
    """

    def list_permissions(self):
        return Permission.objects.all().order_by('resource', 'action')

    def permissions_by_resource(self, resource: str):
        return Permission.objects.by_resource(resource).order_by('action')

    def get_permission(self, permission_id) -> Permission:
        try:
            return Permission.objects.get(id=permission_id)
        except (Permission.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFoundError('Permission not found')

    @transaction.atomic
    def create_permission(self, resource: str, action: str, description: str = '',
                          name: str = '', actor=None) -> Permission:
        if not resource or not action:
            raise ValidationError('Resource and action are required')

        if Permission.objects.filter(resource=resource, action=action).exists():
            raise ConflictError(f'Permission for {action} on {resource} already exists')

        permission = Permission.objects.create(
            resource=resource,
            action=action,
            description=description or f'Permission to {action} {resource}',
            name=name,
        )

        AuditLog.log_action(
            action='permission_created',
            user=actor,
            target_type='Permission',
            target_id=permission.id,
            metadata={'code': permission.code},
        )
        return permission

    @transaction.atomic
    def update_permission(self, permission_id, actor=None, **fields) -> Permission:
        """
        Update resource, action, name or description.

        Raises:
            NotFoundError: Unknown permission
            ConflictError: The new (resource, action) pair is taken
        """
        permission = self.get_permission(permission_id)
        before = {'resource': permission.resource, 'action': permission.action}

        resource = fields.get('resource') or permission.resource
        action = fields.get('action') or permission.action

        if (resource, action) != permission.key:
            if Permission.objects.filter(resource=resource, action=action).exclude(id=permission.id).exists():
                raise ConflictError(f'Permission for {action} on {resource} already exists')
            permission.resource = resource
            permission.action = action

        if 'name' in fields and fields['name']:
            permission.name = fields['name']
        if 'description' in fields and fields['description'] is not None:
            permission.description = fields['description']

        permission.save()

        AuditLog.log_action(
            action='permission_updated',
            user=actor,
            target_type='Permission',
            target_id=permission.id,
            diff={'before': before, 'after': {'resource': resource, 'action': action}},
        )
        return permission

    @transaction.atomic
    def delete_permission(self, permission_id, actor=None):
        """Delete a permission; role and user grants referencing it go with it."""
        permission = self.get_permission(permission_id)
        code = permission.code
        permission.delete()

        AuditLog.log_action(
            action='permission_deleted',
            user=actor,
            target_type='Permission',
            target_id=permission_id,
            metadata={'code': code},
        )

    @transaction.atomic
    def create_permissions_batch(self, items: List[Dict], actor=None) -> BulkCreateResult:
        """
        Create permissions from ``[{resource, action, description?}]``.

        Existing pairs are returned in ``existing`` instead of failing.
        """
        if not isinstance(items, list):
            raise ValidationError('Permissions must be an array')

        for item in items:
            if not isinstance(item, dict) or not item.get('resource') or not item.get('action'):
                raise ValidationError('Each permission must have resource and action')

        result = BulkCreateResult()
        for item in items:
            permission, created = Permission.objects.get_or_create_permission(
                item['resource'],
                item['action'],
                description=item.get('description', ''),
                name=item.get('name', ''),
            )
            (result.created if created else result.existing).append(permission)

        if result.created:
            AuditLog.log_action(
                action='permissions_batch_created',
                user=actor,
                target_type='Permission',
                metadata={'codes': [p.code for p in result.created]},
            )
        return result

    @transaction.atomic
    def create_selected_permissions(self, resources: List[str], actions: List[str],
                                    actor=None) -> BulkCreateResult:
        """
        Create every (resource, action) pair of the cartesian product that is
        not in the catalog yet.

        Each pair is written under its own savepoint; a pair that fails is
        logged and skipped without aborting the batch.
        """
        if not isinstance(resources, list) or not isinstance(actions, list):
            raise ValidationError('Resources and actions must be arrays')

        logger.info(
            "Creating selected permissions",
            extra={'resources': resources, 'actions': actions}
        )

        result = BulkCreateResult()
        seen = set()
        for resource in resources:
            for action in actions:
                if (resource, action) in seen:
                    continue
                seen.add((resource, action))

                try:
                    if not resource or not action:
                        raise ValueError('resource and action must be non-empty')
                    with transaction.atomic():
                        permission, created = Permission.objects.get_or_create_permission(resource, action)
                except (IntegrityError, DjangoValidationError, ValueError, TypeError) as e:
                    logger.warning(
                        f"Skipping permission {resource}:{action}: {e}",
                        extra={'resource': resource, 'action': action}
                    )
                    continue

                (result.created if created else result.existing).append(permission)

        if result.created:
            AuditLog.log_action(
                action='permissions_grid_created',
                user=actor,
                target_type='Permission',
                metadata={'codes': [p.code for p in result.created]},
            )

        logger.info(
            result.message,
            extra={'created_count': len(result.created), 'existing_count': len(result.existing)}
        )
        return result

    def get_permission_matrix(self) -> Dict:
        """
        Existence grid over MATRIX_RESOURCES x MATRIX_ACTIONS with coverage
        statistics. Coverage counts grid cells only.
        """
        existing_keys = set(Permission.objects.values_list('resource', 'action'))

        matrix = {
            resource: {action: (resource, action) in existing_keys for action in MATRIX_ACTIONS}
            for resource in MATRIX_RESOURCES
        }

        total_possible = len(MATRIX_RESOURCES) * len(MATRIX_ACTIONS)
        total_existing = sum(
            1 for cells in matrix.values() for exists in cells.values() if exists
        )

        return {
            'available_resources': list(MATRIX_RESOURCES),
            'available_actions': list(MATRIX_ACTIONS),
            'permission_matrix': matrix,
            'statistics': {
                'total_possible_permissions': total_possible,
                'total_existing_permissions': total_existing,
                'coverage_percentage': math.floor(total_existing * 100 / total_possible + 0.5),
            },
        }

    @transaction.atomic
    def delete_permissions(self, actor, permission_ids) -> int:
        """
        Delete several permissions at once. System administrators only.

        Returns the number of permissions removed.
        """
        if actor is None or actor.role != AccountType.SYSTEM_ADMIN:
            raise AuthorizationError('Only system administrators can delete permissions')

        if not isinstance(permission_ids, list) or not permission_ids:
            raise ValidationError('Permission IDs array is required')

        ids = _parse_ids(permission_ids)
        _, per_model = Permission.objects.filter(id__in=ids).hard_delete()
        deleted = per_model.get(Permission._meta.label, 0)

        AuditLog.log_action(
            action='permissions_deleted',
            user=actor,
            target_type='Permission',
            metadata={'permission_ids': [str(i) for i in ids], 'deleted': deleted},
        )
        logger.info(
            f"Deleted {deleted} permissions and removed them from roles",
            extra={'user_id': str(actor.id)}
        )
        return deleted


permission_catalog = PermissionCatalog()
