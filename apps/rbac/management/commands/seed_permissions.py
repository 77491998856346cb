"""
Management command to seed the permission matrix.

Creates every (resource, action) permission of the matrix grid, ensures the
reserved system_admin role exists and grants it every catalog permission.
This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction
from apps.rbac.catalog import MATRIX_ACTIONS, MATRIX_RESOURCES, permission_catalog
from apps.rbac.models import Permission, RolePermission
from apps.rbac.roles import role_registry


class Command(BaseCommand):
    help = 'Seed the permission matrix and the system_admin role (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--skip-system-admin',
            action='store_true',
            help='Only seed permissions; leave the system_admin role untouched',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        """Create missing permissions and grant them to system_admin."""

        self.stdout.write('Seeding permission matrix...\n')

        result = permission_catalog.create_selected_permissions(
            list(MATRIX_RESOURCES), list(MATRIX_ACTIONS)
        )
        for permission in result.created:
            self.stdout.write(self.style.SUCCESS(f'✓ Created: {permission.code}'))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {len(result.created)} created, '
                f'{len(result.existing)} unchanged'
            )
        )

        if options['skip_system_admin']:
            return

        role = role_registry.ensure_system_admin_role()
        granted = 0
        for permission in Permission.objects.all():
            _, created = RolePermission.objects.grant_permission(role, permission)
            if created:
                granted += 1

        self.stdout.write(
            self.style.SUCCESS(
                f'✓ Role {role.name}: {granted} permissions granted, '
                f'{role.permissions.count()} total'
            )
        )
        self.stdout.write(f'\nTotal permissions: {Permission.objects.count()}')
