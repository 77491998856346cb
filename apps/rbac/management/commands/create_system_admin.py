"""
Management command to bootstrap a system administrator.

Creates the account with the reserved system_admin role and sends the
password setup link. Outside production the link is also printed.
"""
from django.core.management.base import BaseCommand, CommandError
from apps.core.exceptions import ServiceError
from apps.rbac.provisioning import admin_provisioning, dev_info_for


class Command(BaseCommand):
    help = 'Create a system administrator and issue a password setup link'

    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='Administrator email address',
        )
        parser.add_argument(
            '--first-name',
            type=str,
            required=True,
            help='First name',
        )
        parser.add_argument(
            '--last-name',
            type=str,
            required=True,
            help='Last name',
        )

    def handle(self, *args, **options):
        try:
            result = admin_provisioning.setup_sys_admin(
                email=options['email'],
                first_name=options['first_name'],
                last_name=options['last_name'],
            )
        except ServiceError as e:
            raise CommandError(f'{e.message}: {e.details}' if e.details else e.message)

        self.stdout.write(
            self.style.SUCCESS(f'✓ System administrator created: {result.user.email}')
        )
        self.stdout.write(f'  User ID: {result.user.id}')
        self.stdout.write(f'  Role: {result.role.name}')

        dev_info = dev_info_for(result.token)
        if dev_info:
            self.stdout.write(self.style.WARNING('\nPassword setup link (development only):'))
            self.stdout.write(f"  {dev_info['setup_url']}")
            self.stdout.write(f"  Expires: {dev_info['expires']}")
        else:
            self.stdout.write('\nA password setup link has been emailed to the administrator.')
