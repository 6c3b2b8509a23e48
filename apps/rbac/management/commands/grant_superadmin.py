"""
Management command to grant the global SuperAdmin role.

Creates the principal first when ``--create-user`` is given. Safe to
re-run: an existing grant is left as is.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.rbac.models import User
from apps.rbac.services import RoleGrantService


class Command(BaseCommand):
    help = 'Grant the global SuperAdmin role to a user'

    def add_arguments(self, parser):
        parser.add_argument('--email', type=str, required=True, help='User email address')
        parser.add_argument(
            '--create-user',
            action='store_true',
            help='Create user if they do not exist (requires --password)',
        )
        parser.add_argument('--password', type=str, help='Password for a new user')
        parser.add_argument('--name', type=str, default='', help='Display name for a new user')
        parser.add_argument(
            '--revoke',
            action='store_true',
            help='Revoke the global SuperAdmin role instead of granting it',
        )

    def handle(self, *args, **options):
        email = options['email']

        user = User.objects.by_email(email)
        if user is None:
            if not options['create_user']:
                raise CommandError(f'User {email} does not exist. Use --create-user to create it.')
            if not options.get('password'):
                raise CommandError('--password is required when using --create-user')
            user = User.objects.create_user(email, options['password'], name=options['name'])
            self.stdout.write(f'Created user {user.email}')

        if options['revoke']:
            result = RoleGrantService.revoke_global_superadmin(user.id)
            if not result.ok:
                raise CommandError(result.error.message)
            self.stdout.write(self.style.SUCCESS(f'Revoked SuperAdmin from {user.email}'))
            return

        result = RoleGrantService.grant_global_superadmin(user.id)
        if not result.ok:
            raise CommandError(result.error.message)
        self.stdout.write(self.style.SUCCESS(f'{user.email} is a global SuperAdmin'))
