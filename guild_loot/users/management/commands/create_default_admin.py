"""Management command to create the admin account or the guild fund account."""

import os

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import IntegrityError

from guild_loot.users.models import Guild

User = get_user_model()


class Command(BaseCommand):
    """Create a default admin user, or the account that receives the guild fund."""

    help = 'Create a default admin user or guild fund account from arguments or environment variables'

    def add_arguments(self, parser):
        parser.add_argument(
            '--username',
            type=str,
            help='Account username (default: from DJANGO_ADMIN_USERNAME env var)'
        )
        parser.add_argument(
            '--password',
            type=str,
            help='Account password (default: from DJANGO_ADMIN_PASSWORD env var)'
        )
        parser.add_argument(
            '--email',
            type=str,
            default='',
            help='Account email (default: from DJANGO_ADMIN_EMAIL env var)'
        )
        parser.add_argument(
            '--role',
            choices=[User.ROLE_ADMIN, User.ROLE_GUILD],
            default=User.ROLE_ADMIN,
            help='Create an admin (default) or the guild fund account'
        )
        parser.add_argument(
            '--character',
            type=str,
            help='Character name for the account'
        )
        parser.add_argument(
            '--guild',
            type=str,
            help='Name of the guild the account belongs to'
        )
        parser.add_argument(
            '--force',
            action='store_true',
            help='Update the account if it already exists'
        )
        parser.add_argument(
            '--allow-production',
            action='store_true',
            help='Allow running with DEBUG off'
        )

    def handle(self, *args, **options):
        if not settings.DEBUG and not options.get('allow_production'):
            raise CommandError(
                "This command is intended for development. "
                "Use --allow-production to override."
            )

        username = options.get('username') or os.getenv('DJANGO_ADMIN_USERNAME')
        password = options.get('password') or os.getenv('DJANGO_ADMIN_PASSWORD')
        email = options.get('email') or os.getenv('DJANGO_ADMIN_EMAIL', '')
        role = options['role']
        character = options.get('character')

        guild = None
        if options.get('guild'):
            guild = Guild.objects.filter(name=options['guild']).first()
            if guild is None:
                raise CommandError(f'Guild "{options["guild"]}" does not exist.')

        if not username:
            raise CommandError(
                "Username required. Set DJANGO_ADMIN_USERNAME or use --username."
            )
        if not password:
            raise CommandError(
                "Password required. Set DJANGO_ADMIN_PASSWORD or use --password."
            )
        if len(password) < 8:
            raise CommandError("Password must be at least 8 characters long.")

        user = User.objects.filter(username=username).first()
        if user is not None and not options['force']:
            self.stdout.write(
                self.style.WARNING(f'Account "{username}" already exists. Use --force to update.')
            )
            return

        try:
            if user is None:
                if role == User.ROLE_ADMIN:
                    user = User.objects.create_superuser(username=username, email=email, password=password)
                else:
                    user = User.objects.create_user(username=username, email=email, password=password)
                verb = 'Created'
            else:
                user.set_password(password)
                user.email = email
                verb = 'Updated'

            user.role_group = role
            user.status = User.STATUS_ACTIVE
            user.is_active = True
            if role == User.ROLE_ADMIN:
                user.is_staff = True
                user.is_superuser = True
            if character:
                user.character_name = character
            if guild is not None:
                user.guild = guild
            user.save()
        except IntegrityError as e:
            raise CommandError(f'Error saving account: {e}')

        self.stdout.write(self.style.SUCCESS(f'{verb} {role} account: {username}'))
