"""
Management command to disable accounts that left the guild or went inactive.
"""

import logging

from django.core.management.base import BaseCommand, CommandError

from guild_loot.users.services import get_account_sweeper

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Disable guildless accounts and accounts inactive past the configured number of days'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show which accounts would be disabled without changing them',
        )
        parser.add_argument(
            '--verbose',
            action='store_true',
            help='Show detailed output',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        verbose = options['verbose']
        sweeper = get_account_sweeper()

        try:
            if dry_run:
                self.stdout.write(self.style.WARNING('DRY RUN MODE - No changes will be made'))
                candidates = sweeper.stale_accounts()
                for user in candidates:
                    if verbose:
                        self.stdout.write(f"  Would disable: {user.username} (last login: {user.last_login})")
                self.stdout.write(self.style.SUCCESS(f'Would disable {candidates.count()} accounts'))
                return

            disabled = sweeper.disable_stale_accounts()
        except Exception as e:
            raise CommandError(f'Error sweeping accounts: {str(e)}')

        self.stdout.write(self.style.SUCCESS(f'Disabled {disabled} accounts'))
