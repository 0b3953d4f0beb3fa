"""
Management command to close votes whose end time has passed.
"""

from django.core.management.base import BaseCommand, CommandError

from guild_loot.loot.sweep_service import close_votes


class Command(BaseCommand):
    help = 'Close active votes past their end time'

    def handle(self, *args, **options):
        try:
            summary = close_votes()
        except Exception as e:
            raise CommandError(f'Error closing votes: {str(e)}')

        self.stdout.write(self.style.SUCCESS(f"Closed {summary['closed']} votes"))
