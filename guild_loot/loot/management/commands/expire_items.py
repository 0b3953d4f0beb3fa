"""
Management command to expire dropped items whose application deadline passed.
Schedule hourly from cron, or let run_sweepers drive it.
"""

import logging

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from guild_loot.loot.models import DroppedItem
from guild_loot.loot.sweep_service import due_item_ids, expire_items

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Expire pending dropped items that passed their application deadline without a recipient'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be expired without making changes',
        )
        parser.add_argument(
            '--verbose',
            action='store_true',
            help='Show detailed output',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        verbose = options['verbose']
        now = timezone.now()

        if dry_run:
            self.stdout.write(self.style.WARNING('DRY RUN MODE - No changes will be made'))
            item_ids = due_item_ids(now)
            if verbose:
                for item in DroppedItem.objects.filter(pk__in=item_ids).select_related('kill__boss'):
                    deadline_str = item.apply_deadline.strftime('%Y-%m-%d %H:%M:%S')
                    self.stdout.write(f"  Would expire: {item.name} from {item.kill.boss.name} (deadline: {deadline_str})")
            self.stdout.write(self.style.SUCCESS(f'Would expire {len(item_ids)} items'))
            return

        try:
            summary = expire_items(now)
        except Exception as e:
            raise CommandError(f'Error expiring items: {str(e)}')

        if verbose:
            self.stdout.write(f"  Scanned {summary['scanned']}, failed {summary['failed']}")
        self.stdout.write(self.style.SUCCESS(f"Expired {summary['expired']} items"))
