"""
Management command to settle auctions whose end time has passed.
Schedule every minute from cron, or let run_sweepers drive it.
"""

import logging

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from guild_loot.loot.models import Auction
from guild_loot.loot.sweep_service import due_auction_ids, settle_auctions

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Settle active auctions past their end time: charge the winner and pay out proceeds'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show which auctions are due without settling them',
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
            auction_ids = due_auction_ids(now)
            if verbose:
                for auction in Auction.objects.filter(pk__in=auction_ids).select_related('highest_bidder'):
                    leader = auction.highest_bidder or 'no leader'
                    self.stdout.write(f"  Due: {auction.item_name} at {auction.current_price} ({leader})")
            self.stdout.write(self.style.SUCCESS(f'{len(auction_ids)} auctions are due'))
            return

        try:
            summary = settle_auctions(now)
        except Exception as e:
            raise CommandError(f'Error settling auctions: {str(e)}')

        if verbose:
            self.stdout.write(
                f"  Scanned {summary['scanned']}, skipped {summary['skipped']}, failed {summary['failed']}"
            )
        self.stdout.write(
            self.style.SUCCESS(
                f"Completed {summary['completed']} auctions, cancelled {summary['cancelled']} without bids"
            )
        )
