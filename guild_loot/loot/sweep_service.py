"""
Periodic sweeps that move records along their time-driven transitions.

Each sweep scans for due records and hands them one at a time to the owning
service, whose conditional update claims the record. Failures are logged
per record and left for the next run.
"""

import logging
from typing import Dict

from django.utils import timezone

from guild_loot.users.services import get_account_sweeper

from .auction_service import get_auction_manager
from .kill_service import get_kill_manager
from .models import Auction, DroppedItem
from .vote_service import get_vote_manager

logger = logging.getLogger(__name__)


def due_item_ids(now=None):
    now = now or timezone.now()
    return list(
        DroppedItem.objects.filter(
            status=DroppedItem.STATUS_PENDING,
            final_recipient='',
            apply_deadline__lt=now,
        ).order_by('apply_deadline').values_list('pk', flat=True)
    )


def due_auction_ids(now=None):
    now = now or timezone.now()
    return list(
        Auction.objects.filter(
            status=Auction.STATUS_ACTIVE,
            end_time__lte=now,
        ).order_by('end_time').values_list('pk', flat=True)
    )


def expire_items(now=None) -> Dict:
    """
    Expire pending, unclaimed items whose deadline has passed.

    Returns:
        Dict: ``scanned``, ``expired`` and ``failed`` counts
    """
    now = now or timezone.now()
    kills = get_kill_manager()
    summary = {'scanned': 0, 'expired': 0, 'failed': 0}

    for item_id in due_item_ids(now):
        summary['scanned'] += 1
        try:
            if kills.expire_item(item_id, now=now):
                summary['expired'] += 1
        except Exception:
            summary['failed'] += 1
            logger.error(f"Failed to expire item {item_id}", exc_info=True)

    if summary['scanned']:
        logger.info(f"Item expiration sweep: {summary}")
    return summary


def settle_auctions(now=None) -> Dict:
    """
    Settle active auctions whose end time has passed.

    Returns:
        Dict: ``scanned``, ``completed``, ``cancelled``, ``skipped`` and ``failed`` counts
    """
    now = now or timezone.now()
    auctions = get_auction_manager()
    summary = {'scanned': 0, 'completed': 0, 'cancelled': 0, 'skipped': 0, 'failed': 0}

    for auction_id in due_auction_ids(now):
        summary['scanned'] += 1
        try:
            result = auctions.settle_auction(auction_id, now=now)
        except Exception:
            summary['failed'] += 1
            logger.error(f"Failed to settle auction {auction_id}", exc_info=True)
            continue

        if result is None:
            summary['skipped'] += 1
        elif result.sold:
            summary['completed'] += 1
        else:
            summary['cancelled'] += 1

    if summary['scanned']:
        logger.info(f"Auction settlement sweep: {summary}")
    return summary


def close_votes(now=None) -> Dict:
    return {'closed': get_vote_manager().close_due_votes(now=now)}


def sweep_disabled_users(now=None) -> Dict:
    return {'disabled': get_account_sweeper().disable_stale_accounts(now=now)}


SWEEPS = {
    'expire_items': expire_items,
    'settle_auctions': settle_auctions,
    'close_votes': close_votes,
    'sweep_disabled_users': sweep_disabled_users,
}
