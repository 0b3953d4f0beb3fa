"""
Account housekeeping for guild members.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from .models import User

logger = logging.getLogger(__name__)


class AccountSweeper:
    """
    Disables accounts that left the guild or stopped signing in.
    Admins and guild accounts are never swept.
    """

    DEFAULT_INACTIVITY_DAYS = 90
    EXEMPT_ROLES = (User.ROLE_ADMIN, User.ROLE_GUILD)

    def __init__(self):
        self.inactivity_days = getattr(
            settings,
            'DISABLED_USER_INACTIVITY_DAYS',
            self.DEFAULT_INACTIVITY_DAYS
        )

    def stale_accounts(self, now=None):
        """Accounts that should be disabled as of ``now``."""
        now = now or timezone.now()
        cutoff = now - timedelta(days=self.inactivity_days)
        return (
            User.objects
            .exclude(status=User.STATUS_DISABLED)
            .exclude(role_group__in=self.EXEMPT_ROLES)
            .exclude(is_superuser=True)
            .filter(
                Q(guild__isnull=True)
                | Q(last_login__lt=cutoff)
                | Q(last_login__isnull=True, date_joined__lt=cutoff)
            )
        )

    def disable_stale_accounts(self, now=None) -> int:
        """
        Disable stale accounts.

        Returns:
            int: Number of accounts disabled by this run
        """
        candidates = self.stale_accounts(now)
        ids = list(candidates.values_list('pk', flat=True))
        if not ids:
            return 0

        # Conditional update so overlapping runs don't double count
        disabled = (
            User.objects
            .filter(pk__in=ids)
            .exclude(status=User.STATUS_DISABLED)
            .update(status=User.STATUS_DISABLED, is_active=False)
        )
        logger.info(f"Disabled {disabled} inactive or guildless accounts")
        return disabled


def get_account_sweeper():
    """Get an account sweeper instance."""
    return AccountSweeper()
