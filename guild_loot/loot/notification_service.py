"""
Notification fan-out: rows for the UI, mirrored to a chat webhook when one
is configured.
"""

import logging
from typing import Iterable, List, Optional

from django.conf import settings
from django.db import transaction

from .models import Notification
from .utils.retry import WebhookError, post_webhook

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Writes Notification rows inside the caller's transaction; webhook
    delivery waits for the commit and never raises.
    """

    def __init__(self):
        self.webhook_url = getattr(settings, 'LOOT_WEBHOOK_URL', None)
        self.timeout = getattr(settings, 'LOOT_WEBHOOK_TIMEOUT', 10)

    def notify(self, user, message: str, auction=None, vote=None) -> Optional[Notification]:
        """
        Notify one user.

        Returns:
            Notification: The stored row, or None when ``user`` is None
        """
        if user is None:
            return None

        notification = Notification.objects.create(
            user=user,
            message=message,
            auction=auction,
            vote=vote,
        )
        self._mirror(f"@{user.display_name} {message}")
        return notification

    def notify_many(self, users: Iterable, message: str, auction=None, vote=None) -> List[Notification]:
        """Notify several users with the same message, skipping duplicates."""
        seen = set()
        recipients = []
        for user in users:
            if user is None or user.pk in seen:
                continue
            seen.add(user.pk)
            recipients.append(user)

        notifications = Notification.objects.bulk_create([
            Notification(user=user, message=message, auction=auction, vote=vote)
            for user in recipients
        ])
        if recipients:
            self._mirror(message)
        return notifications

    def _mirror(self, content: str) -> None:
        if not self.webhook_url:
            return
        transaction.on_commit(lambda: self.send_webhook_message(content))

    def send_webhook_message(self, content: str) -> bool:
        """
        Post a message to the configured webhook.

        Returns:
            bool: True if the webhook accepted the message
        """
        if not self.webhook_url:
            return False
        try:
            post_webhook(self.webhook_url, {'content': content}, timeout=self.timeout)
        except WebhookError as e:
            logger.error(f"Webhook delivery failed: {e.message}")
            return False
        return True

    @staticmethod
    def mark_read(user, notification_id) -> bool:
        updated = Notification.objects.filter(pk=notification_id, user=user).update(read=True)
        return bool(updated)


def get_notification_service():
    """Get a notification service instance."""
    return NotificationService()
