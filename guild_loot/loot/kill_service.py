"""
Boss kill and dropped item lifecycle.

Handles:
- Recording kills with per-item application deadlines
- Resolving an item to a recipient (the only way an item becomes assigned)
- Expiring unclaimed items once their deadline passes
- Admin edits, deletion guards and attendance DKP payouts
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import ProtectedError
from django.utils import timezone

from guild_loot.dkp.models import LedgerEntry, WalletManager

from .exceptions import Conflict, InvalidItem, InvalidState, NotFound, ValidationFailed
from .models import Application, Auction, Boss, BossKill, DroppedItem, KillScreenshot
from .notification_service import get_notification_service
from .permissions import MANAGE_KILLS, RESOLVE_APPLICATIONS, require_capability

User = get_user_model()
logger = logging.getLogger(__name__)


@dataclass
class ItemResolution:
    """Outcome of resolving an item to a recipient."""
    item: DroppedItem
    recipient: str
    application: Optional[Application] = None
    rejected_application_ids: List[int] = field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected_application_ids)


def clean_attendees(attendees) -> List[str]:
    """Validate an attendee list, dropping duplicates but keeping order."""
    if attendees is None:
        return []
    if not isinstance(attendees, (list, tuple)):
        raise ValidationFailed("Attendees must be a list of character names")

    cleaned = []
    for name in attendees:
        if not isinstance(name, str) or not name.strip():
            raise ValidationFailed("Attendee names must be non-empty strings")
        name = name.strip()
        if name not in cleaned:
            cleaned.append(name)
    return cleaned


class KillManager:
    """
    Service class for the kill and item state machine.
    """

    DEFAULT_APPLY_DEADLINE_HOURS = 48

    def __init__(self):
        self.default_deadline_hours = getattr(
            settings,
            'LOOT_DEFAULT_APPLY_DEADLINE_HOURS',
            self.DEFAULT_APPLY_DEADLINE_HOURS
        )
        self.notifications = get_notification_service()

    def deadline_hours_for(self, creator, requested_hours=None) -> int:
        if requested_hours is not None:
            try:
                hours = int(requested_hours)
            except (TypeError, ValueError):
                raise ValidationFailed("Apply deadline hours must be a whole number")
            if hours <= 0:
                raise ValidationFailed("Apply deadline hours must be positive")
            return hours
        if creator is not None and getattr(creator, 'guild_id', None):
            return creator.guild.apply_deadline_hours
        return self.default_deadline_hours

    def create_kill(self, creator, boss, items, attendees, kill_time=None, item_holder='',
                    apply_deadline_hours=None, screenshots=()) -> BossKill:
        """
        Record a kill and its dropped items.

        Args:
            creator: Admin recording the kill
            boss: Boss instance or primary key
            items: List of dicts with ``name`` and optional ``item_type``/``level``
            attendees: Character names present at the kill
            kill_time: When the kill happened (defaults to now)
            item_holder: Character holding the loot in game
            apply_deadline_hours: Overrides the guild deadline for this kill
            screenshots: Uploaded image files

        Returns:
            BossKill: The created kill with its items
        """
        require_capability(creator, MANAGE_KILLS)

        if not isinstance(boss, Boss):
            boss = Boss.objects.filter(pk=boss).first()
            if boss is None:
                raise NotFound("Boss not found")

        if not items:
            raise ValidationFailed("A kill needs at least one dropped item")

        attendees = clean_attendees(attendees)
        kill_time = kill_time or timezone.now()
        deadline = kill_time + timedelta(hours=self.deadline_hours_for(creator, apply_deadline_hours))

        valid_types = {choice[0] for choice in DroppedItem.TYPE_CHOICES}
        with transaction.atomic():
            kill = BossKill.objects.create(
                boss=boss,
                kill_time=kill_time,
                attendees=attendees,
                item_holder=item_holder or '',
                created_by=creator,
            )

            for entry in items:
                name = (entry.get('name') or '').strip() if isinstance(entry, dict) else ''
                if not name:
                    raise ValidationFailed("Every dropped item needs a name")
                item_type = entry.get('item_type') or entry.get('type') or DroppedItem.TYPE_EQUIPMENT
                if item_type not in valid_types:
                    raise ValidationFailed(f"Unknown item type: {item_type}")
                DroppedItem.objects.create(
                    kill=kill,
                    name=name,
                    item_type=item_type,
                    level=entry.get('level'),
                    apply_deadline=deadline,
                )

            for upload in screenshots:
                screenshot = KillScreenshot(kill=kill, image=upload)
                screenshot.full_clean(exclude=['kill'])
                screenshot.save()

        logger.info(
            f"Recorded kill {kill.pk} of {boss.name} with {len(items)} items, "
            f"{len(attendees)} attendees, deadline {deadline}"
        )
        return kill

    def resolve_item(self, item_id, recipient: str, resolved_by, application=None, now=None) -> ItemResolution:
        """
        Assign an item to ``recipient`` in one transaction.

        The chosen application becomes approved; without one, the recipient's
        pending application (if any) becomes assigned. Every other pending
        application for the item is rejected. First resolver wins: the item
        row is locked and an already assigned item raises Conflict.

        Raises:
            NotFound: If the item does not exist
            Conflict: If the item already has a recipient or is no longer pending
            InvalidState: If the application is not pending
        """
        require_capability(resolved_by, RESOLVE_APPLICATIONS)
        now = now or timezone.now()
        recipient = (recipient or '').strip()
        if not recipient:
            raise ValidationFailed("A recipient character name is required")

        with transaction.atomic():
            item = (
                DroppedItem.objects.select_for_update()
                .select_related('kill')
                .filter(pk=item_id)
                .first()
            )
            if item is None:
                raise NotFound("Item not found")
            if item.final_recipient:
                raise Conflict(f"Item already assigned to {item.final_recipient}")
            if item.status != DroppedItem.STATUS_PENDING:
                raise Conflict(f"Item is {item.status} and can no longer be assigned")

            if application is not None:
                application = Application.objects.select_for_update().get(pk=application.pk)
                if application.item_id != item.pk:
                    raise InvalidItem("Application is for a different item")
                if application.status != Application.STATUS_PENDING:
                    raise InvalidState(f"Application is already {application.status}")
                application.status = Application.STATUS_APPROVED
            else:
                application = (
                    Application.objects.select_for_update()
                    .filter(
                        item=item,
                        status=Application.STATUS_PENDING,
                        applicant__character_name=recipient,
                    )
                    .first()
                )
                if application is not None:
                    application.status = Application.STATUS_ASSIGNED

            if application is not None:
                application.resolved_by = resolved_by
                application.resolved_at = now
                application.save(update_fields=['status', 'resolved_by', 'resolved_at'])

            siblings = Application.objects.filter(item=item, status=Application.STATUS_PENDING)
            if application is not None:
                siblings = siblings.exclude(pk=application.pk)
            rejected = list(siblings.select_related('applicant'))
            siblings.update(
                status=Application.STATUS_REJECTED,
                resolved_by=resolved_by,
                resolved_at=now,
            )

            item.final_recipient = recipient
            item.status = DroppedItem.STATUS_ASSIGNED
            item.resolved_at = now
            item.save(update_fields=['final_recipient', 'status', 'resolved_at'])
            item.kill.refresh_status()

            winner = application.applicant if application else User.objects.get_by_character_name(recipient)
            self.notifications.notify(winner, f"You have been assigned {item.name}.")
            self.notifications.notify_many(
                [app.applicant for app in rejected],
                f"Your application for {item.name} was not selected.",
            )

        logger.info(
            f"Item {item.pk} ({item.name}) assigned to {recipient} by {resolved_by}; "
            f"rejected {len(rejected)} other applications"
        )
        return ItemResolution(
            item=item,
            recipient=recipient,
            application=application,
            rejected_application_ids=[app.pk for app in rejected],
        )

    def expire_item(self, item_id, now=None, force=False) -> bool:
        """
        Flip a pending, unclaimed item to expired.

        The conditional update is the claim: only the caller that flips the
        row rejects the item's pending applications, so repeated or
        overlapping sweeps have no further effect. ``force`` skips the
        deadline check for admin expiry.

        Returns:
            bool: True if this call expired the item
        """
        now = now or timezone.now()

        with transaction.atomic():
            claim = DroppedItem.objects.filter(
                pk=item_id,
                status=DroppedItem.STATUS_PENDING,
                final_recipient='',
            )
            if not force:
                claim = claim.filter(apply_deadline__lt=now)
            if not claim.update(status=DroppedItem.STATUS_EXPIRED, expired_at=now):
                return False

            item = DroppedItem.objects.select_related('kill').get(pk=item_id)
            pending = Application.objects.filter(item=item, status=Application.STATUS_PENDING)
            applicants = [app.applicant for app in pending.select_related('applicant')]
            pending.update(status=Application.STATUS_REJECTED, resolved_at=now)
            item.kill.refresh_status()

            self.notifications.notify_many(
                applicants,
                f"Applications for {item.name} closed without a recipient; the item is now up for auction.",
            )

        logger.info(f"Item {item_id} ({item.name}) expired unclaimed")
        return True

    def expire_item_manually(self, admin, kill, item_id, now=None) -> DroppedItem:
        require_capability(admin, MANAGE_KILLS)
        item = kill.items.filter(pk=item_id).first()
        if item is None:
            raise InvalidItem("Item is not part of this kill")
        if not self.expire_item(item.pk, now=now, force=True):
            raise InvalidState(f"Item is {item.status} and cannot be expired")
        item.refresh_from_db()
        return item

    def update_kill(self, kill, editor, attendees=None, item_holder=None, items=None, now=None) -> BossKill:
        """
        Admin edit of a kill.

        ``items`` is a list of dicts with ``id`` and either ``final_recipient``
        (assign through ``resolve_item``) or ``status`` (only ``expired`` is
        accepted, other statuses are reached through their own operations).
        """
        require_capability(editor, MANAGE_KILLS)

        with transaction.atomic():
            fields = []
            if attendees is not None:
                kill.attendees = clean_attendees(attendees)
                fields.append('attendees')
            if item_holder is not None:
                kill.item_holder = item_holder
                fields.append('item_holder')
            if fields:
                kill.save(update_fields=fields + ['updated_at'])

            for change in items or []:
                item = kill.items.filter(pk=change.get('id')).first()
                if item is None:
                    raise InvalidItem(f"Item {change.get('id')} is not part of this kill")

                recipient = change.get('final_recipient')
                new_status = change.get('status')
                if recipient:
                    if recipient == item.final_recipient:
                        continue
                    self.resolve_item(item.pk, recipient, editor, now=now)
                elif new_status and new_status != item.status:
                    if new_status != DroppedItem.STATUS_EXPIRED:
                        raise InvalidState(
                            f"Cannot move item from {item.status} to {new_status} by editing the kill"
                        )
                    if not self.expire_item(item.pk, now=now, force=True):
                        raise InvalidState(f"Item is {item.status} and cannot be expired")

        kill.refresh_from_db()
        logger.info(f"Kill {kill.pk} updated by {editor}")
        return kill

    def delete_kill(self, kill, admin) -> None:
        """Delete a kill unless one of its items is being or has been sold."""
        require_capability(admin, MANAGE_KILLS)

        with transaction.atomic():
            if kill.auctions.filter(status__in=Auction.LIVE_STATUSES).exists():
                raise Conflict("Kill has auctions and cannot be deleted")
            kill.auctions.filter(status=Auction.STATUS_CANCELLED).delete()
            kill_id = kill.pk
            kill.delete()

        logger.info(f"Kill {kill_id} deleted by {admin}")

    def delete_boss(self, boss, admin) -> None:
        require_capability(admin, MANAGE_KILLS)
        try:
            boss.delete()
        except ProtectedError:
            raise Conflict(f"{boss.name} has recorded kills and cannot be deleted")
        logger.info(f"Boss {boss.name} deleted by {admin}")

    def distribute_dkp(self, kill, admin) -> int:
        """
        Pay the boss's DKP to every attendee with an account, once per kill.

        Returns:
            int: Number of users credited
        """
        require_capability(admin, MANAGE_KILLS)

        with transaction.atomic():
            kill = BossKill.objects.select_for_update().select_related('boss').get(pk=kill.pk)
            if kill.dkp_distributed:
                raise Conflict("DKP has already been distributed for this kill")
            points = kill.boss.dkp_points
            if points <= 0:
                raise ValidationFailed(f"{kill.boss.name} has no DKP value configured")

            members = list(User.objects.for_characters(kill.attendees))
            for member in members:
                WalletManager.award_dkp(
                    member,
                    points,
                    LedgerEntry.PARTICIPATION,
                    f"Attended {kill.boss.name} kill",
                    f"kill:{kill.pk}",
                    admin,
                )

            kill.dkp_distributed = True
            kill.save(update_fields=['dkp_distributed', 'updated_at'])

        logger.info(f"Distributed {points} DKP to {len(members)} attendees of kill {kill.pk}")
        return len(members)

    def supplement_window(self, kill, now=None):
        """
        Whether attendees may still be added to ``kill`` and how many hours
        remain. The window closes with the latest item deadline, so a per-kill
        deadline override applies here too.
        """
        now = now or timezone.now()
        deadlines = [item.apply_deadline for item in kill.items.all()]
        if deadlines:
            closes_at = max(deadlines)
        else:
            closes_at = kill.kill_time + timedelta(hours=self.deadline_hours_for(kill.created_by))
        remaining = (closes_at - now).total_seconds() / 3600
        return remaining > 0, max(round(remaining, 1), 0)


def get_kill_manager():
    """Get a kill manager instance."""
    return KillManager()
