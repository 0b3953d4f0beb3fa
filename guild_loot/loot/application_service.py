"""
Item application submission and review.
"""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import Conflict, Forbidden, InvalidItem, InvalidState, NotFound, Unauthenticated
from .kill_service import ItemResolution, get_kill_manager
from .models import Application, BossKill, DroppedItem
from .notification_service import get_notification_service
from .permissions import RESOLVE_APPLICATIONS, require_capability

logger = logging.getLogger(__name__)


class ApplicationManager:
    """
    Submits applications and resolves them. Approval is delegated to
    ``KillManager.resolve_item`` so the application, the item and the
    rejected siblings change together. When several members apply for the
    same item the first admin to approve wins; there is no seniority rule.
    """

    def __init__(self):
        self.kills = get_kill_manager()
        self.notifications = get_notification_service()

    def submit(self, user, kill_id, item_id, now=None) -> Application:
        """
        Apply for a dropped item.

        Raises:
            Unauthenticated: Without a signed-in user
            NotFound: If the kill does not exist
            InvalidItem: If the item is not a dropped item of the kill
            Conflict: If the item is closed or the user already applied
            Forbidden: If the user's character did not attend the kill
        """
        if user is None or not user.is_authenticated:
            raise Unauthenticated("Sign in to apply for items")
        now = now or timezone.now()

        kill = BossKill.objects.filter(pk=kill_id).first()
        if kill is None:
            raise NotFound("Kill not found")

        try:
            item = kill.items.filter(pk=int(item_id)).first()
        except (TypeError, ValueError):
            item = None
        if item is None:
            raise InvalidItem("Item is not a dropped item of this kill")

        if item.final_recipient or item.status == DroppedItem.STATUS_ASSIGNED:
            raise Conflict("Item has already been assigned")
        if not item.is_open_for_applications(now):
            raise Conflict("Applications for this item are closed")

        if not kill.has_attendee(user.character_name):
            raise Forbidden("Only attendees of the kill can apply for its items")

        existing = Application.objects.filter(
            applicant=user,
            item=item,
            status__in=Application.ACTIVE_STATUSES,
        )
        if existing.exists():
            raise Conflict("You have already applied for this item")

        try:
            with transaction.atomic():
                application = Application.objects.create(
                    applicant=user,
                    kill=kill,
                    item=item,
                    item_name=item.name,
                )
        except IntegrityError:
            # A concurrent submission won the unique constraint
            raise Conflict("You have already applied for this item")

        logger.info(f"{user} applied for item {item.pk} ({item.name}) of kill {kill.pk}")
        return application

    def _get(self, application_id) -> Application:
        application = (
            Application.objects.select_related('applicant', 'item', 'kill')
            .filter(pk=application_id)
            .first()
        )
        if application is None:
            raise NotFound("Application not found")
        return application

    def approve(self, admin, application_id, now=None) -> ItemResolution:
        """
        Approve an application and assign its item to the applicant.

        Raises:
            NotFound: If the application does not exist
            Conflict: If the item already has a recipient
            InvalidState: If the application is no longer pending
        """
        require_capability(admin, RESOLVE_APPLICATIONS)
        application = self._get(application_id)

        resolution = self.kills.resolve_item(
            application.item_id,
            application.applicant.display_name,
            admin,
            application=application,
            now=now,
        )
        logger.info(f"Application {application.pk} approved by {admin}")
        return resolution

    def reject(self, admin, application_id, now=None) -> Application:
        """Reject a pending application. The item is not touched."""
        require_capability(admin, RESOLVE_APPLICATIONS)
        now = now or timezone.now()
        application = self._get(application_id)

        with transaction.atomic():
            updated = Application.objects.filter(
                pk=application.pk,
                status=Application.STATUS_PENDING,
            ).update(
                status=Application.STATUS_REJECTED,
                resolved_by=admin,
                resolved_at=now,
            )
            if not updated:
                raise InvalidState(f"Application is already {application.status}")
            self.notifications.notify(
                application.applicant,
                f"Your application for {application.item_name} was rejected.",
            )

        application.refresh_from_db()
        logger.info(f"Application {application.pk} rejected by {admin}")
        return application

    def pending_count(self) -> int:
        return Application.objects.filter(status=Application.STATUS_PENDING).count()


def get_application_manager():
    """Get an application manager instance."""
    return ApplicationManager()
