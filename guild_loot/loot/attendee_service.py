"""
Requests to be added to a kill's attendee list after the fact.
"""

import logging

from django.db import transaction
from django.utils import timezone

from .exceptions import Conflict, InvalidState, NotFound, Unauthenticated, ValidationFailed
from .models import AttendeeRequest, BossKill
from .notification_service import get_notification_service
from .permissions import MANAGE_KILLS, require_capability

logger = logging.getLogger(__name__)


class AttendeeRequestManager:

    def __init__(self):
        self.notifications = get_notification_service()

    def submit(self, user, kill_id, reason='', proof_image=None) -> AttendeeRequest:
        """
        Ask to be added to a kill that still has unresolved items.

        Raises:
            NotFound: If the kill does not exist
            InvalidState: If the kill's items are all resolved
            Conflict: If the user already attends or already has a pending request
        """
        if user is None or not user.is_authenticated:
            raise Unauthenticated("Sign in to request attendance")
        if not user.character_name:
            raise ValidationFailed("Set a character name before requesting attendance")

        kill = BossKill.objects.filter(pk=kill_id).first()
        if kill is None:
            raise NotFound("Kill not found")
        if kill.status != BossKill.STATUS_PENDING:
            raise InvalidState("Attendance can only be added to kills with pending items")
        if kill.has_attendee(user.character_name):
            raise Conflict("You are already listed as an attendee")
        if AttendeeRequest.objects.filter(user=user, kill=kill, status=AttendeeRequest.STATUS_PENDING).exists():
            raise Conflict("You already have a pending request for this kill")

        request = AttendeeRequest(
            user=user,
            kill=kill,
            character_name=user.character_name,
            reason=reason or '',
        )
        if proof_image:
            request.proof_image = proof_image
        request.full_clean(exclude=['user', 'kill'])
        request.save()

        logger.info(f"{user} requested to be added to kill {kill.pk}")
        return request

    def resolve(self, admin, request_id, approve: bool, comment='', now=None) -> AttendeeRequest:
        """
        Approve or reject a pending request. Rejections need a comment;
        approval appends the character to the kill's attendees.
        """
        require_capability(admin, MANAGE_KILLS)
        now = now or timezone.now()
        comment = (comment or '').strip()
        if not approve and not comment:
            raise ValidationFailed("A comment is required when rejecting a request")

        with transaction.atomic():
            request = (
                AttendeeRequest.objects.select_for_update()
                .select_related('user', 'kill')
                .filter(pk=request_id)
                .first()
            )
            if request is None:
                raise NotFound("Attendee request not found")
            if request.status != AttendeeRequest.STATUS_PENDING:
                raise InvalidState(f"Request is already {request.status}")

            request.status = AttendeeRequest.STATUS_APPROVED if approve else AttendeeRequest.STATUS_REJECTED
            request.comment = comment
            request.resolved_by = admin
            request.resolved_at = now
            request.save(update_fields=['status', 'comment', 'resolved_by', 'resolved_at'])

            if approve:
                kill = BossKill.objects.select_for_update().get(pk=request.kill_id)
                if not kill.has_attendee(request.character_name):
                    kill.attendees = list(kill.attendees or []) + [request.character_name]
                    kill.save(update_fields=['attendees', 'updated_at'])
                message = f"You were added to the attendees of kill {kill.pk}."
            else:
                message = f"Your attendance request for kill {request.kill_id} was rejected: {comment}"
            self.notifications.notify(request.user, message)

        logger.info(f"Attendee request {request.pk} {request.status} by {admin}")
        return request


def get_attendee_request_manager():
    return AttendeeRequestManager()
