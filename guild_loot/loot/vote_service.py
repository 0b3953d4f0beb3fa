"""
Guild votes: creation, ballots, results and closing.
"""

import logging
from typing import Dict, List

from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone

from .exceptions import Conflict, InvalidState, NotFound, ValidationFailed
from .models import Ballot, Vote, VoteOption
from .permissions import MANAGE_VOTES, require_capability

logger = logging.getLogger(__name__)


class VoteManager:

    MIN_OPTIONS = 2

    def create_vote(self, creator, title, options, end_time, description='',
                    multiple_choice=False, now=None) -> Vote:
        require_capability(creator, MANAGE_VOTES)
        now = now or timezone.now()

        options = [str(text).strip() for text in options or [] if str(text).strip()]
        if not title or not str(title).strip():
            raise ValidationFailed("A vote needs a title")
        if len(options) < self.MIN_OPTIONS:
            raise ValidationFailed(f"A vote needs at least {self.MIN_OPTIONS} options")
        if end_time <= now:
            raise ValidationFailed("Vote end time must be in the future")

        with transaction.atomic():
            vote = Vote.objects.create(
                title=str(title).strip(),
                description=description or '',
                multiple_choice=multiple_choice,
                end_time=end_time,
                created_by=creator,
            )
            VoteOption.objects.bulk_create([VoteOption(vote=vote, text=text) for text in options])

        logger.info(f"Vote {vote.pk} created by {creator} with {len(options)} options")
        return vote

    def cast(self, user, vote_id, option_ids: List[int], now=None) -> List[Ballot]:
        """
        Cast a ballot. Single-choice votes take exactly one option; a user
        votes once per vote.
        """
        now = now or timezone.now()

        with transaction.atomic():
            vote = Vote.objects.select_for_update().filter(pk=vote_id).first()
            if vote is None:
                raise NotFound("Vote not found")
            if vote.status != Vote.STATUS_ACTIVE or vote.end_time <= now:
                raise InvalidState("Vote is closed")

            option_ids = list(dict.fromkeys(option_ids or []))
            if not option_ids:
                raise ValidationFailed("Choose at least one option")
            if not vote.multiple_choice and len(option_ids) > 1:
                raise ValidationFailed("This vote allows only one option")

            options = list(vote.options.filter(pk__in=option_ids))
            if len(options) != len(option_ids):
                raise ValidationFailed("Unknown option for this vote")

            if vote.ballots.filter(user=user).exists():
                raise Conflict("You have already voted")

            try:
                ballots = [Ballot.objects.create(vote=vote, option=option, user=user) for option in options]
            except IntegrityError:
                raise Conflict("You have already voted")

        logger.info(f"{user} voted on {vote.pk}")
        return ballots

    def results(self, vote) -> List[Dict]:
        counts = vote.options.annotate(count=Count('ballots')).order_by('pk')
        return [{'id': option.pk, 'text': option.text, 'count': option.count} for option in counts]

    def close_due_votes(self, now=None) -> int:
        """Close active votes past their end time."""
        now = now or timezone.now()
        closed = Vote.objects.filter(
            status=Vote.STATUS_ACTIVE,
            end_time__lte=now,
        ).update(status=Vote.STATUS_CLOSED, closed_at=now)
        if closed:
            logger.info(f"Closed {closed} votes")
        return closed


def get_vote_manager():
    return VoteManager()
