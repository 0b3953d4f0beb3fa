"""
Auction Settlement Service.

Handles the auction lifecycle for items that expired unclaimed:
- Opening auctions with server-side price validation
- Bidding with diamonds held in escrow at bid time
- Settlement via claim-then-process so overlapping sweeps cannot pay twice
- Revenue split between attendees and the guild fund
- Cancellation and delivery confirmation
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from guild_loot.dkp.models import WalletManager

from .exceptions import (
    Conflict, Forbidden, InvalidBid, InvalidState, NotFound, Unauthenticated, ValidationFailed,
)
from .models import Auction, Bid, DroppedItem
from .notification_service import get_notification_service
from .permissions import MANAGE_AUCTIONS, has_capability, require_capability

User = get_user_model()
logger = logging.getLogger(__name__)


@dataclass
class RevenueSplit:
    """How an auction's proceeds were paid out."""
    price: int
    fund_cut: int = 0
    per_attendee: int = 0
    remainder: int = 0
    attendee_shares: Dict[int, int] = field(default_factory=dict)
    guild_account_id: Optional[int] = None
    # Returned to the winner when nobody can receive the proceeds
    refunded: int = 0

    @property
    def guild_amount(self) -> int:
        return self.fund_cut + self.remainder


@dataclass
class SettlementResult:
    auction: Auction
    winner: Optional[User] = None
    price: int = 0
    revenue: Optional[RevenueSplit] = None

    @property
    def sold(self) -> bool:
        return self.winner is not None


class AuctionManager:
    """
    Service class for auctions. Every mutation locks the auction row first;
    wallet rows are locked after it.
    """

    MIN_PRICE = 100
    MAX_PRICE = 9999
    DEFAULT_DURATION_HOURS = 24

    def __init__(self):
        self.min_price = getattr(settings, 'LOOT_AUCTION_MIN_PRICE', self.MIN_PRICE)
        self.max_price = getattr(settings, 'LOOT_AUCTION_MAX_PRICE', self.MAX_PRICE)
        self.default_fund_rate = Decimal(str(getattr(settings, 'LOOT_DEFAULT_PUBLIC_FUND_RATE', '0.1')))
        self.notifications = get_notification_service()

    # Creation

    def _validate_price(self, value, label) -> int:
        try:
            price = int(str(value).strip())
        except (TypeError, ValueError):
            raise ValidationFailed(f"{label} must be a whole number")
        if not self.min_price <= price <= self.max_price:
            raise ValidationFailed(f"{label} must be between {self.min_price} and {self.max_price}")
        return price

    def create_auction(self, creator, item_id, starting_price, duration_hours=None, end_time=None,
                       auction_type=Auction.TYPE_OPEN, buyout_price=None, restrictions=None,
                       now=None) -> Auction:
        """
        Open an auction for an expired, unclaimed item.

        Raises:
            ValidationFailed: If prices or the end time are out of bounds
            NotFound: If the item does not exist
            InvalidState: If the item is not expired and unclaimed
            Conflict: If the item already has an auction
        """
        require_capability(creator, MANAGE_AUCTIONS)
        now = now or timezone.now()
        restrictions = restrictions or {}

        if auction_type not in dict(Auction.TYPE_CHOICES):
            raise ValidationFailed(f"Unknown auction type: {auction_type}")

        starting_price = self._validate_price(starting_price, "Starting price")
        if buyout_price not in (None, ''):
            buyout_price = self._validate_price(buyout_price, "Buyout price")
            if buyout_price <= starting_price:
                raise ValidationFailed("Buyout price must be higher than the starting price")
            if auction_type == Auction.TYPE_LOTTERY:
                raise ValidationFailed("Lottery auctions have no buyout price")
        else:
            buyout_price = None

        if end_time is None:
            try:
                hours = float(duration_hours if duration_hours is not None else self.DEFAULT_DURATION_HOURS)
            except (TypeError, ValueError):
                raise ValidationFailed("Duration must be a number of hours")
            if hours <= 0:
                raise ValidationFailed("Duration must be positive")
            end_time = now + timedelta(hours=hours)
        if end_time <= now:
            raise ValidationFailed("Auction end time must be in the future")

        try:
            dkp_threshold = Decimal(str(restrictions.get('dkp_threshold') or 0))
        except ArithmeticError:
            raise ValidationFailed("DKP threshold must be a number")
        if dkp_threshold < 0:
            raise ValidationFailed("DKP threshold cannot be negative")

        with transaction.atomic():
            item = (
                DroppedItem.objects.select_for_update()
                .select_related('kill')
                .filter(pk=item_id)
                .first()
            )
            if item is None:
                raise NotFound("Item not found")
            if item.auctions.exclude(status=Auction.STATUS_CANCELLED).exists():
                raise Conflict("Item already has an auction")
            if item.status != DroppedItem.STATUS_EXPIRED or item.final_recipient:
                raise InvalidState(f"Only expired, unclaimed items can be auctioned (item is {item.status})")

            auction = Auction.objects.create(
                kill=item.kill,
                item=item,
                item_name=item.name,
                auction_type=auction_type,
                starting_price=starting_price,
                current_price=starting_price,
                buyout_price=buyout_price,
                end_time=end_time,
                created_by=creator,
                item_holder=item.kill.item_holder,
                same_world=bool(restrictions.get('same_world')),
                has_attended=bool(restrictions.get('has_attended')),
                same_guild=bool(restrictions.get('same_guild')),
                dkp_threshold=dkp_threshold,
            )

            item.status = DroppedItem.STATUS_AUCTIONED
            item.save(update_fields=['status'])
            item.kill.refresh_status()

            self.notifications.notify(
                creator,
                f"Auction for {item.name} is open until {end_time:%Y-%m-%d %H:%M}.",
                auction=auction,
            )

        logger.info(
            f"Opened {auction_type} auction {auction.pk} for item {item.pk} ({item.name}) "
            f"at {starting_price}, ends {end_time}"
        )
        return auction

    # Bidding

    def check_restrictions(self, auction, user) -> None:
        """Raise Forbidden when an auction restriction excludes ``user``."""
        creator = auction.created_by
        if auction.has_attended and not auction.kill.has_attendee(user.character_name):
            raise Forbidden("Only attendees of the kill can bid on this auction")
        if auction.same_guild and (not user.guild_id or user.guild_id != creator.guild_id):
            raise Forbidden("Only members of the auctioning guild can bid")
        if auction.same_world and (not user.world_name or user.world_name != creator.world_name):
            raise Forbidden("Only characters from the same world can bid")
        if auction.dkp_threshold and WalletManager.get_dkp_balance(user) < auction.dkp_threshold:
            raise Forbidden(f"At least {auction.dkp_threshold} DKP is required to bid")

    def place_bid(self, auction_id, user, amount, idempotency_key=None, now=None) -> Bid:
        """
        Place a bid, holding its amount in the bidder's wallet.

        Open auctions keep a single hold on the leading bid; the previous
        leader is released in the same transaction. Blind bids and lottery
        entries each hold their own amount. A repeated ``idempotency_key``
        returns the original bid without holding again.

        Raises:
            NotFound: If the auction does not exist
            InvalidState: If the auction is not accepting bids
            Forbidden: If a restriction excludes the bidder
            InvalidBid: If the amount does not beat the current price
            Conflict: For a second blind bid or lottery entry
            InsufficientFunds: If the bidder cannot cover the amount
        """
        if user is None or not user.is_authenticated:
            raise Unauthenticated("Sign in to bid")
        now = now or timezone.now()
        idempotency_key = (idempotency_key or '').strip() or None

        try:
            with transaction.atomic():
                bid = self._place_bid(auction_id, user, amount, idempotency_key, now)
        except IntegrityError:
            # Concurrent replay of the same key
            existing = Bid.objects.filter(
                auction_id=auction_id, bidder=user, idempotency_key=idempotency_key
            ).first()
            if idempotency_key and existing is not None:
                return existing
            raise Conflict("Bid could not be recorded")
        return bid

    def _place_bid(self, auction_id, user, amount, idempotency_key, now) -> Bid:
        auction = (
            Auction.objects.select_for_update()
            .select_related('kill', 'item', 'created_by')
            .filter(pk=auction_id)
            .first()
        )
        if auction is None:
            raise NotFound("Auction not found")

        if idempotency_key:
            replay = auction.bids.filter(bidder=user, idempotency_key=idempotency_key).first()
            if replay is not None:
                logger.info(f"Replayed bid {replay.pk} on auction {auction.pk} for key {idempotency_key}")
                return replay

        if not auction.is_open(now):
            raise InvalidState("Auction is not accepting bids")

        self.check_restrictions(auction, user)

        if auction.auction_type == Auction.TYPE_LOTTERY:
            amount = auction.starting_price
        else:
            try:
                amount = int(amount)
            except (TypeError, ValueError):
                raise InvalidBid("Bid amount must be a whole number")

        buyout = bool(auction.buyout_price) and amount >= auction.buyout_price
        if buyout:
            amount = auction.buyout_price

        if auction.auction_type == Auction.TYPE_OPEN:
            if amount <= auction.current_price:
                raise InvalidBid(f"Bid must be higher than the current price of {auction.current_price}")
            # Only the leading bid holds diamonds
            for previous in auction.bids.filter(hold_status=Bid.HOLD_HELD):
                WalletManager.release(previous.bidder, previous.held_amount, auction.reference, "Outbid")
                previous.hold_status = Bid.HOLD_RELEASED
                previous.save(update_fields=['hold_status'])
                if previous.bidder_id != user.pk:
                    self.notifications.notify(
                        previous.bidder,
                        f"You have been outbid on {auction.item_name}.",
                        auction=auction,
                    )
        else:
            if auction.bids.filter(bidder=user).exists():
                raise Conflict("You have already bid on this auction")
            if amount < auction.starting_price:
                raise InvalidBid(f"Bid must be at least the starting price of {auction.starting_price}")

        WalletManager.hold(user, amount, auction.reference, f"Bid on {auction.item_name}")
        bid = Bid.objects.create(
            auction=auction,
            bidder=user,
            amount=amount,
            held_amount=amount,
            hold_status=Bid.HOLD_HELD,
            idempotency_key=idempotency_key,
        )

        if auction.auction_type == Auction.TYPE_OPEN or buyout:
            auction.current_price = amount
            auction.highest_bidder = user
            auction.save(update_fields=['current_price', 'highest_bidder'])

        logger.info(f"{user} bid {amount} on auction {auction.pk}{' (buyout)' if buyout else ''}")

        if buyout:
            Auction.objects.filter(pk=auction.pk).update(status=Auction.STATUS_SETTLING)
            auction.status = Auction.STATUS_SETTLING
            self._finalize(auction, now, winning_bid=bid)

        return bid

    # Settlement

    def settle_auction(self, auction_id, now=None) -> Optional[SettlementResult]:
        """
        Settle an auction whose end time has passed.

        The conditional update from active to settling is the claim; a caller
        that loses the claim gets None and does nothing. Claim and payout
        commit together, so a failure leaves the auction active for the next
        sweep.
        """
        now = now or timezone.now()

        with transaction.atomic():
            claimed = Auction.objects.filter(
                pk=auction_id,
                status=Auction.STATUS_ACTIVE,
                end_time__lte=now,
            ).update(status=Auction.STATUS_SETTLING)
            if not claimed:
                return None

            auction = (
                Auction.objects.select_for_update()
                .select_related('kill', 'item', 'created_by')
                .get(pk=auction_id)
            )
            return self._finalize(auction, now)

    def pick_winning_bid(self, auction) -> Optional[Bid]:
        held = auction.bids.filter(hold_status=Bid.HOLD_HELD).select_related('bidder')
        if auction.auction_type == Auction.TYPE_LOTTERY:
            entries = list(held)
            return random.choice(entries) if entries else None
        return held.order_by('-amount', 'created_at', 'pk').first()

    def _finalize(self, auction, now, winning_bid=None) -> SettlementResult:
        if winning_bid is None:
            winning_bid = self.pick_winning_bid(auction)
        item = auction.item

        if winning_bid is None:
            auction.status = Auction.STATUS_CANCELLED
            auction.completed_at = now
            auction.save(update_fields=['status', 'completed_at'])
            DroppedItem.objects.filter(pk=item.pk, status=DroppedItem.STATUS_AUCTIONED).update(
                status=DroppedItem.STATUS_EXPIRED
            )
            auction.kill.refresh_status()
            self.notifications.notify(
                auction.created_by,
                f"Auction for {auction.item_name} ended without bids.",
                auction=auction,
            )
            logger.info(f"Auction {auction.pk} ended without bids and was cancelled")
            return SettlementResult(auction=auction)

        winner = winning_bid.bidder
        price = winning_bid.amount

        WalletManager.capture(winner, price, auction.reference, f"Won {auction.item_name}")
        if winning_bid.held_amount > price:
            WalletManager.release(winner, winning_bid.held_amount - price, auction.reference)
        winning_bid.hold_status = Bid.HOLD_CAPTURED
        winning_bid.save(update_fields=['hold_status'])

        losers = []
        for bid in auction.bids.filter(hold_status=Bid.HOLD_HELD).exclude(pk=winning_bid.pk).select_related('bidder'):
            WalletManager.release(bid.bidder, bid.held_amount, auction.reference, "Auction lost")
            bid.hold_status = Bid.HOLD_RELEASED
            bid.save(update_fields=['hold_status'])
            losers.append(bid.bidder)

        revenue = self.distribute_revenue(auction, price, winner=winner)

        DroppedItem.objects.filter(pk=item.pk).update(
            status=DroppedItem.STATUS_SOLD,
            final_recipient=winner.display_name,
            resolved_at=now,
        )
        auction.kill.refresh_status()

        auction.status = Auction.STATUS_COMPLETED
        auction.highest_bidder = winner
        auction.current_price = price
        auction.completed_at = now
        auction.save(update_fields=['status', 'highest_bidder', 'current_price', 'completed_at'])

        self.notifications.notify(
            winner,
            f"You won {auction.item_name} for {price} diamonds. "
            f"Contact {auction.item_holder or 'the item holder'} to receive it.",
            auction=auction,
        )
        holder = User.objects.get_by_character_name(auction.item_holder)
        if holder is not None and holder.pk != winner.pk:
            self.notifications.notify(
                holder,
                f"Please hand {auction.item_name} to {winner.display_name}.",
                auction=auction,
            )
        self.notifications.notify_many(
            [loser for loser in losers if loser.pk != winner.pk],
            f"Auction for {auction.item_name} has ended; your held diamonds were returned.",
            auction=auction,
        )

        logger.info(f"Auction {auction.pk} completed: {winner} won at {price}")
        return SettlementResult(auction=auction, winner=winner, price=price, revenue=revenue)

    def distribute_revenue(self, auction, price: int, winner=None) -> RevenueSplit:
        """
        Split ``price`` between the kill's attendees and the guild fund.

        The fund takes ``public_fund_rate`` of the price, rounded down; the
        rest is shared evenly among attendees with accounts, and the integer
        division remainder also goes to the fund.

        Without a fund account for the auctioning guild the whole price is
        shared by the attendees, leftover diamonds going one each to the
        first of them. With neither, the price is credited back to ``winner``.
        Every captured diamond ends up in exactly one wallet.
        """
        creator = auction.created_by
        guild_account = User.objects.guild_account(creator.guild if creator and creator.guild_id else None)

        if guild_account is None:
            fund_cut = 0
        else:
            rate = creator.public_fund_rate if creator is not None else self.default_fund_rate
            fund_cut = int((Decimal(price) * rate).to_integral_value(rounding=ROUND_FLOOR))
        pool = price - fund_cut

        members = list(User.objects.for_characters(auction.kill.attendees).order_by('pk'))
        split = RevenueSplit(price=price, fund_cut=fund_cut)
        if members:
            split.per_attendee = pool // len(members)
            split.remainder = pool - split.per_attendee * len(members)
        else:
            split.remainder = pool

        shares = {member.pk: split.per_attendee for member in members}
        if guild_account is None and split.remainder:
            logger.warning(f"No guild account for auction {auction.pk}; fund share stays with attendees")
            if members:
                for member in members[:split.remainder]:
                    shares[member.pk] += 1
            else:
                split.refunded = split.remainder
            split.remainder = 0

        for member in members:
            if shares[member.pk] > 0:
                WalletManager.credit(
                    member,
                    shares[member.pk],
                    auction.reference,
                    f"Share of {auction.item_name} sale",
                )
                split.attendee_shares[member.pk] = shares[member.pk]

        if split.refunded:
            if winner is None:
                raise InvalidState(f"Auction {auction.pk} has nobody to receive {split.refunded} diamonds")
            WalletManager.credit(
                winner,
                split.refunded,
                auction.reference,
                f"Refund for {auction.item_name}: no attendee or guild account to pay",
            )
            logger.warning(f"Refunded {split.refunded} diamonds to {winner} for auction {auction.pk}")

        if guild_account is not None and split.guild_amount > 0:
            WalletManager.credit(
                guild_account,
                split.guild_amount,
                auction.reference,
                f"Guild fund from {auction.item_name} sale",
            )
            split.guild_account_id = guild_account.pk

        return split

    # Admin and holder actions

    def cancel_auction(self, admin, auction_id, now=None) -> Auction:
        """Cancel an unfinished auction and release every hold."""
        require_capability(admin, MANAGE_AUCTIONS)
        now = now or timezone.now()

        with transaction.atomic():
            auction = Auction.objects.select_for_update().select_related('kill').filter(pk=auction_id).first()
            if auction is None:
                raise NotFound("Auction not found")
            if auction.status not in (Auction.STATUS_ACTIVE, Auction.STATUS_SETTLING):
                raise InvalidState(f"Auction is {auction.status} and cannot be cancelled")

            for bid in auction.bids.filter(hold_status=Bid.HOLD_HELD).select_related('bidder'):
                WalletManager.release(bid.bidder, bid.held_amount, auction.reference, "Auction cancelled")
                bid.hold_status = Bid.HOLD_RELEASED
                bid.save(update_fields=['hold_status'])
            bidders = [bid.bidder for bid in auction.bids.select_related('bidder')]

            auction.status = Auction.STATUS_CANCELLED
            auction.completed_at = now
            auction.save(update_fields=['status', 'completed_at'])
            DroppedItem.objects.filter(pk=auction.item_id, status=DroppedItem.STATUS_AUCTIONED).update(
                status=DroppedItem.STATUS_EXPIRED
            )
            auction.kill.refresh_status()

            self.notifications.notify_many(
                bidders,
                f"Auction for {auction.item_name} was cancelled; held diamonds were returned.",
                auction=auction,
            )

        logger.info(f"Auction {auction.pk} cancelled by {admin}")
        return auction

    def confirm_delivery(self, user, auction_id, now=None) -> Auction:
        """The item holder (or an auction manager) confirms the hand-over."""
        now = now or timezone.now()

        with transaction.atomic():
            auction = Auction.objects.select_for_update().filter(pk=auction_id).first()
            if auction is None:
                raise NotFound("Auction not found")
            is_holder = bool(auction.item_holder) and user.character_name == auction.item_holder
            if not is_holder and not has_capability(user, MANAGE_AUCTIONS):
                raise Forbidden("Only the item holder can confirm delivery")
            if auction.status != Auction.STATUS_COMPLETED:
                raise InvalidState(f"Auction is {auction.status}; only completed auctions can be delivered")

            auction.status = Auction.STATUS_SETTLED
            auction.settled_at = now
            auction.save(update_fields=['status', 'settled_at'])
            self.notifications.notify(
                auction.highest_bidder,
                f"Delivery of {auction.item_name} has been confirmed.",
                auction=auction,
            )

        logger.info(f"Delivery of auction {auction.pk} confirmed by {user}")
        return auction

    # Views

    def pending_count(self) -> int:
        """Auctions won but not yet handed over."""
        return Auction.objects.filter(status=Auction.STATUS_COMPLETED).count()

    def auctionable_items(self):
        """Expired, unclaimed items without a live auction."""
        return (
            DroppedItem.objects.filter(status=DroppedItem.STATUS_EXPIRED, final_recipient='')
            .exclude(auctions__status__in=Auction.LIVE_STATUSES)
            .select_related('kill', 'kill__boss')
            .order_by('-kill__kill_time', 'pk')
        )


def get_auction_manager():
    """Get an auction manager instance."""
    return AuctionManager()
