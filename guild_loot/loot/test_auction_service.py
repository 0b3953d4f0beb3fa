from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.db.models import Sum

from guild_loot.dkp.models import Wallet, WalletManager
from guild_loot.users.models import Guild, User

from .auction_service import get_auction_manager
from .exceptions import (
    Conflict, Forbidden, InsufficientFunds, InvalidBid, InvalidState, ValidationFailed,
)
from .models import Auction, Bid, BossKill, DroppedItem, Notification
from .sweep_service import settle_auctions

pytestmark = pytest.mark.django_db


@pytest.fixture
def attendees(make_user):
    return [make_user(name) for name in ('Alice', 'Bob', 'Carol')]


@pytest.fixture
def bidders(make_user):
    return make_user('Dave', diamonds=1000), make_user('Erin', diamonds=1000)


@pytest.fixture
def auction(expired_item, admin, now):
    return get_auction_manager().create_auction(admin, expired_item.pk, 100, duration_hours=24, now=now)


def wallet(user):
    return WalletManager.get_wallet(user)


def test_create_auction_marks_item_auctioned(auction, expired_item):
    expired_item.refresh_from_db()
    assert expired_item.status == DroppedItem.STATUS_AUCTIONED
    assert auction.status == Auction.STATUS_ACTIVE
    assert auction.current_price == 100
    assert auction.item_holder == 'Holder'
    assert Notification.objects.filter(user=auction.created_by, auction=auction).exists()


@pytest.mark.parametrize('price', ['99', '10000', 'abc', '12.5'])
def test_create_auction_rejects_bad_prices(expired_item, admin, price):
    with pytest.raises(ValidationFailed):
        get_auction_manager().create_auction(admin, expired_item.pk, price)


def test_create_auction_validation(expired_item, admin, now):
    manager = get_auction_manager()
    with pytest.raises(ValidationFailed):
        manager.create_auction(admin, expired_item.pk, 200, buyout_price=150)
    with pytest.raises(ValidationFailed):
        manager.create_auction(admin, expired_item.pk, 200, auction_type='lottery', buyout_price=500)
    with pytest.raises(ValidationFailed):
        manager.create_auction(admin, expired_item.pk, 200, end_time=now - timedelta(minutes=1), now=now)
    with pytest.raises(ValidationFailed):
        manager.create_auction(admin, expired_item.pk, 200, auction_type='dutch')


def test_create_auction_requires_expired_item(make_kill, admin, moderator, expired_item):
    manager = get_auction_manager()
    pending_item = make_kill().items.get()
    with pytest.raises(InvalidState):
        manager.create_auction(admin, pending_item.pk, 100)
    with pytest.raises(Forbidden):
        manager.create_auction(moderator, expired_item.pk, 100)

    manager.create_auction(admin, expired_item.pk, 100)
    with pytest.raises(Conflict):
        manager.create_auction(admin, expired_item.pk, 100)


def test_open_auction_end_to_end(auction, attendees, bidders, guild_account, now):
    dave, erin = bidders
    alice, bob, carol = attendees
    manager = get_auction_manager()

    manager.place_bid(auction.pk, dave, 150, now=now)
    with pytest.raises(InvalidBid):
        manager.place_bid(auction.pk, erin, 120, now=now)
    with pytest.raises(InvalidBid):
        manager.place_bid(auction.pk, erin, 150, now=now)
    manager.place_bid(auction.pk, erin, 200, now=now)

    auction.refresh_from_db()
    assert auction.current_price == 200
    assert auction.highest_bidder == erin
    # Only the leading bid holds diamonds
    assert wallet(dave).held_diamonds == 0
    assert wallet(erin).held_diamonds == 200
    assert Notification.objects.filter(user=dave, message__contains='outbid').exists()

    summary = settle_auctions(now=auction.end_time + timedelta(seconds=1))
    assert summary['completed'] == 1

    auction.refresh_from_db()
    assert auction.status == Auction.STATUS_COMPLETED
    assert auction.highest_bidder == erin
    assert wallet(erin).diamonds == 800
    assert wallet(erin).held_diamonds == 0
    assert wallet(dave).diamonds == 1000
    assert wallet(dave).held_diamonds == 0

    # 10% guild fund, the rest shared by the three attendees
    for member in attendees:
        assert wallet(member).diamonds == 60
    assert wallet(guild_account).diamonds == 20

    item = DroppedItem.objects.get(pk=auction.item_id)
    assert item.status == DroppedItem.STATUS_SOLD
    assert item.final_recipient == 'Erin'
    assert BossKill.objects.get(pk=auction.kill_id).status == BossKill.STATUS_ASSIGNED


def test_bid_beyond_available_balance_is_rejected(auction, make_user, now):
    poor = make_user('Pauper', diamonds=120)
    with pytest.raises(InsufficientFunds):
        get_auction_manager().place_bid(auction.pk, poor, 150, now=now)
    assert not Bid.objects.exists()
    assert wallet(poor).held_diamonds == 0


def test_idempotent_bid_is_held_once(auction, bidders, now):
    dave = bidders[0]
    manager = get_auction_manager()

    first = manager.place_bid(auction.pk, dave, 150, idempotency_key='abc', now=now)
    replay = manager.place_bid(auction.pk, dave, 150, idempotency_key='abc', now=now)

    assert replay.pk == first.pk
    assert Bid.objects.count() == 1
    assert wallet(dave).held_diamonds == 150


def test_bid_after_end_time_is_rejected(auction, bidders):
    with pytest.raises(InvalidState):
        get_auction_manager().place_bid(
            auction.pk, bidders[0], 150, now=auction.end_time + timedelta(seconds=1)
        )


def test_settle_is_claimed_once(auction, bidders, guild_account, now):
    manager = get_auction_manager()
    manager.place_bid(auction.pk, bidders[0], 150, now=now)
    later = auction.end_time + timedelta(seconds=1)

    assert manager.settle_auction(auction.pk, now=now) is None
    first = manager.settle_auction(auction.pk, now=later)
    second = manager.settle_auction(auction.pk, now=later)

    assert first.sold
    assert second is None
    assert wallet(bidders[0]).diamonds == 850


def test_auction_without_bids_is_cancelled(auction, expired_item):
    result = get_auction_manager().settle_auction(auction.pk, now=auction.end_time)

    assert not result.sold
    auction.refresh_from_db()
    expired_item.refresh_from_db()
    assert auction.status == Auction.STATUS_CANCELLED
    assert expired_item.status == DroppedItem.STATUS_EXPIRED
    assert expired_item in get_auction_manager().auctionable_items()


def test_buyout_settles_immediately(expired_item, admin, bidders, guild_account, now):
    manager = get_auction_manager()
    auction = manager.create_auction(admin, expired_item.pk, 100, buyout_price=500, now=now)

    bid = manager.place_bid(auction.pk, bidders[0], 800, now=now)

    assert bid.amount == 500
    auction.refresh_from_db()
    assert auction.status == Auction.STATUS_COMPLETED
    assert wallet(bidders[0]).diamonds == 500


def test_blind_auction_takes_highest_sealed_bid(expired_item, admin, bidders, now):
    dave, erin = bidders
    manager = get_auction_manager()
    auction = manager.create_auction(admin, expired_item.pk, 100, auction_type='blind', now=now)

    manager.place_bid(auction.pk, dave, 300, now=now)
    manager.place_bid(auction.pk, erin, 250, now=now)
    with pytest.raises(Conflict):
        manager.place_bid(auction.pk, erin, 400, now=now)

    # Sealed bids each hold their own amount
    assert wallet(dave).held_diamonds == 300
    assert wallet(erin).held_diamonds == 250

    result = manager.settle_auction(auction.pk, now=auction.end_time)
    assert result.winner == dave
    assert result.price == 300
    assert wallet(erin).held_diamonds == 0
    assert wallet(erin).diamonds == 1000


def test_lottery_entries_pay_starting_price(expired_item, admin, bidders, guild_account, now):
    dave, erin = bidders
    manager = get_auction_manager()
    auction = manager.create_auction(admin, expired_item.pk, 100, auction_type='lottery', now=now)

    manager.place_bid(auction.pk, dave, None, now=now)
    manager.place_bid(auction.pk, erin, 9000, now=now)

    with mock.patch('guild_loot.loot.auction_service.random.choice', side_effect=lambda entries: entries[-1]):
        result = manager.settle_auction(auction.pk, now=auction.end_time)

    assert result.price == 100
    assert result.winner in (dave, erin)
    assert wallet(result.winner).diamonds == 900


def test_restrictions(expired_item, admin, make_user, now):
    manager = get_auction_manager()
    auction = manager.create_auction(
        admin, expired_item.pk, 100, now=now,
        restrictions={'has_attended': True, 'dkp_threshold': '5'},
    )
    outsider = make_user('Stranger', diamonds=500)
    attendee = make_user('Alice', diamonds=500)

    with pytest.raises(Forbidden):
        manager.place_bid(auction.pk, outsider, 150, now=now)
    with pytest.raises(Forbidden):
        manager.place_bid(auction.pk, attendee, 150, now=now)

    WalletManager.award_dkp(attendee, Decimal('5'))
    assert manager.place_bid(auction.pk, attendee, 150, now=now)


def test_cancel_releases_holds(auction, admin, bidders, now):
    manager = get_auction_manager()
    manager.place_bid(auction.pk, bidders[0], 150, now=now)

    manager.cancel_auction(admin, auction.pk, now=now)

    auction.refresh_from_db()
    assert auction.status == Auction.STATUS_CANCELLED
    assert wallet(bidders[0]).held_diamonds == 0
    assert DroppedItem.objects.get(pk=auction.item_id).status == DroppedItem.STATUS_EXPIRED
    with pytest.raises(InvalidState):
        manager.cancel_auction(admin, auction.pk, now=now)


def test_confirm_delivery_by_holder(auction, make_user, bidders, now):
    holder = make_user('Holder')
    stranger = make_user('Stranger')
    manager = get_auction_manager()
    manager.place_bid(auction.pk, bidders[0], 150, now=now)

    with pytest.raises(InvalidState):
        manager.confirm_delivery(holder, auction.pk, now=now)

    manager.settle_auction(auction.pk, now=auction.end_time)
    assert manager.pending_count() == 1
    with pytest.raises(Forbidden):
        manager.confirm_delivery(stranger, auction.pk, now=now)

    settled = manager.confirm_delivery(holder, auction.pk, now=now)
    assert settled.status == Auction.STATUS_SETTLED
    assert manager.pending_count() == 0


def test_revenue_remainder_goes_to_guild(auction, attendees, guild_account):
    split = get_auction_manager().distribute_revenue(auction, 155)

    # fund 15, pool 140 over three attendees: 46 each, remainder 2
    assert split.fund_cut == 15
    assert split.per_attendee == 46
    assert split.remainder == 2
    assert split.guild_amount == 17
    assert split.guild_account_id == guild_account.pk
    assert wallet(guild_account).diamonds == 17


def total_diamonds():
    return Wallet.objects.aggregate(total=Sum('diamonds'))['total']


def test_fund_never_goes_to_another_guild(auction, attendees, bidders, make_user, now):
    rivals = Guild.objects.create(name='Rivals')
    rival_bank = make_user('RivalBank', role=User.ROLE_GUILD, member_of=rivals)
    manager = get_auction_manager()
    manager.place_bid(auction.pk, bidders[0], 200, now=now)

    result = manager.settle_auction(auction.pk, now=auction.end_time)

    assert result.revenue.guild_account_id is None
    assert wallet(rival_bank).diamonds == 0


def test_settlement_without_guild_account_conserves_diamonds(auction, attendees, bidders, now):
    dave = bidders[0]
    manager = get_auction_manager()
    manager.place_bid(auction.pk, dave, 200, now=now)
    before = total_diamonds()

    result = manager.settle_auction(auction.pk, now=auction.end_time)

    assert total_diamonds() == before
    assert wallet(dave).diamonds == 800
    # 200 over three attendees: 66 each, the two leftover diamonds to the first two
    assert [wallet(member).diamonds for member in attendees] == [67, 67, 66]
    assert result.revenue.fund_cut == 0
    assert result.revenue.guild_amount == 0


def test_price_is_refunded_when_nobody_can_be_paid(auction, bidders, now):
    dave = bidders[0]
    manager = get_auction_manager()
    manager.place_bid(auction.pk, dave, 150, now=now)
    before = total_diamonds()

    result = manager.settle_auction(auction.pk, now=auction.end_time)

    assert result.sold
    assert result.revenue.refunded == 150
    assert wallet(dave).diamonds == 1000
    assert total_diamonds() == before
