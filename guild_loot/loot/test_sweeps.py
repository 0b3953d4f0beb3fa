from datetime import timedelta
from unittest import mock

import pytest
from django.core.management import call_command
from django.test import override_settings

from .auction_service import get_auction_manager
from .kill_service import get_kill_manager
from .models import Auction, BossKill, DroppedItem, Vote
from .scheduler import SweepScheduler, build_default_scheduler
from .sweep_service import due_item_ids, expire_items, settle_auctions
from .vote_service import get_vote_manager


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.mark.django_db
def test_expiration_sweep_end_to_end(make_kill, now):
    # Deadline one hour ago
    kill = make_kill(age_hours=49)
    fresh = make_kill(age_hours=1)
    item = kill.items.get()

    assert due_item_ids(now) == [item.pk]
    assert expire_items(now) == {'scanned': 1, 'expired': 1, 'failed': 0}

    item.refresh_from_db()
    kill.refresh_from_db()
    assert item.status == DroppedItem.STATUS_EXPIRED
    assert item.expired_at == now
    assert kill.status == BossKill.STATUS_EXPIRED
    assert fresh.items.get().status == DroppedItem.STATUS_PENDING

    # Idempotent
    assert expire_items(now) == {'scanned': 0, 'expired': 0, 'failed': 0}


@pytest.mark.django_db
def test_expiration_sweep_skips_claimed_items(make_kill, admin, now):
    kill = make_kill(age_hours=10)
    item = kill.items.get()
    get_kill_manager().resolve_item(item.pk, 'Alice', admin, now=now)

    assert expire_items(now + timedelta(days=3))['scanned'] == 0
    item.refresh_from_db()
    assert item.status == DroppedItem.STATUS_ASSIGNED


@pytest.mark.django_db
def test_expiration_sweep_counts_failures(make_kill, now):
    make_kill(age_hours=49)
    with mock.patch('guild_loot.loot.kill_service.KillManager.expire_item', side_effect=RuntimeError('boom')):
        summary = expire_items(now)
    assert summary == {'scanned': 1, 'expired': 0, 'failed': 1}


@pytest.mark.django_db
def test_settlement_sweep_only_takes_due_auctions(expired_item, admin, now):
    auction = get_auction_manager().create_auction(admin, expired_item.pk, 100, duration_hours=1, now=now)

    assert settle_auctions(now)['scanned'] == 0
    summary = settle_auctions(now + timedelta(hours=2))
    assert summary['scanned'] == 1
    assert summary['cancelled'] == 1
    auction.refresh_from_db()
    assert auction.status == Auction.STATUS_CANCELLED


@pytest.mark.django_db
def test_close_votes_command(admin, now):
    vote = get_vote_manager().create_vote(
        admin, 'Raid night', ['Friday', 'Saturday'], now + timedelta(minutes=5), now=now,
    )
    Vote.objects.filter(pk=vote.pk).update(end_time=now - timedelta(minutes=1))

    call_command('close_votes')

    vote.refresh_from_db()
    assert vote.status == Vote.STATUS_CLOSED


@pytest.mark.django_db
def test_expire_items_command_dry_run(make_kill, capsys):
    kill = make_kill(age_hours=49)

    call_command('expire_items', '--dry-run', '--verbose')

    assert 'Would expire 1 items' in capsys.readouterr().out
    assert kill.items.get().status == DroppedItem.STATUS_PENDING


def test_scheduler_runs_jobs_on_interval():
    clock = FakeClock()
    calls = []
    scheduler = SweepScheduler(clock=clock)
    scheduler.register('fast', lambda: calls.append('fast'), 10)
    scheduler.register('slow', lambda: calls.append('slow'), 60, run_immediately=False)

    assert scheduler.run_pending() == ['fast']
    assert scheduler.run_pending() == []
    assert scheduler.seconds_until_next() == 10

    clock.advance(10)
    assert scheduler.run_pending() == ['fast']
    clock.advance(50)
    assert scheduler.run_pending() == ['fast', 'slow']
    assert calls == ['fast', 'fast', 'fast', 'slow']


def test_scheduler_survives_failing_job():
    clock = FakeClock()

    def broken():
        raise RuntimeError('database went away')

    scheduler = SweepScheduler(clock=clock)
    job = scheduler.register('broken', broken, 5)

    assert scheduler.run_pending() == ['broken']
    assert job.failures == 1
    clock.advance(5)
    scheduler.run_pending()
    assert job.failures == 2
    assert job.runs == 2


def test_scheduler_rejects_bad_interval():
    with pytest.raises(ValueError):
        SweepScheduler().register('never', lambda: None, 0)


@override_settings(LOOT_SWEEP_INTERVALS={'close_votes': 30})
def test_default_scheduler_reads_intervals():
    scheduler = build_default_scheduler(clock=FakeClock())
    assert set(scheduler.jobs) == {'expire_items', 'settle_auctions', 'close_votes', 'sweep_disabled_users'}
    assert scheduler.jobs['close_votes'].interval == 30
    assert scheduler.jobs['settle_auctions'].interval == 60

    only = build_default_scheduler(only=['settle_auctions'], clock=FakeClock())
    assert list(only.jobs) == ['settle_auctions']
