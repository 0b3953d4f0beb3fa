from datetime import timedelta
from decimal import Decimal

import pytest

from guild_loot.dkp.models import LedgerEntry, WalletManager

from .auction_service import get_auction_manager
from .exceptions import Conflict, Forbidden, InvalidItem, InvalidState, NotFound, ValidationFailed
from .kill_service import clean_attendees, get_kill_manager
from .models import Application, Boss, BossKill, DroppedItem, Notification

pytestmark = pytest.mark.django_db


def test_create_kill_sets_item_deadline_from_guild(make_kill, now):
    kill = make_kill(items=('Sword', 'Shield'))

    assert kill.status == BossKill.STATUS_PENDING
    assert kill.attendees == ['Alice', 'Bob']
    assert [item.name for item in kill.items.all()] == ['Sword', 'Shield']
    for item in kill.items.all():
        assert item.status == DroppedItem.STATUS_PENDING
        assert item.apply_deadline == now + timedelta(hours=48)


def test_create_kill_with_explicit_deadline(admin, boss, now):
    kill = get_kill_manager().create_kill(
        admin, boss, [{'name': 'Ring', 'item_type': 'skill'}], ['Alice'],
        kill_time=now, apply_deadline_hours=6,
    )
    item = kill.items.get()
    assert item.item_type == DroppedItem.TYPE_SKILL
    assert item.apply_deadline == now + timedelta(hours=6)


def test_create_kill_requires_manage_capability(make_user, boss):
    member = make_user('Alice')
    with pytest.raises(Forbidden):
        get_kill_manager().create_kill(member, boss, [{'name': 'Sword'}], ['Alice'])


def test_create_kill_validates_input(admin, boss):
    manager = get_kill_manager()
    with pytest.raises(ValidationFailed):
        manager.create_kill(admin, boss, [], ['Alice'])
    with pytest.raises(ValidationFailed):
        manager.create_kill(admin, boss, [{'name': ' '}], ['Alice'])
    with pytest.raises(ValidationFailed):
        manager.create_kill(admin, boss, [{'name': 'Sword', 'item_type': 'pet'}], ['Alice'])
    with pytest.raises(NotFound):
        manager.create_kill(admin, 9999, [{'name': 'Sword'}], ['Alice'])
    assert not BossKill.objects.exists()


def test_clean_attendees_drops_duplicates():
    assert clean_attendees([' Alice', 'Bob', 'Alice']) == ['Alice', 'Bob']
    with pytest.raises(ValidationFailed):
        clean_attendees('Alice')
    with pytest.raises(ValidationFailed):
        clean_attendees(['Alice', ''])


def test_resolve_item_assigns_and_rejects_siblings(make_kill, make_user, admin, now):
    alice = make_user('Alice')
    bob = make_user('Bob')
    kill = make_kill()
    item = kill.items.get()
    Application.objects.create(applicant=alice, kill=kill, item=item, item_name=item.name)
    bob_application = Application.objects.create(applicant=bob, kill=kill, item=item, item_name=item.name)

    resolution = get_kill_manager().resolve_item(item.pk, 'Alice', admin, now=now)

    item.refresh_from_db()
    kill.refresh_from_db()
    assert item.final_recipient == 'Alice'
    assert item.status == DroppedItem.STATUS_ASSIGNED
    assert kill.status == BossKill.STATUS_ASSIGNED
    assert resolution.application.status == Application.STATUS_ASSIGNED
    assert resolution.rejected_application_ids == [bob_application.pk]
    bob_application.refresh_from_db()
    assert bob_application.status == Application.STATUS_REJECTED
    assert Notification.objects.filter(user=alice).exists()
    assert Notification.objects.filter(user=bob).exists()


def test_resolve_item_twice_conflicts(make_kill, admin, moderator):
    item = make_kill().items.get()
    manager = get_kill_manager()
    manager.resolve_item(item.pk, 'Alice', admin)

    with pytest.raises(Conflict):
        manager.resolve_item(item.pk, 'Bob', moderator)

    item.refresh_from_db()
    assert item.final_recipient == 'Alice'


def test_expire_item_only_after_deadline(make_kill, make_user, now):
    alice = make_user('Alice')
    kill = make_kill(age_hours=47)
    item = kill.items.get()
    application = Application.objects.create(applicant=alice, kill=kill, item=item, item_name=item.name)
    manager = get_kill_manager()

    assert manager.expire_item(item.pk, now=now) is False
    assert manager.expire_item(item.pk, now=now + timedelta(hours=2)) is True
    # Already expired: repeated sweeps change nothing
    assert manager.expire_item(item.pk, now=now + timedelta(hours=3)) is False

    item.refresh_from_db()
    kill.refresh_from_db()
    application.refresh_from_db()
    assert item.status == DroppedItem.STATUS_EXPIRED
    assert kill.status == BossKill.STATUS_EXPIRED
    assert application.status == Application.STATUS_REJECTED


def test_expire_item_manually(make_kill, admin, now):
    kill = make_kill(items=('Sword', 'Shield'))
    sword, shield = kill.items.all()

    expired = get_kill_manager().expire_item_manually(admin, kill, sword.pk, now=now)
    assert expired.status == DroppedItem.STATUS_EXPIRED
    kill.refresh_from_db()
    # Shield is still pending
    assert kill.status == BossKill.STATUS_PENDING

    with pytest.raises(InvalidState):
        get_kill_manager().expire_item_manually(admin, kill, sword.pk, now=now)
    with pytest.raises(InvalidItem):
        get_kill_manager().expire_item_manually(admin, kill, 9999, now=now)


def test_kill_status_mixes_assigned_and_expired(make_kill, admin, now):
    kill = make_kill(items=('Sword', 'Shield'))
    sword, shield = kill.items.all()
    manager = get_kill_manager()
    manager.resolve_item(sword.pk, 'Alice', admin, now=now)
    manager.expire_item(shield.pk, now=now, force=True)

    kill.refresh_from_db()
    assert kill.status == BossKill.STATUS_EXPIRED


def test_update_kill_edits_attendees_and_assigns(make_kill, admin):
    kill = make_kill(items=('Sword', 'Shield'))
    sword, shield = kill.items.all()

    kill = get_kill_manager().update_kill(
        kill,
        admin,
        attendees=['Alice', 'Bob', 'Carol'],
        item_holder='Carol',
        items=[{'id': sword.pk, 'final_recipient': 'Carol'}, {'id': shield.pk, 'status': 'expired'}],
    )

    assert kill.attendees == ['Alice', 'Bob', 'Carol']
    assert kill.item_holder == 'Carol'
    sword.refresh_from_db()
    shield.refresh_from_db()
    assert sword.final_recipient == 'Carol'
    assert shield.status == DroppedItem.STATUS_EXPIRED


def test_update_kill_rejects_other_status_changes(make_kill, admin):
    kill = make_kill()
    item = kill.items.get()
    with pytest.raises(InvalidState):
        get_kill_manager().update_kill(kill, admin, items=[{'id': item.pk, 'status': 'sold'}])


def test_delete_kill_blocked_by_live_auction(expired_item, admin):
    get_auction_manager().create_auction(admin, expired_item.pk, 100)
    with pytest.raises(Conflict):
        get_kill_manager().delete_kill(expired_item.kill, admin)
    assert BossKill.objects.filter(pk=expired_item.kill_id).exists()


def test_delete_kill_and_boss(make_kill, admin, boss):
    kill = make_kill()
    manager = get_kill_manager()

    with pytest.raises(Conflict):
        manager.delete_boss(boss, admin)

    manager.delete_kill(kill, admin)
    assert not DroppedItem.objects.exists()
    manager.delete_boss(boss, admin)
    assert not Boss.objects.exists()


def test_distribute_dkp_once(make_kill, make_user, admin):
    alice = make_user('Alice')
    bob = make_user('Bob')
    kill = make_kill(attendees=('Alice', 'Bob', 'Ghost'))
    manager = get_kill_manager()

    assert manager.distribute_dkp(kill, admin) == 2
    assert WalletManager.get_dkp_balance(alice) == Decimal('10.00')
    assert WalletManager.get_dkp_balance(bob) == Decimal('10.00')
    assert LedgerEntry.objects.filter(entry_type=LedgerEntry.PARTICIPATION).count() == 2

    with pytest.raises(Conflict):
        manager.distribute_dkp(kill, admin)


def test_supplement_window(make_kill, now):
    manager = get_kill_manager()
    open_kill = make_kill(age_hours=10)
    closed_kill = make_kill(age_hours=50)

    assert manager.supplement_window(open_kill, now=now) == (True, 38.0)
    assert manager.supplement_window(closed_kill, now=now) == (False, 0)


def test_supplement_window_follows_kill_deadline_override(admin, boss, now):
    manager = get_kill_manager()
    kill = manager.create_kill(
        admin, boss, [{'name': 'Ring'}], ['Alice'],
        kill_time=now - timedelta(hours=50), apply_deadline_hours=72,
    )

    assert manager.supplement_window(kill, now=now) == (True, 22.0)
