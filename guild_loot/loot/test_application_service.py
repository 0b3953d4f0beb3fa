from datetime import timedelta

import pytest
from django.contrib.auth.models import AnonymousUser

from .application_service import get_application_manager
from .exceptions import Conflict, Forbidden, InvalidItem, InvalidState, NotFound, Unauthenticated
from .kill_service import get_kill_manager
from .models import Application, BossKill, DroppedItem

pytestmark = pytest.mark.django_db


@pytest.fixture
def members(make_user):
    return make_user('Alice'), make_user('Bob'), make_user('Mallory')


def test_submit_application(make_kill, members, now):
    alice = members[0]
    kill = make_kill()
    item = kill.items.get()

    application = get_application_manager().submit(alice, kill.pk, item.pk, now=now)

    assert application.status == Application.STATUS_PENDING
    assert application.item_name == item.name
    assert application.kill_id == kill.pk


def test_submit_checks(make_kill, members, now):
    alice, _, mallory = members
    kill = make_kill()
    item = kill.items.get()
    manager = get_application_manager()

    with pytest.raises(Unauthenticated):
        manager.submit(AnonymousUser(), kill.pk, item.pk, now=now)
    with pytest.raises(NotFound):
        manager.submit(alice, 9999, item.pk, now=now)
    with pytest.raises(InvalidItem):
        manager.submit(alice, kill.pk, 'not-an-id', now=now)
    with pytest.raises(InvalidItem):
        manager.submit(alice, kill.pk, item.pk + 100, now=now)
    with pytest.raises(Forbidden):
        manager.submit(mallory, kill.pk, item.pk, now=now)


def test_item_from_another_kill_is_invalid(make_kill, members, now):
    alice = members[0]
    kill = make_kill()
    other_item = make_kill(items=('Helm',)).items.get()

    with pytest.raises(InvalidItem):
        get_application_manager().submit(alice, kill.pk, other_item.pk, now=now)


def test_duplicate_application_conflicts(make_kill, members, now):
    alice = members[0]
    kill = make_kill()
    item = kill.items.get()
    manager = get_application_manager()
    manager.submit(alice, kill.pk, item.pk, now=now)

    with pytest.raises(Conflict):
        manager.submit(alice, kill.pk, item.pk, now=now)
    assert Application.objects.filter(applicant=alice, item=item).count() == 1


def test_submit_after_deadline_conflicts(make_kill, members, now):
    alice = members[0]
    kill = make_kill(age_hours=49)
    item = kill.items.get()

    with pytest.raises(Conflict):
        get_application_manager().submit(alice, kill.pk, item.pk, now=now)


def test_submit_for_assigned_item_conflicts(make_kill, members, admin, now):
    alice = members[0]
    kill = make_kill()
    item = kill.items.get()
    get_kill_manager().resolve_item(item.pk, 'Bob', admin, now=now)

    with pytest.raises(Conflict):
        get_application_manager().submit(alice, kill.pk, item.pk, now=now)


def test_apply_approve_assigns_item_and_rejects_siblings(make_kill, members, admin, now):
    alice, bob, _ = members
    kill = make_kill()
    item = kill.items.get()
    manager = get_application_manager()
    alice_application = manager.submit(alice, kill.pk, item.pk, now=now)
    bob_application = manager.submit(bob, kill.pk, item.pk, now=now)

    resolution = manager.approve(admin, alice_application.pk, now=now)

    assert resolution.recipient == 'Alice'
    assert resolution.rejected_count == 1
    alice_application.refresh_from_db()
    bob_application.refresh_from_db()
    item.refresh_from_db()
    kill.refresh_from_db()
    assert alice_application.status == Application.STATUS_APPROVED
    assert alice_application.resolved_by == admin
    assert bob_application.status == Application.STATUS_REJECTED
    assert item.final_recipient == 'Alice'
    assert item.status == DroppedItem.STATUS_ASSIGNED
    assert kill.status == BossKill.STATUS_ASSIGNED
    assert manager.pending_count() == 0


def test_second_approval_conflicts(make_kill, members, admin, moderator, now):
    alice, bob, _ = members
    kill = make_kill()
    item = kill.items.get()
    manager = get_application_manager()
    alice_application = manager.submit(alice, kill.pk, item.pk, now=now)
    bob_application = manager.submit(bob, kill.pk, item.pk, now=now)

    manager.approve(admin, alice_application.pk, now=now)
    with pytest.raises(Conflict):
        manager.approve(moderator, bob_application.pk, now=now)

    assert Application.objects.filter(item=item, status__in=Application.WINNING_STATUSES).count() == 1


def test_reject_leaves_item_open(make_kill, members, admin, now):
    alice = members[0]
    kill = make_kill()
    item = kill.items.get()
    manager = get_application_manager()
    application = manager.submit(alice, kill.pk, item.pk, now=now)

    rejected = manager.reject(admin, application.pk, now=now)

    assert rejected.status == Application.STATUS_REJECTED
    item.refresh_from_db()
    assert item.status == DroppedItem.STATUS_PENDING
    with pytest.raises(InvalidState):
        manager.reject(admin, application.pk, now=now)
    # A rejected applicant may apply again
    assert manager.submit(alice, kill.pk, item.pk, now=now + timedelta(minutes=1))


def test_members_cannot_resolve(make_kill, members, now):
    alice, bob, _ = members
    kill = make_kill()
    item = kill.items.get()
    application = get_application_manager().submit(alice, kill.pk, item.pk, now=now)

    with pytest.raises(Forbidden):
        get_application_manager().approve(bob, application.pk, now=now)
    with pytest.raises(Forbidden):
        get_application_manager().reject(bob, application.pk, now=now)
