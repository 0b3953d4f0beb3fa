import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from guild_loot.dkp.models import WalletManager
from guild_loot.loot.kill_service import get_kill_manager
from guild_loot.loot.models import Boss
from guild_loot.users.models import Guild, User


@pytest.fixture
def now():
    return timezone.now()


@pytest.fixture
def guild(db):
    return Guild.objects.create(
        name='Kromrif',
        apply_deadline_hours=48,
        public_fund_rate=Decimal('0.100'),
    )


@pytest.fixture
def make_user(db, guild):
    """Factory for members; ``diamonds`` seeds the wallet."""
    counter = itertools.count(1)

    def make_user(character_name=None, role=User.ROLE_USER, member_of=guild, diamonds=0, **extra):
        n = next(counter)
        user = User.objects.create_user(
            username=extra.pop('username', f'member{n}'),
            password=extra.pop('password', 'password'),
            character_name=character_name,
            role_group=role,
            guild=member_of,
            **extra
        )
        if diamonds:
            WalletManager.credit(user, diamonds, 'seed', 'Starting balance')
        return user

    return make_user


@pytest.fixture
def admin(make_user):
    return make_user('Warlord', role=User.ROLE_ADMIN, username='warlord')


@pytest.fixture
def moderator(make_user):
    return make_user('Keeper', role=User.ROLE_MODERATOR, username='keeper')


@pytest.fixture
def guild_account(make_user):
    return make_user('GuildBank', role=User.ROLE_GUILD, username='guildbank')


@pytest.fixture
def boss(db):
    return Boss.objects.create(name='Valakas', dkp_points=Decimal('10.00'))


@pytest.fixture
def make_kill(admin, boss, now):
    """Record a kill; ``age_hours`` moves the kill time into the past."""

    def make_kill(attendees=('Alice', 'Bob'), items=('Sword of Valakas',), age_hours=0,
                  item_holder='Holder', creator=None):
        return get_kill_manager().create_kill(
            creator or admin,
            boss,
            [{'name': name} for name in items],
            list(attendees),
            kill_time=now - timedelta(hours=age_hours),
            item_holder=item_holder,
        )

    return make_kill


@pytest.fixture
def expired_item(make_kill, now):
    """An item whose deadline passed a day ago, already expired."""
    kill = make_kill(attendees=('Alice', 'Bob', 'Carol'), age_hours=72)
    item = kill.items.get()
    get_kill_manager().expire_item(item.pk, now=now)
    item.refresh_from_db()
    return item


@pytest.fixture
def api_client():
    return APIClient()
