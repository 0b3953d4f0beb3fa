from datetime import timedelta

import pytest
from django.core.management import CommandError, call_command
from django.test import override_settings

from .menu import build_menu
from .models import Guild, MenuItem, User
from .services import get_account_sweeper

pytestmark = pytest.mark.django_db


@override_settings(DISABLED_USER_INACTIVITY_DAYS=30)
def test_sweeper_disables_guildless_and_inactive_accounts(make_user, admin, guild_account, now):
    active = make_user('Alice', last_login=now - timedelta(days=1))
    idle = make_user('Bob', last_login=now - timedelta(days=45))
    guildless = make_user('Carol', member_of=None, last_login=now)
    admin.last_login = now - timedelta(days=400)
    admin.save()

    sweeper = get_account_sweeper()
    assert set(sweeper.stale_accounts(now)) == {idle, guildless}
    assert sweeper.disable_stale_accounts(now) == 2
    # Already disabled accounts are not counted again
    assert sweeper.disable_stale_accounts(now) == 0

    idle.refresh_from_db()
    active.refresh_from_db()
    assert idle.status == User.STATUS_DISABLED
    assert not idle.is_active
    assert active.status == User.STATUS_ACTIVE
    guild_account.refresh_from_db()
    assert guild_account.is_active


def test_sweep_command_dry_run(make_user, capsys):
    user = make_user('Carol', member_of=None)

    call_command('sweep_disabled_users', '--dry-run')

    assert 'Would disable 1 accounts' in capsys.readouterr().out
    user.refresh_from_db()
    assert user.status == User.STATUS_ACTIVE


def test_character_lookup(make_user):
    alice = make_user('Alice')
    make_user()

    assert User.objects.get_by_character_name('Alice') == alice
    assert User.objects.get_by_character_name('Nobody') is None
    assert User.objects.get_by_character_name('') is None
    assert list(User.objects.for_characters(['Alice', '', 'Ghost'])) == [alice]


def test_blank_character_names_do_not_collide(make_user):
    first = make_user('')
    second = make_user('')
    assert first.character_name is None
    assert second.character_name is None
    assert str(first) == first.username


def test_guild_account_is_scoped_to_its_guild(make_user, guild):
    other = make_user('OtherBank', role=User.ROLE_GUILD, member_of=None)
    own = make_user('OwnBank', role=User.ROLE_GUILD)
    rivals = Guild.objects.create(name='Rivals')

    assert User.objects.guild_account(guild) == own
    assert User.objects.guild_account() == other
    assert User.objects.guild_account(rivals) is None


def test_menu_is_filtered_by_role(make_user, admin):
    member = make_user('Alice')
    loot = MenuItem.objects.create(title='Loot', path='/loot', order=1)
    MenuItem.objects.create(title='Auctions', path='/auctions', parent=loot, order=2)
    manage = MenuItem.objects.create(title='Manage', path='/admin', order=0, roles=[User.ROLE_ADMIN])
    MenuItem.objects.create(title='Wallets', path='/admin/wallets', parent=manage, order=1)

    assert [node['title'] for node in build_menu(member)] == ['Loot']
    assert [child['title'] for child in build_menu(member)[0]['children']] == ['Auctions']

    admin_menu = build_menu(admin)
    assert [node['title'] for node in admin_menu] == ['Manage', 'Loot']
    assert admin_menu[0]['children'][0]['path'] == '/admin/wallets'


def test_menu_endpoint(api_client, make_user):
    MenuItem.objects.create(title='Loot', path='/loot')
    api_client.force_authenticate(user=make_user('Alice'))

    response = api_client.get('/api/menu')

    assert response.status_code == 200
    assert response.data['menu'][0]['title'] == 'Loot'


def test_create_guild_fund_account(capsys):
    call_command(
        'create_default_admin', '--username', 'guildbank', '--password', 'long-enough',
        '--role', User.ROLE_GUILD, '--character', 'GuildBank', '--allow-production',
    )

    account = User.objects.get(username='guildbank')
    assert account.role_group == User.ROLE_GUILD
    assert not account.is_superuser
    assert User.objects.guild_account() == account
    assert 'Created guild account: guildbank' in capsys.readouterr().out


def test_create_default_admin_refuses_without_flag_when_not_debugging():
    with pytest.raises(CommandError):
        call_command('create_default_admin', '--username', 'root', '--password', 'long-enough')


def test_create_fund_account_for_a_guild(guild):
    call_command(
        'create_default_admin', '--username', 'kromrifbank', '--password', 'long-enough',
        '--role', User.ROLE_GUILD, '--guild', 'Kromrif', '--allow-production',
    )

    assert User.objects.guild_account(guild).username == 'kromrifbank'
    with pytest.raises(CommandError):
        call_command(
            'create_default_admin', '--username', 'nobank', '--password', 'long-enough',
            '--role', User.ROLE_GUILD, '--guild', 'Nowhere', '--allow-production',
        )
