import json
from datetime import timedelta

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from django.utils import timezone

from guild_loot.dkp.models import WalletManager

from .auction_service import get_auction_manager
from .models import Application, Auction, BossKill, DroppedItem, Notification, Vote

pytestmark = pytest.mark.django_db

PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


@pytest.fixture
def alice(make_user):
    return make_user('Alice', username='alice', diamonds=1000)


@pytest.fixture
def as_admin(api_client, admin):
    api_client.force_authenticate(user=admin)
    return api_client


@pytest.fixture
def as_alice(api_client, alice):
    api_client.force_authenticate(user=alice)
    return api_client


def test_requests_without_token_get_401(api_client):
    response = api_client.get('/api/auctions')

    assert response.status_code == 401
    assert response.data['code'] == 'NOT_AUTHENTICATED'
    assert response['WWW-Authenticate'] == 'x-auth-token'


def test_login_with_character_name_and_use_token(api_client, alice):
    response = api_client.post('/api/auth/login', {'username': 'Alice', 'password': 'password'}, format='json')

    assert response.status_code == 200
    token = response.data['token']
    assert response.data['user']['character_name'] == 'Alice'

    me = api_client.get('/api/users/me/', HTTP_X_AUTH_TOKEN=token)
    assert me.status_code == 200
    assert me.data['username'] == 'alice'


def test_login_rejects_bad_password(api_client, alice):
    response = api_client.post('/api/auth/login', {'username': 'alice', 'password': 'nope'}, format='json')
    assert response.status_code == 401


def test_trailing_slash_is_optional(as_alice):
    assert as_alice.get('/api/auctions').status_code == 200
    assert as_alice.get('/api/auctions/').status_code == 200


def test_members_cannot_record_kills(as_alice, boss):
    response = as_alice.post(
        '/api/boss-kills',
        {'boss': boss.pk, 'attendees': ['Alice'], 'items': [{'name': 'Sword'}]},
        format='json',
    )
    assert response.status_code == 403


def test_admin_records_kill_with_json(as_admin, boss):
    response = as_admin.post(
        '/api/boss-kills',
        {
            'boss': boss.pk,
            'attendees': ['Alice', 'Bob'],
            'items': [{'name': 'Sword'}, {'name': 'Tome', 'item_type': 'skill'}],
            'item_holder': 'Bob',
        },
        format='json',
    )

    assert response.status_code == 201
    assert response.data['boss_name'] == 'Valakas'
    assert [item['name'] for item in response.data['items']] == ['Sword', 'Tome']
    assert response.data['status'] == BossKill.STATUS_PENDING
    assert response.data['can_supplement'] is True


def test_admin_records_kill_with_screenshot(as_admin, boss):
    response = as_admin.post(
        '/api/boss-kills',
        {
            'boss': boss.pk,
            'attendees': json.dumps(['Alice']),
            'items': json.dumps([{'name': 'Sword'}]),
            'screenshots': SimpleUploadedFile('kill.png', PNG, content_type='image/png'),
        },
        format='multipart',
    )

    assert response.status_code == 201
    assert len(response.data['screenshots']) == 1
    assert response.data['attendees'] == ['Alice']


def test_kill_validation_errors_are_400(as_admin, boss):
    response = as_admin.post(
        '/api/boss-kills',
        {'boss': boss.pk, 'attendees': ['Alice'], 'items': [{'name': 'Sword', 'item_type': 'pet'}]},
        format='json',
    )
    assert response.status_code == 400
    assert response.data['code'] == 'VALIDATION_FAILED'


def test_apply_and_approve(as_alice, make_kill, admin, api_client):
    kill = make_kill()
    item = kill.items.get()

    response = as_alice.post('/api/applications', {'kill_id': kill.pk, 'item_id': str(item.pk)}, format='json')
    assert response.status_code == 201
    application_id = response.data['id']

    duplicate = as_alice.post('/api/applications', {'kill_id': kill.pk, 'item_id': item.pk}, format='json')
    assert duplicate.status_code == 409
    assert duplicate.data['code'] == 'CONFLICT'

    mine = as_alice.get('/api/applications/mine')
    assert [entry['id'] for entry in mine.data] == [application_id]

    assert as_alice.put(f'/api/applications/{application_id}/approve').status_code == 403

    api_client.force_authenticate(user=admin)
    assert api_client.get('/api/applications/pending-count').data == {'count': 1}
    approved = api_client.put(f'/api/applications/{application_id}/approve')
    assert approved.status_code == 200
    assert approved.data['application']['status'] == Application.STATUS_APPROVED
    assert approved.data['item']['final_recipient'] == 'Alice'

    again = api_client.post(f'/api/applications/{application_id}/approve')
    assert again.status_code == 409


def test_non_attendee_cannot_apply(api_client, make_user, make_kill):
    api_client.force_authenticate(user=make_user('Mallory'))
    kill = make_kill()

    response = api_client.post(
        '/api/applications', {'kill_id': kill.pk, 'item_id': kill.items.get().pk}, format='json'
    )

    assert response.status_code == 403
    assert response.data['code'] == 'FORBIDDEN'


def test_invalid_item_is_400(as_alice, make_kill):
    kill = make_kill()
    response = as_alice.post('/api/applications', {'kill_id': kill.pk, 'item_id': 'nope'}, format='json')
    assert response.status_code == 400
    assert response.data['code'] == 'INVALID_ITEM'


def test_expire_item_endpoint(as_admin, make_kill):
    kill = make_kill()
    item = kill.items.get()

    response = as_admin.post(f'/api/boss-kills/{kill.pk}/items/{item.pk}/expire')

    assert response.status_code == 200
    assert response.data['status'] == DroppedItem.STATUS_EXPIRED
    auctionable = as_admin.get('/api/items/auctionable')
    assert [entry['id'] for entry in auctionable.data] == [item.pk]


def test_distribute_dkp_endpoint(as_admin, make_kill, make_user):
    make_user('Alice')
    kill = make_kill()

    response = as_admin.post(f'/api/boss-kills/{kill.pk}/distribute-dkp')
    assert response.status_code == 200
    assert response.data['credited_users'] == 1
    assert as_admin.post(f'/api/boss-kills/{kill.pk}/distribute-dkp').status_code == 409


def test_delete_boss_with_kills_conflicts(as_admin, make_kill, boss):
    make_kill()
    response = as_admin.delete(f'/api/bosses/{boss.pk}')
    assert response.status_code == 409


def test_auction_bidding_over_api(api_client, admin, alice, make_user, expired_item):
    api_client.force_authenticate(user=admin)
    created = api_client.post(
        '/api/auctions', {'item_id': expired_item.pk, 'starting_price': 100}, format='json'
    )
    assert created.status_code == 201
    auction_id = created.data['id']

    api_client.force_authenticate(user=alice)
    bid = api_client.post(
        f'/api/auctions/{auction_id}/bid', {'amount': 150}, format='json', HTTP_IDEMPOTENCY_KEY='k-1'
    )
    assert bid.status_code == 201
    assert bid.data['auction']['current_price'] == 150

    replay = api_client.post(
        f'/api/auctions/{auction_id}/bid', {'amount': 150}, format='json', HTTP_IDEMPOTENCY_KEY='k-1'
    )
    assert replay.data['bid']['id'] == bid.data['bid']['id']
    assert WalletManager.get_wallet(alice).held_diamonds == 150

    low = api_client.post(f'/api/auctions/{auction_id}/bid', {'amount': 150}, format='json')
    assert low.status_code == 400
    assert low.data['code'] == 'INVALID_BID'

    api_client.force_authenticate(user=make_user('Pauper', diamonds=50))
    broke = api_client.post(f'/api/auctions/{auction_id}/bid', {'amount': 500}, format='json')
    assert broke.status_code == 409
    assert broke.data['code'] == 'INSUFFICIENT_FUNDS'
    assert broke.data['available'] == 50


def test_price_bounds_are_enforced(as_admin, expired_item):
    response = as_admin.post(
        '/api/auctions', {'item_id': expired_item.pk, 'starting_price': 50}, format='json'
    )
    assert response.status_code == 400
    assert not Auction.objects.exists()


def test_blind_auction_hides_price(as_alice, admin, expired_item, now):
    auction = get_auction_manager().create_auction(
        admin, expired_item.pk, 100, auction_type=Auction.TYPE_BLIND, now=now
    )
    as_alice.post(f'/api/auctions/{auction.pk}/bid', {'amount': 300}, format='json')

    detail = as_alice.get(f'/api/auctions/{auction.pk}')

    assert detail.status_code == 200
    assert detail.data['current_price'] is None
    assert detail.data['highest_bidder'] is None
    assert len(as_alice.get(f'/api/auctions/{auction.pk}/bids').data) == 1


def test_won_and_confirm_delivery(api_client, admin, alice, make_user, expired_item, now):
    manager = get_auction_manager()
    auction = manager.create_auction(admin, expired_item.pk, 100, now=now)
    manager.place_bid(auction.pk, alice, 200, now=now)
    manager.settle_auction(auction.pk, now=auction.end_time)

    api_client.force_authenticate(user=alice)
    won = api_client.get('/api/auctions/won')
    assert [entry['id'] for entry in won.data] == [auction.pk]
    assert api_client.put(f'/api/auctions/{auction.pk}/confirm-delivery').status_code == 403

    api_client.force_authenticate(user=make_user('Holder'))
    confirmed = api_client.put(f'/api/auctions/{auction.pk}/confirm-delivery')
    assert confirmed.status_code == 200
    assert confirmed.data['status'] == Auction.STATUS_SETTLED


def test_cancel_auction_endpoint(as_admin, admin, expired_item, now):
    auction = get_auction_manager().create_auction(admin, expired_item.pk, 100, now=now)

    response = as_admin.put(f'/api/auctions/{auction.pk}/cancel')

    assert response.status_code == 200
    assert response.data['status'] == Auction.STATUS_CANCELLED


def test_notifications_endpoint(as_alice, alice):
    Notification.objects.create(user=alice, message='You won')

    listing = as_alice.get('/api/notifications?unread=true')
    assert [entry['message'] for entry in listing.data] == ['You won']

    read = as_alice.put(f"/api/notifications/{listing.data[0]['id']}/read")
    assert read.status_code == 200
    assert as_alice.get('/api/notifications?unread=true').data == []
    assert as_alice.put('/api/notifications/9999/read').status_code == 404


def test_votes_endpoint(api_client, admin, alice):
    api_client.force_authenticate(user=admin)
    end_time = (timezone.now() + timedelta(days=1)).isoformat()
    created = api_client.post(
        '/api/votes', {'title': 'Raid night', 'options': ['Fri', 'Sat'], 'end_time': end_time}, format='json'
    )
    assert created.status_code == 201
    vote_id = created.data['id']
    option_id = created.data['options'][1]['id']

    api_client.force_authenticate(user=alice)
    assert api_client.post('/api/votes', {'title': 'x', 'options': ['a', 'b'], 'end_time': end_time},
                           format='json').status_code == 403
    cast = api_client.post(f'/api/votes/{vote_id}/cast', {'option_id': option_id}, format='json')
    assert cast.status_code == 201

    results = api_client.get(f'/api/votes/{vote_id}/results')
    assert results.data['status'] == Vote.STATUS_ACTIVE
    assert [entry['count'] for entry in results.data['results']] == [0, 1]
    assert api_client.get(f'/api/votes/{vote_id}').data['has_voted'] is True


def test_attendee_request_endpoints(api_client, admin, make_user, make_kill):
    carol = make_user('Carol')
    kill = make_kill()

    api_client.force_authenticate(user=carol)
    created = api_client.post(
        '/api/attendee-requests',
        {'kill_id': kill.pk, 'reason': 'Was there', 'proof_image': SimpleUploadedFile('p.png', PNG, content_type='image/png')},
        format='multipart',
    )
    assert created.status_code == 201

    api_client.force_authenticate(user=admin)
    rejected = api_client.put(f"/api/attendee-requests/{created.data['id']}", {'approve': False}, format='json')
    assert rejected.status_code == 400

    approved = api_client.put(f"/api/attendee-requests/{created.data['id']}", {'approve': True}, format='json')
    assert approved.status_code == 200
    kill.refresh_from_db()
    assert 'Carol' in kill.attendees
