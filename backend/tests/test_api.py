import hashlib
import hmac
import io
import json
import time

import pytest
from flask_sqlalchemy import SQLAlchemy

from waypoint import db
from waypoint.blocks import CONTEXT_LOCATION_CONTENT
from waypoint.errors import DuplicateTeamCode
from waypoint.models import Instance, Team, User
from waypoint.services.blocks import BlockService
from waypoint.services.payments import PaymentService


def test_db_is_the_sqlalchemy_extension(flask_app):
    import waypoint
    import waypoint.services.checkins  # noqa: F401
    assert isinstance(waypoint.db, SQLAlchemy)
    assert waypoint.db is db


def test_player_needs_started_team(client, make_game):
    game = make_game(started=False)
    res = client.get('/api/play/team/navigation')
    assert res.status_code == 422
    assert res.get_json()['kind'] == 'precondition'

    res = client.get('/api/play/team')
    assert res.status_code == 200
    assert res.get_json()['code'] == 'TEAM'
    assert res.get_json()['id'] == game.team.id


def test_unknown_team(client, flask_app):
    res = client.get('/api/play/NOPE/navigation')
    assert res.status_code == 404
    assert res.get_json() == {'error': 'team not found', 'kind': 'not_found'}


def test_player_check_in_flow(client, make_game):
    game = make_game(locations=2, points=10)
    marker = game.locations[0].marker_id

    res = client.get('/api/play/TEAM/navigation')
    assert res.status_code == 200
    assert len(res.get_json()['next_locations']) == 2

    res = client.post('/api/play/TEAM/checkins', json={'marker': marker.lower()})
    assert res.status_code == 201
    assert res.get_json()['points'] == 10

    res = client.post('/api/play/TEAM/checkins', json={'marker': marker})
    assert res.status_code == 409
    assert res.get_json() == {'error': 'player has already checked in at this location', 'kind': 'conflict'}

    res = client.post('/api/play/TEAM/checkins', json={})
    assert res.status_code == 400

    res = client.post('/api/play/TEAM/checkout', data={'marker': marker})
    assert res.status_code == 422


def test_player_block_submission(client, make_game):
    game = make_game(locations=1)
    service = BlockService()
    row = service.new_block(game.locations[0].id, CONTEXT_LOCATION_CONTENT, 'answer')
    service.update_block(row.id, {'prompt': ['Colour?'], 'answer': ['Blue'], 'points': ['3']})

    res = client.post(f'/api/play/TEAM/blocks/{row.id}', json={'answer': 'Blue'})
    assert res.status_code == 200
    assert res.get_json()['state']['is_complete']
    assert res.get_json()['block']['data'] == {'prompt': 'Colour?'}
    assert db.session.get(Team, game.team.id).points == 3


def test_team_codes_are_unique_across_instances(client, make_game):
    first = make_game(code='AAAA')
    with pytest.raises(DuplicateTeamCode):
        make_game(code='aaaa')
    second = make_game(code='BBBB')

    res = client.get('/api/play/aaaa')
    assert res.get_json()['id'] == first.team.id
    res = client.get('/api/play/BBBB')
    assert res.get_json()['instance_id'] == second.instance.id


def test_player_skip_too_early(client, make_game):
    make_game()
    res = client.post('/api/play/TEAM/skip')
    assert res.status_code == 422


def test_admin_requires_login(client, flask_app):
    res = client.get('/api/admin/credits')
    assert res.status_code == 401
    assert res.get_json()['kind'] == 'not_authenticated'


def test_admin_credits(owner_client):
    res = owner_client.get('/api/admin/credits')
    assert res.get_json() == {'free_credits': 10, 'paid_credits': 0, 'total_credits': 10}

    res = owner_client.get('/api/admin/credits/adjustments?limit=abc')
    assert res.status_code == 400
    res = owner_client.get('/api/admin/credits/adjustments')
    assert res.get_json() == {'items': [], 'total': 0}

    res = owner_client.get('/api/admin/credits/team-starts?group_by=month&start=not-a-date')
    assert res.status_code == 400


def test_admin_builds_and_starts_a_game(owner_client, owner):
    res = owner_client.post('/api/admin/instances', json={'name': 'Campus hunt'})
    assert res.status_code == 201
    instance_id = res.get_json()['id']

    res = owner_client.post(f'/api/admin/instances/{instance_id}/locations',
                            json={'name': 'Library', 'lat': -45.86, 'lng': 170.51, 'points': 5})
    assert res.status_code == 201
    location = res.get_json()
    assert location['marker']['code'] == location['marker_id']

    res = owner_client.post(f'/api/admin/instances/{instance_id}/locations',
                            json={'name': 'Nowhere', 'lat': 91, 'lng': 0})
    assert res.status_code == 400

    res = owner_client.put(f'/api/admin/instances/{instance_id}/settings', json={'must_check_out': True})
    assert res.get_json()['must_check_out'] is True

    res = owner_client.post(f'/api/admin/instances/{instance_id}/teams', json={'count': 2})
    assert res.status_code == 201
    teams = res.get_json()
    assert len({t['code'] for t in teams}) == 2

    res = owner_client.post(f"/api/admin/teams/{teams[0]['id']}/start")
    assert res.status_code == 200
    assert res.get_json()['has_started']
    assert db.session.get(User, owner.id).free_credits == 9

    res = owner_client.get(f'/api/admin/instances/{instance_id}/preview/{location["id"]}')
    assert res.status_code == 200
    assert [loc['id'] for loc in res.get_json()['next_locations']] == [location['id']]


def test_admin_saves_structure(owner_client, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(locations=2)
    ids = [loc.id for loc in game.locations]
    url = f'/api/admin/instances/{game.instance.id}/structure'

    res = owner_client.put(url, json=h.root(h.group('g1', ids[:1]), h.group('g2', ids[1:] + ['gone'])))
    assert res.status_code == 200
    saved = res.get_json()
    assert [g['id'] for g in saved['sub_groups']] == ['g1', 'g2']
    assert saved['sub_groups'][1]['location_ids'] == ids[1:]

    res = owner_client.put(url, json=h.root(h.group('g1', ids[:1]), h.group('g1', ids[1:])))
    assert res.status_code == 400
    assert res.get_json()['kind'] == 'invalid_input'


def test_admin_cannot_touch_other_tenants(owner_client, flask_app):
    stranger = User(email='stranger@example.com', name='Stranger')
    db.session.add(stranger)
    db.session.commit()
    instance = Instance(user_id=stranger.id, name='Not yours')
    db.session.add(instance)
    db.session.commit()

    res = owner_client.get(f'/api/admin/instances/{instance.id}')
    assert res.status_code == 403
    res = owner_client.delete(f'/api/admin/instances/{instance.id}')
    assert res.status_code == 403
    res = owner_client.post('/api/admin/blocks', json={'owner_id': instance.id, 'context': 'lobby',
                                                       'type': 'markdown'})
    assert res.status_code == 403
    assert db.session.get(Instance, instance.id) is not None


def test_admin_blocks(owner_client, make_game):
    game = make_game(locations=1)
    location_id = game.locations[0].id

    res = owner_client.post('/api/admin/blocks', json={'owner_id': location_id, 'context': 'location_content',
                                                       'type': 'answer'})
    assert res.status_code == 201
    block_id = res.get_json()['id']

    res = owner_client.put(f'/api/admin/blocks/{block_id}', data={'prompt': 'Colour?', 'answer': 'Blue'})
    assert res.status_code == 200
    assert res.get_json()['data']['answer'] == 'Blue'

    res = owner_client.post(f'/api/admin/blocks/{block_id}/preview', json={'answer': 'Blue'})
    assert res.status_code == 200
    assert res.get_json()['state']['is_complete']

    res = owner_client.post('/api/admin/blocks', json={'owner_id': location_id, 'context': 'location_clues',
                                                       'type': 'answer'})
    assert res.status_code == 400

    res = owner_client.delete(f'/api/admin/blocks/{block_id}')
    assert res.status_code == 200
    res = owner_client.delete(f'/api/admin/blocks/{block_id}')
    assert res.status_code == 200


def test_admin_uploads(owner_client, flask_app):
    res = owner_client.post('/api/admin/uploads', data={'file': (io.BytesIO(b'\x89PNG'), 'photo.png')},
                            content_type='multipart/form-data')
    assert res.status_code == 201
    url = res.get_json()['url']
    assert url.startswith('/static/uploads/')
    assert url.endswith('/photo.png')

    res = owner_client.post('/api/admin/uploads', data={'file': (io.BytesIO(b'MZ'), 'tool.exe')},
                            content_type='multipart/form-data')
    assert res.status_code == 400


def _signed(payload: bytes):
    ts = int(time.time())
    digest = hmac.new(b'whsec_test_123', f'{ts}.'.encode() + payload, hashlib.sha256).hexdigest()
    return {'Stripe-Signature': f't={ts},v1={digest}', 'Content-Type': 'application/json'}


def test_webhook_duplicates_are_acknowledged(client, owner):
    PaymentService().create_purchase(owner.id, 5, 'cs_api_1')
    payload = json.dumps({'type': 'checkout.session.completed',
                          'data': {'object': {'id': 'cs_api_1', 'amount_total': 175}}}).encode()

    res = client.post('/api/webhooks/stripe', data=payload, headers=_signed(payload))
    assert res.get_json() == {'received': True, 'type': 'checkout.session.completed'}

    res = client.post('/api/webhooks/stripe', data=payload, headers=_signed(payload))
    assert res.status_code == 200
    assert res.get_json() == {'received': True, 'duplicate': True}
    db.session.expire_all()
    assert db.session.get(User, owner.id).paid_credits == 5


def test_webhook_rejects_bad_signature(client, flask_app):
    res = client.post('/api/webhooks/stripe', data=b'{}', headers={'Stripe-Signature': 't=1,v1=00'})
    assert res.status_code == 400
