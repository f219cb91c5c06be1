import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from waypoint import db
from waypoint.blocks import CONTEXT_LOCATION_CONTENT, Mode
from waypoint.errors import (
    AlreadyCheckedIn,
    BlockNotFound,
    CheckOutAtWrongLocation,
    InvalidLocation,
    LocationNotFound,
    UnfinishedCheckIn,
    UnnecessaryCheckOut,
)
from waypoint.models import BlockState, CheckIn, Location, Team
from waypoint.services.blocks import BlockService
from waypoint.services.checkins import CheckInService, check_in_points
from waypoint.services.instances import TeamService


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _answer_block(location_id, points=0):
    service = BlockService()
    row = service.new_block(location_id, CONTEXT_LOCATION_CONTENT, 'answer')
    service.update_block(row.id, {'prompt': ['Colour?'], 'answer': ['Blue'], 'points': [str(points)]})
    return row


def test_first_visit_bonus_check_in_only(flask_app, make_game):
    game = make_game(locations=1, points=100, settings={'enable_bonus_points': True})
    location = game.locations[0]

    check_in = CheckInService().check_in(game.team, location.marker_id)

    assert check_in.points == 200
    assert game.team.points == 200
    assert game.team.must_check_out == ''
    assert check_in.blocks_completed
    assert db.session.get(Location, location.id).total_visits == 1


def test_two_phase_visit(flask_app, make_game):
    game = make_game(locations=1, points=100, settings={'enable_bonus_points': True, 'must_check_out': True})
    location = game.locations[0]
    service = CheckInService()

    check_in = service.check_in(game.team, location.marker_id)
    assert check_in.points == 100
    assert game.team.points == 100
    assert game.team.must_check_out == location.id
    assert db.session.get(Location, location.id).current_count == 1

    check_in = service.check_out(game.team, location.marker_id.lower())
    assert check_in.points == 200
    assert check_in.time_out is not None
    assert game.team.points == 200
    assert game.team.must_check_out == ''
    assert db.session.get(Location, location.id).current_count == 0


def test_unfinished_blocks_block_check_out(flask_app, make_game):
    game = make_game(locations=1, points=100, settings={'must_check_out': True})
    location = game.locations[0]
    block = _answer_block(location.id, points=5)
    service = CheckInService()

    check_in = service.check_in(game.team, location.marker_id)
    assert not check_in.blocks_completed

    with pytest.raises(UnfinishedCheckIn):
        service.check_out(game.team, location.marker_id)

    db.session.expire_all()
    assert game.team.must_check_out == location.id
    assert game.team.points == 0
    assert check_in.time_out is None

    service.validate_and_update_block_state(game.team, block.id, {'answer': ['Blue']})
    assert db.session.get(CheckIn, check_in.id).blocks_completed
    assert game.team.points == 5

    check_in = service.check_out(game.team, location.marker_id)
    assert check_in.points == 100
    assert game.team.points == 105


def test_bonus_decreases_over_first_visits(flask_app, make_game):
    game = make_game(locations=1, points=100, settings={'enable_bonus_points': True})
    location = game.locations[0]
    awarded = [CheckInService().check_in(game.team, location.marker_id).points]
    for i in range(2, 7):
        team = TeamService().create_team(game.instance.id, f'TEAM{i}')
        awarded.append(CheckInService().check_in(team, location.marker_id).points)

    assert awarded == [200, 150, 120, 100, 100, 100]


@pytest.mark.parametrize('points', [1, 7, 33, 100, 999])
def test_bonus_points_never_increase(points):
    check_in_only = [check_in_points(points, visits, False, True) for visits in range(6)]
    assert check_in_only == sorted(check_in_only, reverse=True)
    assert check_in_only[3:] == [points] * 3

    bonus_only = [check_in_points(points, visits, True, True) for visits in range(6)]
    assert bonus_only == sorted(bonus_only, reverse=True)
    assert bonus_only[3:] == [0, 0, 0]


def test_bonus_floors_fractions():
    assert check_in_points(7, 1, False, True) == 10
    assert check_in_points(7, 2, False, True) == 8
    assert check_in_points(7, 1, True, True) == 3
    assert check_in_points(7, 0, False, False) == 7
    assert check_in_points(7, 0, True, False) == 0


def test_points_disabled_awards_nothing(flask_app, make_game):
    game = make_game(locations=1, points=100, settings={'enable_points': False, 'enable_bonus_points': True})
    check_in = CheckInService().check_in(game.team, game.locations[0].marker_id)
    assert check_in.points == 0
    assert game.team.points == 0


def test_check_in_twice_is_rejected(flask_app, make_game):
    game = make_game(locations=2)
    service = CheckInService()
    service.check_in(game.team, game.locations[0].marker_id)
    with pytest.raises(AlreadyCheckedIn):
        service.check_in(game.team, game.locations[0].marker_id)
    assert CheckIn.query.count() == 1


def test_unknown_marker(flask_app, make_game):
    game = make_game()
    with pytest.raises(LocationNotFound):
        CheckInService().check_in(game.team, 'ZZZZZ')


def test_marker_of_another_instance_is_unknown(flask_app, make_game):
    first = make_game(code='AAAA')
    second = make_game(code='BBBB')
    with pytest.raises(LocationNotFound):
        CheckInService().check_in(first.team, second.locations[0].marker_id)


def test_ordered_group_rejects_out_of_order(flask_app, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(structure=lambda ids: h.root(h.group('g1', ids, routing='ordered')))
    service = CheckInService()
    with pytest.raises(InvalidLocation):
        service.check_in(game.team, game.locations[1].marker_id)
    service.check_in(game.team, game.locations[0].marker_id)
    service.check_in(game.team, game.locations[1].marker_id)
    assert CheckIn.query.count() == 2


def test_orphan_locations_are_visited_first(flask_app, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(locations=2, structure=lambda ids: h.root(h.group('g1', ids[:1])))
    service = CheckInService()
    # the unplaced location was appended to the root, which comes before g1
    with pytest.raises(InvalidLocation):
        service.check_in(game.team, game.locations[0].marker_id)
    service.check_in(game.team, game.locations[1].marker_id)
    service.check_in(game.team, game.locations[0].marker_id)
    assert CheckIn.query.count() == 2


def test_pending_check_out_blocks_new_check_in(flask_app, make_game):
    game = make_game(settings={'must_check_out': True})
    service = CheckInService()
    service.check_in(game.team, game.locations[0].marker_id)
    with pytest.raises(AlreadyCheckedIn):
        service.check_in(game.team, game.locations[1].marker_id)


def test_check_out_errors(flask_app, make_game):
    game = make_game(settings={'must_check_out': True})
    service = CheckInService()
    with pytest.raises(UnnecessaryCheckOut):
        service.check_out(game.team, game.locations[0].marker_id)

    service.check_in(game.team, game.locations[0].marker_id)
    with pytest.raises(CheckOutAtWrongLocation):
        service.check_out(game.team, game.locations[1].marker_id)
    with pytest.raises(CheckOutAtWrongLocation):
        service.check_out(game.team, 'ZZZZZ')


def test_check_out_records_visit_duration(flask_app, make_game):
    game = make_game(locations=1, settings={'must_check_out': True})
    clock = FakeClock(datetime(2026, 3, 1, 10, 0, 0))
    service = CheckInService(clock=clock)
    service.check_in(game.team, game.locations[0].marker_id)
    clock.now += timedelta(minutes=10)
    check_in = service.check_out(game.team, game.locations[0].marker_id)

    assert (check_in.time_out - check_in.time_in) == timedelta(minutes=10)
    assert db.session.get(Location, game.locations[0].id).avg_duration > 0


def test_block_input_completes_state_once(flask_app, make_game):
    game = make_game(locations=1)
    block = _answer_block(game.locations[0].id, points=5)
    service = CheckInService()

    state, _ = service.validate_and_update_block_state(game.team, block.id, {'answer': ['Red']})
    assert not state.is_complete
    state, _ = service.validate_and_update_block_state(game.team, block.id, {'answer': ['Blue']})
    assert state.is_complete
    state, _ = service.validate_and_update_block_state(game.team, block.id, {'answer': ['Blue']})
    assert state.data['attempts'] == 2
    assert game.team.points == 5


def test_preview_persists_nothing(flask_app, make_game):
    game = make_game(locations=1)
    block = _answer_block(game.locations[0].id, points=5)

    state, _ = CheckInService().validate_and_update_block_state(
        game.team, block.id, {'answer': ['Blue']}, mode=Mode.PREVIEW)

    assert state.is_complete
    assert BlockState.query.count() == 0
    assert game.team.points == 0


def test_team_name_block_renames_team(flask_app, make_game):
    game = make_game(locations=1)
    row = BlockService().new_block(game.instance.id, 'lobby', 'team_name')
    CheckInService().validate_and_update_block_state(game.team, row.id, {'team_name': ['  Pathfinders ']})
    assert db.session.get(Team, game.team.id).name == 'Pathfinders'


def test_block_of_another_instance_is_not_found(flask_app, make_game):
    first = make_game(locations=1, code='AAAA')
    second = make_game(locations=1, code='BBBB')
    foreign = _answer_block(second.locations[0].id, points=5)
    lobby = BlockService().new_block(second.instance.id, 'lobby', 'team_name')
    service = CheckInService()

    with pytest.raises(BlockNotFound):
        service.validate_and_update_block_state(first.team, foreign.id, {'answer': ['Blue']})
    with pytest.raises(BlockNotFound):
        service.validate_and_update_block_state(first.team, lobby.id, {'team_name': ['Intruders']})

    db.session.expire_all()
    assert db.session.get(Team, first.team.id).points == 0
    assert db.session.get(Team, second.team.id).name != 'Intruders'
    assert BlockState.query.count() == 0


def test_concurrent_check_ins_leave_one_row(file_app, make_file_game):
    game = make_file_game(locations=1)
    instance_id, marker = game.instance.id, game.locations[0].marker_id
    barrier = threading.Barrier(4)

    def attempt():
        with file_app.app_context():
            team = TeamService().get_team_by_code('TEAM', instance_id)
            barrier.wait()
            try:
                CheckInService().check_in(team, marker)
                return 'ok'
            except AlreadyCheckedIn:
                return 'duplicate'

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = [f.result() for f in [pool.submit(attempt) for _ in range(4)]]

    assert sorted(results) == ['duplicate', 'duplicate', 'duplicate', 'ok']
    assert CheckIn.query.count() == 1
    db.session.expire_all()
    assert db.session.get(Location, game.locations[0].id).total_visits == 1
