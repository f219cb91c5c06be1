import pytest

from waypoint import db
from waypoint.blocks import CONTEXT_LOCATION_CLUES, CONTEXT_LOCATION_CONTENT
from waypoint.errors import AllLocationsVisited, CannotAdvance, LocationNotFound
from waypoint.models import Team
from waypoint.services.blocks import BlockService
from waypoint.services.checkins import CheckInService
from waypoint.services.navigation import NavigationService


def _visit(game, *indexes):
    service = CheckInService()
    for i in indexes:
        service.check_in(game.team, game.locations[i].marker_id)


def test_new_game_offers_every_location(flask_app, make_game):
    game = make_game()
    view = NavigationService().get_player_navigation_view(game.team)
    assert view.current_group.name == 'Locations'
    assert [loc.id for loc in view.next_locations] == [loc.id for loc in game.locations]
    assert not view.must_check_out
    assert not view.can_advance_early


def test_completed_locations_drop_out_of_candidates(flask_app, make_game):
    game = make_game()
    _visit(game, 1)
    locations = NavigationService().get_next_locations(game.team)
    assert [loc.id for loc in locations] == [game.locations[0].id, game.locations[2].id]


def test_is_valid_location_normalises_marker(flask_app, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(structure=lambda ids: h.root(h.group('g1', ids, routing='ordered')))
    service = NavigationService()
    assert service.is_valid_location(game.team, f'  {game.locations[0].marker_id.lower()} ')
    assert not service.is_valid_location(game.team, game.locations[1].marker_id)


def test_finished_team_has_no_valid_locations(flask_app, make_game):
    game = make_game(locations=1)
    _visit(game, 0)
    service = NavigationService()
    assert not service.is_valid_location(game.team, game.locations[0].marker_id)
    with pytest.raises(AllLocationsVisited):
        service.get_player_navigation_view(game.team)


def test_skipped_group_scenario(flask_app, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(locations=6, structure=lambda ids: h.root(
        h.group('g1', ids[0:2]),
        h.group('g2', ids[2:5], completion_type='minimum', minimum_required=2, auto_advance=False),
        h.group('g3', ids[5:6]),
    ))
    service = NavigationService()

    _visit(game, 0, 1)
    with pytest.raises(CannotAdvance):
        service.skip_current_group(game.team)

    _visit(game, 2, 3)
    view = service.get_player_navigation_view(game.team)
    assert view.current_group.id == 'g2'
    assert view.can_advance_early
    assert [loc.id for loc in view.next_locations] == [game.locations[4].id]

    assert service.skip_current_group(game.team) == 'g2'
    assert db.session.get(Team, game.team.id).skipped_group_ids == ['g2']

    view = service.get_player_navigation_view(game.team)
    assert view.current_group.id == 'g3'
    assert [loc.id for loc in view.next_locations] == [game.locations[5].id]


def test_must_check_out_view_shows_blocking_location(flask_app, make_game):
    game = make_game(settings={'must_check_out': True})
    location = game.locations[0]
    blocks = BlockService()
    text = blocks.new_block(location.id, CONTEXT_LOCATION_CONTENT, 'markdown')
    answer = blocks.new_block(location.id, CONTEXT_LOCATION_CONTENT, 'answer')
    _visit(game, 0)

    view = NavigationService().get_player_navigation_view(game.team)
    assert view.must_check_out
    assert view.blocking_location.id == location.id
    assert [b.id for b in view.blocks] == [text.id, answer.id]
    assert not view.block_states[answer.id].is_complete
    assert view.next_locations == []


def test_custom_navigation_shows_clues(flask_app, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(locations=2, structure=lambda ids: h.root(h.group('g1', ids, navigation='custom')))
    blocks = BlockService()
    clue = blocks.new_block(game.locations[1].id, CONTEXT_LOCATION_CLUES, 'random_clue')
    blocks.new_block(game.locations[1].id, CONTEXT_LOCATION_CONTENT, 'markdown')

    view = NavigationService().get_player_navigation_view(game.team)
    assert [b.id for b in view.clue_blocks] == [clue.id]
    assert clue.id in view.clue_states


def test_tasks_navigation_lists_completed_in_declaration_order(flask_app, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(locations=3, structure=lambda ids: h.root(h.group('g1', ids, navigation='tasks')))
    _visit(game, 2, 0)

    view = NavigationService().get_player_navigation_view(game.team)
    assert [loc.id for loc in view.completed_locations] == [game.locations[0].id, game.locations[2].id]
    assert [loc.id for loc in view.next_locations] == [game.locations[1].id]


def test_view_serialises(flask_app, make_game):
    game = make_game()
    data = NavigationService().get_player_navigation_view(game.team).to_dict()
    assert data['team']['code'] == 'TEAM'
    assert data['current_group']['name'] == 'Locations'
    assert len(data['next_locations']) == 3


def test_preview_shows_only_the_previewed_location(flask_app, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(locations=4, structure=lambda ids: h.root(
        h.group('g1', ids[:1]),
        h.group('g2', ids[1:], routing='ordered'),
    ))
    team = Team(code='', instance_id=game.instance.id, skipped_group_ids=[])
    team.instance = game.instance
    service = NavigationService()

    # third location of an ordered group, the team has visited nothing
    view = service.get_preview_navigation_view(team, game.locations[3].id)
    assert view.current_group.id == 'g2'
    assert [loc.id for loc in view.next_locations] == [game.locations[3].id]

    view = service.get_preview_navigation_view(team, game.locations[0].id)
    assert view.current_group.id == 'g1'
    assert [loc.id for loc in view.next_locations] == [game.locations[0].id]

    with pytest.raises(LocationNotFound):
        service.get_preview_navigation_view(team, 'missing')


def test_random_clue_view_shows_the_teams_clue_only(flask_app, make_game, structure_helpers):
    h = structure_helpers
    game = make_game(locations=1, structure=lambda ids: h.root(h.group('g1', ids, navigation='custom')))
    blocks = BlockService()
    row = blocks.new_block(game.locations[0].id, CONTEXT_LOCATION_CLUES, 'random_clue')
    blocks.update_block(row.id, {'clues': ['North gate', 'Clock tower', 'Boat shed']})

    view = NavigationService().get_player_navigation_view(game.team)
    data = view.to_dict()
    [clue_block] = data['clue_blocks']
    assert clue_block['data'] == {'clue': view.clue_blocks[0].get_clue('TEAM')}
    assert clue_block['data']['clue'] in ('North gate', 'Clock tower', 'Boat shed')
    assert 'clues' not in clue_block['data']
