from flask import Blueprint, jsonify, request

from waypoint.api import form_input
from waypoint.blocks import Mode
from waypoint.errors import InvalidInput, TeamNotStarted
from waypoint.services.checkins import CheckInService
from waypoint.services.instances import TeamService
from waypoint.services.navigation import NavigationService

players = Blueprint('players', __name__)


def _team(team_code):
    return TeamService().get_team_by_code(team_code.upper())


def _started_team(team_code):
    team = _team(team_code)
    if not team.has_started:
        raise TeamNotStarted()
    return team


def _marker_from_request():
    data = request.get_json(silent=True) or {}
    marker = (data.get('marker') or request.form.get('marker') or '').strip().upper()
    if not marker:
        raise InvalidInput('marker code is required')
    return marker


@players.route('/<string:team_code>', methods=['GET'])
def get_team(team_code):
    return jsonify(_team(team_code).to_dict())


@players.route('/<string:team_code>/navigation', methods=['GET'])
def get_navigation(team_code):
    view = NavigationService().get_player_navigation_view(_started_team(team_code))
    return jsonify(view.to_dict())


@players.route('/<string:team_code>/checkins', methods=['POST'])
def check_in(team_code):
    team = _started_team(team_code)
    check_in = CheckInService().check_in(team, _marker_from_request())
    return jsonify(check_in.to_dict()), 201


@players.route('/<string:team_code>/checkout', methods=['POST'])
def check_out(team_code):
    team = _started_team(team_code)
    check_in = CheckInService().check_out(team, _marker_from_request())
    return jsonify(check_in.to_dict())


@players.route('/<string:team_code>/blocks/<string:block_id>', methods=['POST'])
def submit_block(team_code, block_id):
    team = _started_team(team_code)
    state, block = CheckInService().validate_and_update_block_state(team, block_id, form_input(), mode=Mode.LIVE)
    return jsonify({'block': block.to_player_dict(team.code, state), 'state': state.to_dict()})


@players.route('/<string:team_code>/skip', methods=['POST'])
def skip_group(team_code):
    group_id = NavigationService().skip_current_group(_started_team(team_code))
    return jsonify({'skipped_group_id': group_id})
