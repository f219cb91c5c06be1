from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from waypoint import db
from waypoint.api import form_input
from waypoint.blocks import Mode
from waypoint.errors import BlockNotFound, InstanceNotFound, InvalidInput, LocationNotFound, PermissionDenied
from waypoint.models import Block, Instance, Location, Team
from waypoint.services.blocks import BlockService
from waypoint.services.checkins import CheckInService
from waypoint.services.credits import CreditService
from waypoint.services.deletion import DeleteService
from waypoint.services.instances import GameStructureService, InstanceService, LocationService, TeamService
from waypoint.services.navigation import NavigationService
from waypoint.services.payments import PaymentService
from waypoint.services.structure import GameStructure
from waypoint.uploads import store_upload

admin = Blueprint('admin', __name__)


@admin.before_request
@login_required
def require_login():
    pass


def _owned_instance(instance_id) -> Instance:
    instance = db.session.get(Instance, instance_id)
    if instance is None:
        raise InstanceNotFound()
    if instance.user_id != current_user.id:
        raise PermissionDenied()
    return instance


def _owned_location(location_id) -> Location:
    location = db.session.get(Location, location_id)
    if location is None:
        raise LocationNotFound()
    _owned_instance(location.instance_id)
    return location


def _owned_block(block_id) -> Block:
    block = db.session.get(Block, block_id)
    if block is None:
        raise BlockNotFound()
    _check_block_owner(block.owner_id)
    return block


def _check_block_owner(owner_id):
    location = db.session.get(Location, owner_id)
    _owned_instance(location.instance_id if location else owner_id)


def _json():
    return request.get_json(silent=True) or {}


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInput(f'{name} must be an integer')


def _date_arg(name):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise InvalidInput(f'{name} must be an ISO date')


# ---- Credits ----

@admin.route('/credits', methods=['GET'])
def credit_balance():
    free, paid = CreditService().get_credit_balance(current_user.id)
    return jsonify({'free_credits': free, 'paid_credits': paid, 'total_credits': free + paid})


@admin.route('/credits/adjustments', methods=['GET'])
def credit_adjustments():
    items, total = CreditService().get_credit_adjustments(
        current_user.id, limit=_int_arg('limit', 50), offset=_int_arg('offset', 0))
    return jsonify({'items': [a.to_dict() for a in items], 'total': total})


@admin.route('/credits/team-starts', methods=['GET'])
def team_start_summary():
    summary = CreditService().get_team_start_logs_summary(
        current_user.id, group_by=request.args.get('group_by', ''),
        start=_date_arg('start'), end=_date_arg('end'))
    return jsonify(summary)


@admin.route('/purchases', methods=['POST'])
def create_purchase():
    data = _json()
    try:
        credits = int(data.get('credits'))
    except (TypeError, ValueError):
        raise InvalidInput('credits must be an integer')
    purchase = PaymentService().create_purchase(current_user.id, credits, data.get('session_id', ''))
    return jsonify(purchase.to_dict()), 201


# ---- Instances ----

@admin.route('/instances', methods=['POST'])
def create_instance():
    instance = InstanceService().create_instance(current_user.id, _json().get('name', ''))
    return jsonify(instance.to_dict()), 201


@admin.route('/instances/<string:instance_id>', methods=['GET'])
def get_instance(instance_id):
    return jsonify(_owned_instance(instance_id).to_dict())


@admin.route('/instances/<string:instance_id>', methods=['DELETE'])
def delete_instance(instance_id):
    _owned_instance(instance_id)
    DeleteService().delete_instance(instance_id)
    return jsonify({'deleted': instance_id})


@admin.route('/instances/<string:instance_id>/settings', methods=['PUT'])
def update_settings(instance_id):
    _owned_instance(instance_id)
    settings = InstanceService().update_settings(instance_id, _json())
    return jsonify(settings.to_dict())


@admin.route('/instances/<string:instance_id>/structure', methods=['PUT'])
def save_structure(instance_id):
    _owned_instance(instance_id)
    structure = GameStructure.from_dict(_json())
    if structure is None:
        raise InvalidInput('game structure is required')
    saved = GameStructureService().save(instance_id, structure)
    return jsonify(saved.to_dict())


@admin.route('/instances/<string:instance_id>/locations', methods=['POST'])
def create_location(instance_id):
    _owned_instance(instance_id)
    data = _json()
    try:
        lat, lng = float(data.get('lat')), float(data.get('lng'))
        points = int(data.get('points') or 0)
    except (TypeError, ValueError):
        raise InvalidInput('lat, lng and points must be numbers')
    location = LocationService().create_location(instance_id, data.get('name', ''), lat, lng, points=points,
                                                 marker_code=data.get('marker'))
    return jsonify(location.to_dict()), 201


@admin.route('/instances/<string:instance_id>/teams', methods=['POST'])
def add_teams(instance_id):
    _owned_instance(instance_id)
    try:
        count = int(_json().get('count', 1))
    except (TypeError, ValueError):
        raise InvalidInput('count must be an integer')
    teams = TeamService().add_teams(instance_id, count)
    return jsonify([t.to_dict() for t in teams]), 201


@admin.route('/instances/<string:instance_id>/preview/<string:location_id>', methods=['GET'])
def preview_navigation(instance_id, location_id):
    instance = _owned_instance(instance_id)
    # transient team, never added to the session
    team = Team(code='', instance_id=instance.id, skipped_group_ids=[])
    team.instance = instance
    view = NavigationService().get_preview_navigation_view(team, location_id)
    return jsonify(view.to_dict())


# ---- Locations and teams ----

@admin.route('/locations/<string:location_id>', methods=['DELETE'])
def delete_location(location_id):
    _owned_location(location_id)
    DeleteService().delete_location(location_id)
    return jsonify({'deleted': location_id})


@admin.route('/teams/<string:team_id>/start', methods=['POST'])
def start_team(team_id):
    team = TeamService().start_team(current_user.id, team_id)
    return jsonify(team.to_dict())


@admin.route('/teams/<string:team_id>', methods=['DELETE'])
def delete_team(team_id):
    team = db.session.get(Team, team_id)
    if team is not None:
        _owned_instance(team.instance_id)
        DeleteService().delete_team(team_id)
    return jsonify({'deleted': team_id})


# ---- Blocks ----

@admin.route('/blocks', methods=['POST'])
def new_block():
    data = _json()
    owner_id = data.get('owner_id', '')
    _check_block_owner(owner_id)
    block = BlockService().new_block(owner_id, data.get('context', ''), data.get('type', ''))
    return jsonify({'id': block.id, 'ordering': block.ordering, 'type': block.type}), 201


@admin.route('/blocks/<string:block_id>', methods=['PUT'])
def update_block(block_id):
    _owned_block(block_id)
    service = BlockService()
    service.update_block(block_id, form_input())
    _, typed = service.get_by_id(block_id)
    return jsonify(typed.to_dict())


@admin.route('/blocks/<string:block_id>', methods=['DELETE'])
def delete_block(block_id):
    if db.session.get(Block, block_id) is not None:
        _owned_block(block_id)
        BlockService().delete_block(block_id)
    return jsonify({'deleted': block_id})


@admin.route('/blocks/reorder', methods=['POST'])
def reorder_blocks():
    block_ids = _json().get('block_ids') or []
    for block_id in block_ids:
        _owned_block(block_id)
    BlockService().reorder_blocks(block_ids)
    return jsonify({'block_ids': block_ids})


@admin.route('/blocks/<string:block_id>/preview', methods=['POST'])
def preview_block(block_id):
    _owned_block(block_id)
    state, block = CheckInService().validate_and_update_block_state(
        None, block_id, form_input(), mode=Mode.PREVIEW)
    return jsonify({'block': block.to_dict(), 'state': state.to_dict()})


# ---- Uploads ----

@admin.route('/uploads', methods=['POST'])
def upload_image():
    file_storage = request.files.get('file')
    if file_storage is None:
        raise InvalidInput('file is required')
    try:
        url = store_upload(current_app, file_storage)
    except ValueError as exc:
        raise InvalidInput(str(exc))
    return jsonify({'url': url}), 201
