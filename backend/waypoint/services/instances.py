import random
import string
from threading import Event
from typing import List, Optional

from flask import current_app

from waypoint import db, repositories
from waypoint.transactions import transaction
from waypoint.errors import (
    DuplicateTeamCode,
    InstanceNotFound,
    InvalidInput,
    LocationNotFound,
    NotFound,
    PermissionDenied,
    TeamNotFound,
)
from waypoint.models import Instance, InstanceSettings, Location, Marker, Team
from waypoint.services.credits import CreditService
from waypoint.services.navigation import normalise_code
from waypoint.services.structure import (
    GameStructure,
    get_all_location_ids,
    get_first_visible_group,
    iter_groups,
    validate_structure,
)

CODE_ALPHABET = string.ascii_uppercase + string.digits
MARKER_CODE_LENGTH = 5
TEAM_CODE_LENGTH = 4

SETTINGS_FIELDS = ('must_check_out', 'enable_points', 'enable_bonus_points',
                   'show_leaderboard', 'show_team_count', 'completion_bonus')


def generate_code(length: int, exists) -> str:
    """Generate a short uppercase code that ``exists`` does not know yet."""
    while True:
        code = ''.join(random.choices(CODE_ALPHABET, k=length))
        if not exists(code):
            return code


class InstanceService:
    def get_instance(self, instance_id: str) -> Instance:
        instance = db.session.get(Instance, instance_id)
        if instance is None:
            raise InstanceNotFound()
        return instance

    def create_instance(self, user_id: str, name: str, is_template: bool = False,
                        cancel: Optional[Event] = None) -> Instance:
        if not name or not name.strip():
            raise InvalidInput('instance name is required')
        with transaction(cancel) as session:
            instance = Instance(
                user_id=user_id,
                name=name.strip(),
                is_template=is_template,
                game_structure=GameStructure.new_root().to_dict(),
            )
            session.add(instance)
            session.flush()
            session.add(InstanceSettings(instance_id=instance.id))
        current_app.logger.info(f"[instances] created instance={instance.id} user={user_id}")
        return instance

    def update_settings(self, instance_id: str, values: dict, cancel: Optional[Event] = None) -> InstanceSettings:
        unknown = set(values) - set(SETTINGS_FIELDS)
        if unknown:
            raise InvalidInput(f"unknown settings: {', '.join(sorted(unknown))}")
        with transaction(cancel) as session:
            settings = session.get(InstanceSettings, instance_id)
            if settings is None:
                raise InstanceNotFound()
            for key, value in values.items():
                setattr(settings, key, int(value) if key == 'completion_bonus' else bool(value))
        return settings


class GameStructureService:
    def save(self, instance_id: str, structure: GameStructure, cancel: Optional[Event] = None) -> GameStructure:
        """Store a structure edited by an admin.

        Every location of the instance ends up in exactly one group: unknown
        ids are dropped and orphans are appended to the root.
        """
        with transaction(cancel) as session:
            instance = session.get(Instance, instance_id)
            if instance is None:
                raise InstanceNotFound()
            known = [loc.id for loc in repositories.find_locations_by_instance(instance_id, session=session)]
            known_set = set(known)
            for group in iter_groups(structure):
                group.location_ids = [loc_id for loc_id in group.location_ids if loc_id in known_set]
            placed = set(get_all_location_ids(structure))
            structure.location_ids.extend(loc_id for loc_id in known if loc_id not in placed)

            validate_structure(structure)
            instance.game_structure = structure.to_dict()
        return structure


class MarkerService:
    def create_marker(self, lat: float, lng: float, name: str = '', session=None) -> Marker:
        if lat is None or not -90 <= float(lat) <= 90:
            raise InvalidInput('latitude must be between -90 and 90')
        if lng is None or not -180 <= float(lng) <= 180:
            raise InvalidInput('longitude must be between -180 and 180')
        session = session if session is not None else db.session
        code = generate_code(MARKER_CODE_LENGTH, lambda c: session.get(Marker, c) is not None)
        marker = Marker(code=code, lat=float(lat), lng=float(lng), name=name)
        session.add(marker)
        return marker


class LocationService:
    def __init__(self, markers: Optional[MarkerService] = None):
        self.markers = markers or MarkerService()

    def get_location(self, location_id: str) -> Location:
        location = db.session.get(Location, location_id)
        if location is None:
            raise LocationNotFound()
        return location

    def create_location(self, instance_id: str, name: str, lat: float, lng: float, points: int = 0,
                        marker_code: Optional[str] = None, cancel: Optional[Event] = None) -> Location:
        if not name or not name.strip():
            raise InvalidInput('location name is required')
        with transaction(cancel) as session:
            instance = session.get(Instance, instance_id)
            if instance is None:
                raise InstanceNotFound()

            if marker_code:
                marker = session.get(Marker, normalise_code(marker_code))
                if marker is None:
                    raise NotFound('marker not found')
            else:
                marker = self.markers.create_marker(lat, lng, name, session=session)

            order = len(repositories.find_locations_by_instance(instance_id, session=session))
            location = Location(instance_id=instance_id, name=name.strip(), marker_id=marker.code,
                                points=points or 0, order=order)
            session.add(location)
            session.flush()

            structure = instance.structure or GameStructure.new_root()
            target = get_first_visible_group(structure) or structure
            target.location_ids.append(location.id)
            instance.game_structure = structure.to_dict()

        current_app.logger.info(f"[locations] created location={location.id} marker={location.marker_id}")
        return location

    def update_location(self, location_id: str, name: Optional[str] = None, points: Optional[int] = None,
                        cancel: Optional[Event] = None) -> Location:
        with transaction(cancel) as session:
            location = session.get(Location, location_id)
            if location is None:
                raise LocationNotFound()
            if name is not None:
                if not name.strip():
                    raise InvalidInput('location name is required')
                location.name = name.strip()
            if points is not None:
                location.points = int(points)
        return location

    def reorder_locations(self, instance_id: str, location_ids: List[str], cancel: Optional[Event] = None) -> None:
        with transaction(cancel) as session:
            by_id = {loc.id: loc for loc in repositories.find_locations_by_instance(instance_id, session=session)}
            if set(location_ids) != set(by_id):
                raise InvalidInput('reorder must list every location of the instance exactly once')
            for position, location_id in enumerate(location_ids):
                by_id[location_id].order = position


class TeamService:
    def __init__(self, credits: Optional[CreditService] = None):
        self.credits = credits or CreditService()

    def get_team_by_code(self, code: str, instance_id: Optional[str] = None) -> Team:
        team = repositories.find_team_by_code(normalise_code(code), instance_id)
        if team is None:
            raise TeamNotFound()
        return team

    def _check_instance(self, session, instance_id: str) -> Instance:
        instance = session.get(Instance, instance_id)
        if instance is None:
            raise InstanceNotFound()
        if instance.is_template:
            raise InvalidInput('templates cannot have teams')
        return instance

    def create_team(self, instance_id: str, code: str, name: str = '', cancel: Optional[Event] = None) -> Team:
        code = normalise_code(code)
        if not code:
            raise InvalidInput('team code is required')
        with transaction(cancel) as session:
            self._check_instance(session, instance_id)
            # unique across instances
            if repositories.find_team_by_code(code, session=session) is not None:
                raise DuplicateTeamCode()
            team = Team(instance_id=instance_id, code=code, name=name, skipped_group_ids=[])
            session.add(team)
        return team

    def add_teams(self, instance_id: str, count: int, cancel: Optional[Event] = None) -> List[Team]:
        if count < 1:
            raise InvalidInput('count must be at least 1')
        teams = []
        with transaction(cancel) as session:
            self._check_instance(session, instance_id)
            taken = set()

            def exists(code):
                return code in taken or repositories.find_team_by_code(code, session=session) is not None

            for _ in range(count):
                code = generate_code(TEAM_CODE_LENGTH, exists)
                taken.add(code)
                team = Team(instance_id=instance_id, code=code, skipped_group_ids=[])
                session.add(team)
                teams.append(team)
        current_app.logger.info(f"[teams] added {count} teams to instance={instance_id}")
        return teams

    def start_team(self, user_id: str, team_id: str, cancel: Optional[Event] = None) -> Team:
        """Start a dormant team, paying one credit. Already started teams are left alone."""
        with transaction(cancel) as session:
            team = session.get(Team, team_id)
            if team is None:
                raise TeamNotFound()
            if team.instance is None or team.instance.user_id != user_id:
                raise PermissionDenied()
            if team.has_started:
                return team
            # The conditional flip guards against a concurrent start of the same team
            if repositories.mark_team_started(team.id, session=session) != 1:
                return team
            self.credits.deduct_credit_for_team_start(user_id, team.id, team.instance_id, session=session)
            session.expire(team)
        current_app.logger.info(f"[teams] started team={team.code} user={user_id}")
        return team
