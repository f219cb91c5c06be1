from dataclasses import dataclass, field
from threading import Event
from typing import Dict, List, Optional

from flask import current_app

from waypoint import db, repositories
from waypoint.blocks import CONTEXT_LOCATION_CLUES, CONTEXT_LOCATION_CONTENT, BaseBlock
from waypoint.transactions import transaction
from waypoint.errors import AllLocationsVisited, CannotAdvance, LocationNotFound
from waypoint.models import BlockState, InstanceSettings, Location, Team
from waypoint.services.blocks import BlockService
from waypoint.services.structure import (
    NAV_CUSTOM,
    NAV_TASKS,
    ROUTE_SCAVENGER_HUNT,
    GameStructure,
    can_advance_early,
    compute_current_group,
    find_group_by_id,
    find_group_containing_location,
    get_all_location_ids,
    get_available_location_ids,
)


def normalise_code(code: Optional[str]) -> str:
    return (code or '').strip().upper()


@dataclass
class PlayerNavigationView:
    team: Team
    settings: InstanceSettings
    current_group: Optional[GameStructure] = None
    must_check_out: bool = False
    blocking_location: Optional[Location] = None
    next_locations: List[Location] = field(default_factory=list)
    completed_locations: List[Location] = field(default_factory=list)
    can_advance_early: bool = False
    blocks: List[BaseBlock] = field(default_factory=list)
    block_states: Dict[str, BlockState] = field(default_factory=dict)
    clue_blocks: List[BaseBlock] = field(default_factory=list)
    clue_states: Dict[str, BlockState] = field(default_factory=dict)

    def to_dict(self):
        group = self.current_group
        code = self.team.code
        return {
            'team': self.team.to_dict(),
            'current_group': {
                'id': group.id,
                'name': group.name,
                'color': group.color,
                'routing': group.routing,
                'navigation': group.navigation,
            } if group else None,
            'must_check_out': self.must_check_out,
            'blocking_location': self.blocking_location.to_dict() if self.blocking_location else None,
            'next_locations': [loc.to_dict() for loc in self.next_locations],
            'completed_locations': [loc.to_dict() for loc in self.completed_locations],
            'can_advance_early': self.can_advance_early,
            'blocks': [b.to_player_dict(code, self.block_states.get(b.id)) for b in self.blocks],
            'block_states': {k: s.to_dict() for k, s in self.block_states.items()},
            'clue_blocks': [b.to_player_dict(code, self.clue_states.get(b.id)) for b in self.clue_blocks],
            'clue_states': {k: s.to_dict() for k, s in self.clue_states.items()},
        }


class NavigationService:
    def __init__(self, block_service: Optional[BlockService] = None):
        self.blocks = block_service or BlockService()

    def settings_for(self, team: Team) -> InstanceSettings:
        settings = team.instance.settings if team.instance else None
        return settings or InstanceSettings(instance_id=team.instance_id)

    def completed_location_ids(self, team: Team, session=None) -> List[str]:
        return [ci.location_id for ci in repositories.find_check_ins(team, session=session)]

    def _current_group(self, team: Team, completed) -> GameStructure:
        structure = team.instance.structure
        group_id = compute_current_group(structure, completed, team.skipped_group_ids or [])
        if not group_id:
            raise AllLocationsVisited()
        return find_group_by_id(structure, group_id)

    def _next_location_ids(self, team: Team, completed) -> List[str]:
        group = self._current_group(team, completed)
        return get_available_location_ids(team.instance.structure, group.id, completed, team.code)

    def get_next_locations(self, team: Team, session=None) -> List[Location]:
        completed = self.completed_location_ids(team, session=session)
        return repositories.find_locations_by_ids(self._next_location_ids(team, completed), session=session)

    def is_valid_location(self, team: Team, marker_code: str, session=None) -> bool:
        marker_code = normalise_code(marker_code)
        try:
            locations = self.get_next_locations(team, session=session)
        except AllLocationsVisited:
            return False
        return any(loc.marker_id == marker_code for loc in locations)

    def get_player_navigation_view(self, team: Team) -> PlayerNavigationView:
        view = PlayerNavigationView(team=team, settings=self.settings_for(team))

        if team.must_check_out:
            view.must_check_out = True
            view.blocking_location = db.session.get(Location, team.must_check_out)
            if view.blocking_location is not None:
                view.blocks, view.block_states = self.blocks.find_by_owner_and_team_with_state(
                    view.blocking_location.id, team.code, CONTEXT_LOCATION_CONTENT)
            return view

        completed = self.completed_location_ids(team)
        group = self._current_group(team, completed)
        structure = team.instance.structure
        view.current_group = group
        view.next_locations = repositories.find_locations_by_ids(
            get_available_location_ids(structure, group.id, completed, team.code))
        view.can_advance_early = can_advance_early(group, completed)

        if group.navigation == NAV_CUSTOM and view.next_locations:
            view.clue_blocks, view.clue_states = self.blocks.find_by_owners_and_team_with_state(
                [loc.id for loc in view.next_locations], team.code, CONTEXT_LOCATION_CLUES)

        if group.navigation == NAV_TASKS or group.routing == ROUTE_SCAVENGER_HUNT:
            done = set(completed)
            # declaration order, restricted to the current group
            view.completed_locations = repositories.find_locations_by_ids(
                [loc_id for loc_id in get_all_location_ids(group) if loc_id in done])
        return view

    def get_preview_navigation_view(self, team: Team, preview_location_id: str) -> PlayerNavigationView:
        """Admin preview: the location's group is current and the location is the only candidate."""
        group = find_group_containing_location(team.instance.structure, preview_location_id)
        if group is None:
            raise LocationNotFound()
        location = db.session.get(Location, preview_location_id)
        if location is None or location.instance_id != team.instance_id:
            raise LocationNotFound()
        view = PlayerNavigationView(team=team, settings=self.settings_for(team), current_group=group,
                                    next_locations=[location])
        if group.navigation == NAV_CUSTOM:
            view.clue_blocks, view.clue_states = self.blocks.find_by_owner_and_team_with_state(
                location.id, '', CONTEXT_LOCATION_CLUES)
        return view

    def skip_current_group(self, team: Team, cancel: Optional[Event] = None) -> str:
        """Advance early past a group whose minimum is met."""
        with transaction(cancel) as session:
            completed = self.completed_location_ids(team, session=session)
            group = self._current_group(team, completed)
            if not can_advance_early(group, completed):
                raise CannotAdvance()
            team.skipped_group_ids = list(team.skipped_group_ids or []) + [group.id]
            session.add(team)
        current_app.logger.info(f"[navigation] team={team.code} skipped group={group.id}")
        return group.id
