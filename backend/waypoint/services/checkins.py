from threading import Event
from typing import Optional, Tuple

from flask import current_app

from waypoint import repositories
from waypoint.blocks import BaseBlock, Mode
from waypoint.clock import Clock, utcnow
from waypoint.transactions import transaction
from waypoint.errors import (
    AlreadyCheckedIn,
    BlockNotFound,
    CheckOutAtWrongLocation,
    InvalidLocation,
    LocationNotFound,
    UnfinishedCheckIn,
    UnnecessaryCheckOut,
)
from waypoint.models import BlockState, CheckIn, Team
from waypoint.services.blocks import BlockService, new_mock_state
from waypoint.services.navigation import NavigationService, normalise_code

# Bonus as a percent of base points for the 1st, 2nd and 3rd visit
BONUS_TIERS = (100, 50, 20)


def _tier(tiers, previous_visits: int) -> int:
    return tiers[previous_visits] if 0 <= previous_visits < len(tiers) else 0


def check_in_points(points: int, previous_visits: int, must_check_out: bool, enable_bonus: bool) -> int:
    """Points granted at check-in time for the visit after ``previous_visits``.

    Check-in only: 2x, 1.5x, 1.2x then 1x (floored) with bonuses on.
    Check-in and out: only the bonus part (1x, 0.5x, 0.2x then 0); the base
    points follow at check-out.
    """
    if must_check_out:
        if not enable_bonus:
            return 0
        return points * _tier(BONUS_TIERS, previous_visits) // 100
    if not enable_bonus:
        return points
    return points + points * _tier(BONUS_TIERS, previous_visits) // 100


class CheckInService:
    def __init__(self, navigation: Optional[NavigationService] = None,
                 block_service: Optional[BlockService] = None, clock: Clock = utcnow):
        self.blocks = block_service or BlockService()
        self.navigation = navigation or NavigationService(self.blocks)
        self.clock = clock

    def check_in(self, team: Team, location_code: str, cancel: Optional[Event] = None) -> CheckIn:
        code = normalise_code(location_code)
        with transaction(cancel) as session:
            if team.must_check_out:
                raise AlreadyCheckedIn()

            location = repositories.find_location_by_marker(team.instance_id, code, session=session)
            if location is None:
                raise LocationNotFound()

            if repositories.find_check_in(team.code, location.id, session=session) is not None:
                raise AlreadyCheckedIn()

            if not self.navigation.is_valid_location(team, code, session=session):
                raise InvalidLocation()

            validation_required = self.blocks.check_validation_required_for_check_in(
                location.id, team.code, session=session)

            settings = self.navigation.settings_for(team)
            points = 0
            if settings.enable_points:
                points = check_in_points(location.points, location.total_visits,
                                         settings.must_check_out, settings.enable_bonus_points)

            check_in = CheckIn(
                instance_id=team.instance_id,
                team_code=team.code,
                location_id=location.id,
                time_in=self.clock(),
                must_check_out=settings.must_check_out,
                points=points,
                blocks_completed=not validation_required,
            )
            repositories.log_check_in(check_in, session=session)
            repositories.increment_visitors(location.id, session=session)
            repositories.add_team_points(team.id, points, session=session)
            if settings.must_check_out:
                team.must_check_out = location.id
                session.add(team)

        current_app.logger.info(
            f"[checkin] team={team.code} location={location.id} points={points} "
            f"must_check_out={settings.must_check_out}")
        return check_in

    def check_out(self, team: Team, location_code: str, cancel: Optional[Event] = None) -> CheckIn:
        code = normalise_code(location_code)
        with transaction(cancel) as session:
            if not team.must_check_out:
                raise UnnecessaryCheckOut()

            location = repositories.find_location_by_marker(team.instance_id, code, session=session)
            if location is None or location.id != team.must_check_out:
                raise CheckOutAtWrongLocation()

            if self.blocks.check_validation_required_for_check_in(location.id, team.code, session=session):
                raise UnfinishedCheckIn()

            check_in = repositories.find_check_in(team.code, location.id, session=session)
            if check_in is None:
                raise UnnecessaryCheckOut()

            settings = self.navigation.settings_for(team)
            points = location.points if settings.enable_points else 0
            now = self.clock()
            check_in.time_out = max(now, check_in.time_in)
            check_in.points = (check_in.points or 0) + points
            check_in.blocks_completed = True

            seconds = (check_in.time_out - check_in.time_in).total_seconds()
            visits = location.total_visits or 0
            avg_duration = ((location.avg_duration or 0.0) * visits + seconds) / (visits + 1)
            repositories.record_visit_duration(location.id, avg_duration, session=session)
            repositories.decrement_visitors(location.id, session=session)
            repositories.add_team_points(team.id, points, session=session)

            team.must_check_out = ''
            session.add(team)

        current_app.logger.info(f"[checkout] team={team.code} location={location.id} points={points}")
        return check_in

    def validate_and_update_block_state(
        self, team: Team, block_id: str, form: dict, mode: Mode = Mode.LIVE, cancel: Optional[Event] = None,
    ) -> Tuple[BlockState, BaseBlock]:
        """Judge a team's input for one block.

        PREVIEW always works on a fresh block and a transient state and
        persists nothing. LIVE is idempotent once the state is complete.
        """
        if mode is Mode.PREVIEW:
            _, block = self.blocks.get_by_id(block_id)
            state = new_mock_state(block_id, team.code if team is not None else '')
            block.validate_player_input(state, form)
            return state, block

        with transaction(cancel) as session:
            row, block = self.blocks.get_by_id(block_id, session=session)
            if self.blocks.owner_instance_id(row, session=session) != team.instance_id:
                raise BlockNotFound()
            state = repositories.find_state(block_id, team.code, session=session)
            if state is None:
                state = new_mock_state(block_id, team.code)
                session.add(state)
            elif state.is_complete:
                return state, block

            block.validate_player_input(state, form)
            session.add(state)

            if state.is_complete:
                repositories.add_team_points(team.id, row.points, session=session)
                if state.data and state.data.get('team_name') and block.type == 'team_name':
                    team.name = state.data['team_name']
                    session.add(team)
                session.flush()
                if not self.blocks.check_validation_required_for_check_in(row.owner_id, team.code, session=session):
                    repositories.mark_check_in_blocks_completed(team.code, row.owner_id, session=session)

        current_app.logger.info(
            f"[blocks] team={team.code} block={block_id} complete={state.is_complete}")
        return state, block
