from threading import Event
from typing import Dict, List, Optional, Sequence, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from waypoint import db, repositories
from waypoint.blocks import (
    CONTEXT_LOCATION_CONTENT,
    BaseBlock,
    can_block_be_used_in_context,
    create_from_base_block,
    new_block_of_type,
)
from waypoint.transactions import transaction
from waypoint.errors import BlockNotFound, IntegrityFailure, InvalidInput
from waypoint.models import Block, BlockState, Location


def new_mock_state(block_id: str, team_code: str = '') -> BlockState:
    """A transient state that is never added to a session."""
    return BlockState(block_id=block_id, team_code=team_code, data={},
                      is_complete=False, points_awarded=0)


class BlockService:
    """Content blocks for locations and instance pages, and per-team state."""

    def get_by_id(self, block_id: str, session=None) -> Tuple[Block, BaseBlock]:
        row = (session or db.session).get(Block, block_id)
        if row is None:
            raise BlockNotFound()
        return row, create_from_base_block(row)

    def owner_instance_id(self, row: Block, session=None) -> str:
        """Instance a block belongs to; its owner is a location or the instance itself."""
        location = (session or db.session).get(Location, row.owner_id)
        return location.instance_id if location is not None else row.owner_id

    def find_by_owner_id_and_context(self, owner_id: str, context: str) -> List[BaseBlock]:
        return [create_from_base_block(row) for row in repositories.find_blocks_by_owner(owner_id, context)]

    def find_by_owner_and_team_with_state(
        self, owner_id: str, team_code: str, context: str = CONTEXT_LOCATION_CONTENT, session=None,
    ) -> Tuple[List[BaseBlock], Dict[str, BlockState]]:
        rows = repositories.find_blocks_by_owner(owner_id, context, session=session)
        return self._with_states(rows, team_code, session)

    def find_by_owners_and_team_with_state(
        self, owner_ids: Sequence[str], team_code: str, context: str, session=None,
    ) -> Tuple[List[BaseBlock], Dict[str, BlockState]]:
        rows = repositories.find_blocks_by_owners(owner_ids, context, session=session)
        return self._with_states(rows, team_code, session)

    def _with_states(self, rows, team_code, session):
        states = repositories.find_states(team_code, [row.id for row in rows], session=session)
        created = []
        for row in rows:
            if row.id in states:
                continue
            state = new_mock_state(row.id, team_code)
            # Only validating blocks for a real team get a persisted state
            if row.validation_required and team_code:
                created.append(state)
            states[row.id] = state

        if created:
            try:
                self._persist_states(created, session)
            except (IntegrityError, IntegrityFailure):
                # another request materialised them first
                current_app.logger.info(f"[blocks] team={team_code} states already materialised, re-reading")
                states.update(repositories.find_states(team_code, [s.block_id for s in created], session=session))
        return [create_from_base_block(row) for row in rows], states

    def _persist_states(self, created, session):
        if session is None:
            with transaction() as s:
                s.add_all(created)
            return
        with session.begin_nested():
            session.add_all(created)

    def check_validation_required_for_check_in(self, location_id: str, team_code: str, session=None) -> bool:
        """True while any validating block at the location is unfinished for the team."""
        rows = [row for row in repositories.find_blocks_by_owner(location_id, CONTEXT_LOCATION_CONTENT, session=session)
                if row.validation_required]
        if not rows:
            return False
        states = repositories.find_states(team_code, [row.id for row in rows], session=session)
        return any(row.id not in states or not states[row.id].is_complete for row in rows)

    def new_block(self, owner_id: str, context: str, block_type: str, cancel: Optional[Event] = None) -> Block:
        if not can_block_be_used_in_context(block_type, context):
            raise InvalidInput(f'block type {block_type} cannot be used in {context}')
        typed = new_block_of_type(block_type)
        with transaction(cancel) as session:
            row = Block(
                owner_id=owner_id,
                context=context,
                type=block_type,
                ordering=repositories.next_block_ordering(owner_id, context, session=session),
                data=typed.get_data(),
                points=typed.points,
                validation_required=typed.requires_validation,
            )
            session.add(row)
        current_app.logger.info(f"[blocks] created {block_type} block={row.id} owner={owner_id} context={context}")
        return row

    def update_block(self, block_id: str, form: dict, cancel: Optional[Event] = None) -> Block:
        """Route admin form input through the block type's own schema."""
        with transaction(cancel) as session:
            row, typed = self.get_by_id(block_id, session=session)
            typed.update_block_data(form)
            row.data = typed.get_data()
            row.points = typed.points
        return row

    def reorder_blocks(self, block_ids: Sequence[str], cancel: Optional[Event] = None) -> None:
        with transaction(cancel) as session:
            repositories.reorder_blocks(block_ids, session=session)

    def delete_block(self, block_id: str, cancel: Optional[Event] = None) -> None:
        from waypoint.services.deletion import DeleteService
        DeleteService().delete_block(block_id, cancel=cancel)

    def get_block_state(self, block_id: str, team_code: str) -> Optional[BlockState]:
        return repositories.find_state(block_id, team_code)

    def reset_state(self, block_id: str, team_code: str, cancel: Optional[Event] = None) -> None:
        """Delete a team's state so the block can be attempted again."""
        with transaction(cancel) as session:
            state = repositories.find_state(block_id, team_code, session=session)
            if state is not None:
                session.delete(state)
