"""Cascading deletes.

Each public method removes a row and everything hanging off it inside one
transaction, using batch deletes by foreign-key sets. Files behind deleted
image blocks are removed only after the commit. Deleting something that is
already gone is a success.
"""
from threading import Event
from typing import List, Optional, Sequence

from flask import current_app
from sqlalchemy import delete, select, update

from waypoint import repositories
from waypoint.transactions import transaction
from waypoint.models import (
    Block,
    BlockState,
    CheckIn,
    CreditAdjustment,
    CreditPurchase,
    Instance,
    InstanceSettings,
    Location,
    Team,
    TeamStartLog,
    User,
)
from waypoint.services.structure import iter_groups
from waypoint.uploads import schedule_cleanup


def _image_urls(blocks: Sequence[Block]) -> List[str]:
    return [(b.data or {}).get('url', '') for b in blocks if b.type == 'image' and (b.data or {}).get('url')]


class DeleteService:
    def _delete_blocks(self, session, owner_ids: Sequence[str]) -> List[str]:
        """Delete blocks of the owners and every team's state on them; returns image URLs."""
        owner_ids = list(owner_ids)
        if not owner_ids:
            return []
        blocks = list(session.scalars(select(Block).where(Block.owner_id.in_(owner_ids))))
        block_ids = [b.id for b in blocks]
        repositories.delete_where_in(BlockState, BlockState.block_id, block_ids, session=session)
        repositories.delete_where_in(Block, Block.id, block_ids, session=session)
        return _image_urls(blocks)

    def _delete_instances(self, session, instance_ids: Sequence[str]) -> List[str]:
        instance_ids = list(instance_ids)
        if not instance_ids:
            return []
        location_ids = repositories.select_ids(Location.id, Location.instance_id, instance_ids, session=session)
        urls = self._delete_blocks(session, instance_ids + location_ids)
        repositories.delete_where_in(CheckIn, CheckIn.instance_id, instance_ids, session=session)
        repositories.delete_where_in(Team, Team.instance_id, instance_ids, session=session)
        repositories.delete_where_in(Location, Location.id, location_ids, session=session)
        repositories.delete_where_in(InstanceSettings, InstanceSettings.instance_id, instance_ids, session=session)
        repositories.delete_where_in(Instance, Instance.id, instance_ids, session=session)
        return urls

    def _after_commit(self, urls: List[str]) -> None:
        if urls:
            schedule_cleanup(current_app._get_current_object(), urls)

    def delete_user(self, user_id: str, cancel: Optional[Event] = None) -> None:
        with transaction(cancel) as session:
            instance_ids = repositories.find_instance_ids_for_user(user_id, session=session)
            urls = self._delete_instances(session, instance_ids)
            repositories.delete_where_in(CreditAdjustment, CreditAdjustment.user_id, [user_id], session=session)
            repositories.delete_where_in(CreditPurchase, CreditPurchase.user_id, [user_id], session=session)
            repositories.delete_where_in(TeamStartLog, TeamStartLog.user_id, [user_id], session=session)
            repositories.delete_where_in(User, User.id, [user_id], session=session)
        current_app.logger.info(f"[delete] user={user_id} instances={len(instance_ids)}")
        self._after_commit(urls)

    def delete_instance(self, instance_id: str, cancel: Optional[Event] = None) -> None:
        with transaction(cancel) as session:
            urls = self._delete_instances(session, [instance_id])
        current_app.logger.info(f"[delete] instance={instance_id}")
        self._after_commit(urls)

    def delete_location(self, location_id: str, cancel: Optional[Event] = None) -> None:
        with transaction(cancel) as session:
            location = session.get(Location, location_id)
            if location is None:
                return
            instance_id = location.instance_id
            urls = self._delete_blocks(session, [location_id])
            repositories.delete_where_in(CheckIn, CheckIn.location_id, [location_id], session=session)
            session.execute(
                update(Team)
                .where(Team.instance_id == instance_id, Team.must_check_out == location_id)
                .values(must_check_out='')
                .execution_options(synchronize_session=False)
            )
            repositories.delete_where_in(Location, Location.id, [location_id], session=session)

            instance = session.get(Instance, instance_id)
            structure = instance.structure if instance else None
            if structure is not None:
                for group in iter_groups(structure):
                    if location_id in group.location_ids:
                        group.location_ids = [i for i in group.location_ids if i != location_id]
                instance.game_structure = structure.to_dict()

            remaining = [loc for loc in repositories.find_locations_by_instance(instance_id, session=session)
                         if loc.id != location_id]
            for position, loc in enumerate(remaining):
                loc.order = position
        current_app.logger.info(f"[delete] location={location_id}")
        self._after_commit(urls)

    def delete_team(self, team_id: str, cancel: Optional[Event] = None) -> None:
        with transaction(cancel) as session:
            team = session.get(Team, team_id)
            if team is None:
                return
            if team.must_check_out:
                repositories.decrement_visitors(team.must_check_out, session=session)
            session.execute(
                delete(CheckIn)
                .where(CheckIn.team_code == team.code, CheckIn.instance_id == team.instance_id)
                .execution_options(synchronize_session=False)
            )
            location_ids = repositories.select_ids(Location.id, Location.instance_id, [team.instance_id],
                                                   session=session)
            block_ids = repositories.select_ids(Block.id, Block.owner_id, [team.instance_id] + location_ids,
                                                session=session)
            if block_ids:
                session.execute(
                    delete(BlockState)
                    .where(BlockState.team_code == team.code, BlockState.block_id.in_(block_ids))
                    .execution_options(synchronize_session=False)
                )
            repositories.delete_where_in(Team, Team.id, [team_id], session=session)
        current_app.logger.info(f"[delete] team={team_id}")

    def delete_block(self, block_id: str, cancel: Optional[Event] = None) -> None:
        with transaction(cancel) as session:
            block = session.get(Block, block_id)
            if block is None:
                return
            owner_id, context = block.owner_id, block.context
            urls = _image_urls([block])
            repositories.delete_where_in(BlockState, BlockState.block_id, [block_id], session=session)
            repositories.delete_where_in(Block, Block.id, [block_id], session=session)
            remaining = [b.id for b in repositories.find_blocks_by_owner(owner_id, context, session=session)
                         if b.id != block_id]
            repositories.reorder_blocks(remaining, session=session)
        current_app.logger.info(f"[delete] block={block_id}")
        self._after_commit(urls)
