"""Narrow queries and conditional writes over the models.

Every function takes an optional ``session`` (defaulting to the request
session) and never commits; the calling service owns the transaction.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from waypoint import db
from waypoint.errors import AlreadyCheckedIn
from waypoint.models import (
    Block,
    BlockState,
    CheckIn,
    CreditAdjustment,
    CreditPurchase,
    Instance,
    Location,
    Team,
    TeamStartLog,
    User,
)


def _session(session):
    return session if session is not None else db.session


# ---- Users and credits ----

def debit_one_credit(user_id: str, session=None) -> Optional[str]:
    """Take one credit, free first. Returns the column debited or None.

    The WHERE guard on each UPDATE is what prevents overdraw; concurrent
    callers serialise on the row lock.
    """
    s = _session(session)
    result = s.execute(
        update(User)
        .where(User.id == user_id, User.free_credits > 0)
        .values(free_credits=User.free_credits - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return 'free'
    result = s.execute(
        update(User)
        .where(User.id == user_id, User.paid_credits > 0)
        .values(paid_credits=User.paid_credits - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return 'paid'
    return None


def add_user_credits(user_id: str, free: int = 0, paid: int = 0, session=None) -> int:
    result = _session(session).execute(
        update(User)
        .where(User.id == user_id)
        .values(free_credits=User.free_credits + free, paid_credits=User.paid_credits + paid)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def insert_adjustment(user_id: str, credits: int, reason: str, purchase_id: Optional[str] = None,
                      created_at: Optional[datetime] = None, session=None) -> CreditAdjustment:
    adjustment = CreditAdjustment(user_id=user_id, credits=credits, reason=reason,
                                  credit_purchase_id=purchase_id)
    if created_at is not None:
        adjustment.created_at = created_at
    _session(session).add(adjustment)
    return adjustment


def insert_team_start_log(user_id: str, team_id: str, instance_id: str,
                          created_at: Optional[datetime] = None, session=None) -> TeamStartLog:
    log = TeamStartLog(user_id=user_id, team_id=team_id, instance_id=instance_id)
    if created_at is not None:
        log.created_at = created_at
    _session(session).add(log)
    return log


def find_latest_adjustment_with_prefix(prefix: str, session=None) -> Optional[CreditAdjustment]:
    return _session(session).scalars(
        select(CreditAdjustment)
        .where(CreditAdjustment.reason.startswith(prefix))
        .order_by(CreditAdjustment.created_at.desc())
        .limit(1)
    ).first()


def find_adjustments(user_id: str, limit: int = 50, offset: int = 0, session=None) -> List[CreditAdjustment]:
    return list(_session(session).scalars(
        select(CreditAdjustment)
        .where(CreditAdjustment.user_id == user_id)
        .order_by(CreditAdjustment.created_at.desc(), CreditAdjustment.id)
        .limit(limit)
        .offset(offset)
    ))


def count_adjustments(user_id: str, session=None) -> int:
    return _session(session).scalar(
        select(func.count()).select_from(CreditAdjustment).where(CreditAdjustment.user_id == user_id)
    ) or 0


def find_team_start_logs(user_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None,
                         session=None) -> List[TeamStartLog]:
    stmt = select(TeamStartLog).where(TeamStartLog.user_id == user_id)
    if start is not None:
        stmt = stmt.where(TeamStartLog.created_at >= start)
    if end is not None:
        stmt = stmt.where(TeamStartLog.created_at < end)
    return list(_session(session).scalars(stmt.order_by(TeamStartLog.created_at)))


def find_user_ids_for_topup(current_credits: int, is_educator: bool, session=None) -> List[str]:
    return list(_session(session).scalars(
        select(User.id)
        .where(User.free_credits == current_credits, User.is_educator == is_educator)
        .with_for_update()
    ))


def set_free_credits(user_ids: Sequence[str], current_credits: int, ceiling: int, session=None) -> int:
    if not user_ids:
        return 0
    result = _session(session).execute(
        update(User)
        .where(User.id.in_(user_ids), User.free_credits == current_credits)
        .values(free_credits=ceiling)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ---- Purchases ----

def find_purchase_by_session_id(stripe_session_id: str, session=None) -> Optional[CreditPurchase]:
    return _session(session).scalars(
        select(CreditPurchase).where(CreditPurchase.stripe_session_id == stripe_session_id)
    ).first()


def complete_purchase(purchase_id: str, payment_id: Optional[str], receipt_url: Optional[str],
                      customer_id: Optional[str], session=None) -> int:
    """Flip a purchase to completed unless it already is; 0 rows means someone got there first."""
    values = {'status': 'completed', 'stripe_payment_id': payment_id, 'receipt_url': receipt_url}
    if customer_id:
        values['stripe_customer_id'] = customer_id
    result = _session(session).execute(
        update(CreditPurchase)
        .where(CreditPurchase.id == purchase_id, CreditPurchase.status != 'completed')
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def fail_purchase(stripe_session_id: str, session=None) -> int:
    result = _session(session).execute(
        update(CreditPurchase)
        .where(CreditPurchase.stripe_session_id == stripe_session_id, CreditPurchase.status == 'pending')
        .values(status='failed')
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def delete_stale_purchases(cutoff: datetime, session=None) -> int:
    result = _session(session).execute(
        delete(CreditPurchase)
        .where(CreditPurchase.status.in_(('pending', 'failed')), CreditPurchase.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ---- Locations ----

def find_location_by_marker(instance_id: str, marker_code: str, session=None) -> Optional[Location]:
    return _session(session).scalars(
        select(Location).where(Location.instance_id == instance_id, Location.marker_id == marker_code)
    ).first()


def find_locations_by_ids(location_ids: Sequence[str], session=None) -> List[Location]:
    """Load locations keeping the order of ``location_ids``."""
    if not location_ids:
        return []
    rows = _session(session).scalars(select(Location).where(Location.id.in_(list(location_ids))))
    by_id = {loc.id: loc for loc in rows}
    return [by_id[loc_id] for loc_id in location_ids if loc_id in by_id]


def find_locations_by_instance(instance_id: str, session=None) -> List[Location]:
    return list(_session(session).scalars(
        select(Location).where(Location.instance_id == instance_id).order_by(Location.order)
    ))


def increment_visitors(location_id: str, session=None) -> None:
    _session(session).execute(
        update(Location)
        .where(Location.id == location_id)
        .values(total_visits=Location.total_visits + 1, current_count=Location.current_count + 1)
        .execution_options(synchronize_session=False)
    )


def decrement_visitors(location_id: str, session=None) -> None:
    _session(session).execute(
        update(Location)
        .where(Location.id == location_id, Location.current_count > 0)
        .values(current_count=Location.current_count - 1)
        .execution_options(synchronize_session=False)
    )


def record_visit_duration(location_id: str, avg_duration: float, session=None) -> None:
    _session(session).execute(
        update(Location)
        .where(Location.id == location_id)
        .values(avg_duration=avg_duration)
        .execution_options(synchronize_session=False)
    )


# ---- Teams and check-ins ----

def find_team_by_code(code: str, instance_id: Optional[str] = None, session=None) -> Optional[Team]:
    stmt = select(Team).where(Team.code == code)
    if instance_id is not None:
        stmt = stmt.where(Team.instance_id == instance_id)
    return _session(session).scalars(stmt).first()


def mark_team_started(team_id: str, session=None) -> int:
    result = _session(session).execute(
        update(Team)
        .where(Team.id == team_id, Team.has_started.is_(False))
        .values(has_started=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def add_team_points(team_id: str, points: int, session=None) -> None:
    if not points:
        return
    _session(session).execute(
        update(Team)
        .where(Team.id == team_id)
        .values(points=Team.points + points)
        .execution_options(synchronize_session=False)
    )


def find_check_ins(team: Team, session=None) -> List[CheckIn]:
    return list(_session(session).scalars(
        select(CheckIn)
        .where(CheckIn.team_code == team.code, CheckIn.instance_id == team.instance_id)
        .order_by(CheckIn.time_in, CheckIn.id)
    ))


def find_check_in(team_code: str, location_id: str, session=None) -> Optional[CheckIn]:
    return _session(session).scalars(
        select(CheckIn).where(CheckIn.team_code == team_code, CheckIn.location_id == location_id)
    ).first()


def log_check_in(check_in: CheckIn, session=None) -> CheckIn:
    """Insert a check-in; the unique index on (team, location) is the guard."""
    s = _session(session)
    s.add(check_in)
    try:
        s.flush()
    except IntegrityError as exc:
        raise AlreadyCheckedIn() from exc
    return check_in


def mark_check_in_blocks_completed(team_code: str, location_id: str, session=None) -> int:
    result = _session(session).execute(
        update(CheckIn)
        .where(CheckIn.team_code == team_code, CheckIn.location_id == location_id,
               CheckIn.blocks_completed.is_(False))
        .values(blocks_completed=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ---- Blocks ----

def find_blocks_by_owner(owner_id: str, context: Optional[str] = None, session=None) -> List[Block]:
    stmt = select(Block).where(Block.owner_id == owner_id)
    if context is not None:
        stmt = stmt.where(Block.context == context)
    return list(_session(session).scalars(stmt.order_by(Block.ordering)))


def find_blocks_by_owners(owner_ids: Sequence[str], context: str, session=None) -> List[Block]:
    if not owner_ids:
        return []
    return list(_session(session).scalars(
        select(Block)
        .where(Block.owner_id.in_(list(owner_ids)), Block.context == context)
        .order_by(Block.owner_id, Block.ordering)
    ))


def next_block_ordering(owner_id: str, context: str, session=None) -> int:
    current = _session(session).scalar(
        select(func.max(Block.ordering)).where(Block.owner_id == owner_id, Block.context == context)
    )
    return 0 if current is None else current + 1


def reorder_blocks(block_ids: Sequence[str], session=None) -> None:
    """Write a dense ordering matching the position in ``block_ids``."""
    s = _session(session)
    for position, block_id in enumerate(block_ids):
        s.execute(
            update(Block)
            .where(Block.id == block_id)
            .values(ordering=position)
            .execution_options(synchronize_session=False)
        )


def find_states(team_code: str, block_ids: Iterable[str], session=None) -> Dict[str, BlockState]:
    ids = list(block_ids)
    if not ids or not team_code:
        return {}
    rows = _session(session).scalars(
        select(BlockState).where(BlockState.team_code == team_code, BlockState.block_id.in_(ids))
    )
    return {state.block_id: state for state in rows}


def find_state(block_id: str, team_code: str, session=None) -> Optional[BlockState]:
    return _session(session).get(BlockState, (block_id, team_code))


# ---- Batch deletes ----

def delete_where_in(model, column, values: Iterable, session=None) -> int:
    """Delete every ``model`` row whose ``column`` is in ``values``."""
    values = list(values)
    if not values:
        return 0
    result = _session(session).execute(
        delete(model).where(column.in_(values)).execution_options(synchronize_session=False)
    )
    return result.rowcount


def select_ids(column, where_column, values: Iterable, session=None) -> List:
    values = list(values)
    if not values:
        return []
    return list(_session(session).scalars(select(column).where(where_column.in_(values))))


def find_instance_ids_for_user(user_id: str, session=None) -> List[str]:
    return select_ids(Instance.id, Instance.user_id, [user_id], session=session)
