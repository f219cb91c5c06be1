"""Credit ledger: balances, the team-start debit and the scheduled jobs.

Every balance change writes a ``CreditAdjustment`` in the same transaction,
so the ledger always sums to the balance.
"""
from datetime import date, datetime, timedelta
from threading import Event
from typing import List, Optional, Tuple

from flask import current_app

from waypoint import db, repositories
from waypoint.clock import Clock, utcnow
from waypoint.transactions import transaction
from waypoint.errors import InsufficientCredits, InvalidInput, NotFound
from waypoint.models import CreditAdjustment, User

REASON_TEAM_START = 'team-start'
REASON_PURCHASE = 'purchase'
REGULAR_TOPUP_PREFIX = 'Monthly free credit top-up for regular user'
EDUCATOR_TOPUP_PREFIX = 'Monthly free credit top-up for educator'

GROUP_BY_DAY = 'day'
GROUP_BY_WEEK = 'week'
GROUP_BY_MONTH = 'month'


def _period_start(day: date, group_by: str) -> date:
    if group_by == GROUP_BY_WEEK:
        return day - timedelta(days=day.weekday())
    if group_by == GROUP_BY_MONTH:
        return day.replace(day=1)
    return day


def _next_period(start: date, group_by: str) -> date:
    if group_by == GROUP_BY_WEEK:
        return start + timedelta(days=7)
    if group_by == GROUP_BY_MONTH:
        return date(start.year + (start.month == 12), start.month % 12 + 1, 1)
    return start + timedelta(days=1)


def _previous_period(start: date, group_by: str) -> date:
    if group_by == GROUP_BY_WEEK:
        return start - timedelta(days=7)
    if group_by == GROUP_BY_MONTH:
        return (start - timedelta(days=1)).replace(day=1)
    return start - timedelta(days=1)


class CreditService:
    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    def get_credit_balance(self, user_id: str) -> Tuple[int, int]:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFound('user not found')
        return user.free_credits, user.paid_credits

    def add_credits(self, user_id: str, free: int = 0, paid: int = 0, reason: str = '',
                    cancel: Optional[Event] = None) -> CreditAdjustment:
        """Grant free OR paid credits, never both, with one ledger row."""
        if free < 0 or paid < 0:
            raise InvalidInput('credits cannot be negative')
        if bool(free) == bool(paid):
            raise InvalidInput('exactly one of free or paid credits must be set')
        if not reason:
            raise InvalidInput('a reason is required')
        with transaction(cancel) as session:
            if repositories.add_user_credits(user_id, free=free, paid=paid, session=session) != 1:
                raise NotFound('user not found')
            adjustment = repositories.insert_adjustment(user_id, free + paid, reason,
                                                        created_at=self.clock(), session=session)
        current_app.logger.info(f"[credits-add] user={user_id} free={free} paid={paid} reason={reason!r}")
        return adjustment

    def deduct_credit_for_team_start(self, user_id: str, team_id: str, instance_id: str, session=None) -> str:
        """Debit one credit inside the caller's transaction.

        The conditional UPDATE runs first so concurrent starts serialise on
        the user row; returns which balance paid for it.
        """
        session = session if session is not None else db.session
        source = repositories.debit_one_credit(user_id, session=session)
        if source is None:
            current_app.logger.info(f"[credits-deduct] user={user_id} team={team_id} insufficient credits")
            raise InsufficientCredits()
        now = self.clock()
        repositories.insert_adjustment(user_id, -1, REASON_TEAM_START, created_at=now, session=session)
        repositories.insert_team_start_log(user_id, team_id, instance_id, created_at=now, session=session)
        current_app.logger.info(f"[credits-deduct] user={user_id} team={team_id} source={source}")
        return source

    def get_credit_adjustments(self, user_id: str, limit: int = 50, offset: int = 0) -> Tuple[List[CreditAdjustment], int]:
        if limit < 1 or offset < 0:
            raise InvalidInput('invalid pagination')
        return (repositories.find_adjustments(user_id, limit=limit, offset=offset),
                repositories.count_adjustments(user_id))

    def get_team_start_logs_summary(self, user_id: str, group_by: str = '', start: Optional[datetime] = None,
                                    end: Optional[datetime] = None) -> List[dict]:
        """Team starts per period, zero-filled, with a ratio to the busiest period."""
        group_by = group_by or GROUP_BY_DAY
        if group_by not in (GROUP_BY_DAY, GROUP_BY_WEEK, GROUP_BY_MONTH):
            raise InvalidInput(f'unknown grouping {group_by!r}')

        logs = repositories.find_team_start_logs(user_id, start=start, end=end)
        counts = {}
        for log in logs:
            key = _period_start(log.created_at.date(), group_by)
            counts[key] = counts.get(key, 0) + 1

        if start is not None:
            first = _period_start(start.date(), group_by)
        elif counts:
            first = _previous_period(min(counts), group_by)
        else:
            return []
        if end is not None:
            last = _period_start(end.date(), group_by)
        elif counts:
            last = _next_period(max(counts), group_by)
        else:
            last = _period_start(self.clock().date(), group_by)

        busiest = max(counts.values(), default=0)
        summary = []
        period = first
        while period <= last:
            count = counts.get(period, 0)
            summary.append({
                'period': period.isoformat(),
                'count': count,
                'ratio': round(count / busiest, 4) if busiest else 0.0,
            })
            period = _next_period(period, group_by)
        return summary


class MonthlyCreditTopupService:
    """Raise free credits to the class ceiling once per calendar month."""

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    def _already_ran(self, prefix: str, now: datetime) -> bool:
        latest = repositories.find_latest_adjustment_with_prefix(prefix)
        return latest is not None and (latest.created_at.year, latest.created_at.month) == (now.year, now.month)

    def top_up_credits(self, cancel: Optional[Event] = None) -> int:
        now = self.clock()
        classes = (
            (False, REGULAR_TOPUP_PREFIX, current_app.config.get('REGULAR_USER_FREE_CREDITS', 10)),
            (True, EDUCATOR_TOPUP_PREFIX, current_app.config.get('EDUCATOR_FREE_CREDITS', 50)),
        )
        total = 0
        for is_educator, prefix, ceiling in classes:
            if self._already_ran(prefix, now):
                current_app.logger.info(f"[credits-topup] {prefix!r} already applied for {now:%Y-%m}")
                continue
            total += self._top_up_class(is_educator, prefix, ceiling, now, cancel)
        return total

    def _top_up_class(self, is_educator: bool, prefix: str, ceiling: int, now: datetime,
                      cancel: Optional[Event]) -> int:
        reason = f"{prefix}: topped up to {ceiling}"
        topped = 0
        for current in range(0, ceiling):
            with transaction(cancel) as session:
                user_ids = repositories.find_user_ids_for_topup(current, is_educator, session=session)
                if not user_ids:
                    continue
                for user_id in user_ids:
                    repositories.insert_adjustment(user_id, ceiling - current, reason,
                                                   created_at=now, session=session)
                repositories.set_free_credits(user_ids, current, ceiling, session=session)
            topped += len(user_ids)
        current_app.logger.info(f"[credits-topup] educator={is_educator} ceiling={ceiling} users={topped}")
        return topped


class StalePurchaseCleanupService:
    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    def cleanup_stale_purchases(self, cancel: Optional[Event] = None) -> int:
        days = current_app.config.get('STALE_PURCHASE_DAYS', 7)
        cutoff = self.clock() - timedelta(days=days)
        with transaction(cancel) as session:
            deleted = repositories.delete_stale_purchases(cutoff, session=session)
        current_app.logger.info(f"[cleanup] deleted {deleted} stale purchases older than {cutoff:%Y-%m-%d}")
        return deleted
