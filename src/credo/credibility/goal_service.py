"""Goal logging: per-goal credibility gain and weekly progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credo.config import get_settings
from credo.credibility.account_service import get_account, ledger_entry
from credo.credibility.formulas import per_goal_gain
from credo.credibility.settlement_service import settle_due_weeks
from credo.credibility.week_utils import WeekClock, get_week_clock
from credo.db.dialect import upsert_insert
from credo.db.models import CredibilityAccount, GoalLog, UserStatistics
from credo.errors import StoreUnavailable, ValidationError
from credo.events import CREDIBILITY_CHANGED_CHANNEL, publish_event

logger = logging.getLogger(__name__)


@dataclass
class GoalLogResult:
    goal_log_id: int
    user_id: str
    week_iso: str
    credibility_gained: float
    credibility: float
    current_progress: int
    frequency: int
    weekly_goal_completed: bool
    duplicate: bool = False


def _validate_logged_at(logged_at: datetime, now: datetime, max_skew: timedelta) -> datetime:
    """Reject naive or far-future timestamps; clamp small client skew to now."""
    if logged_at.tzinfo is None:
        msg = "logged_at must be timezone-aware"
        raise ValidationError(msg)
    if logged_at - now > max_skew:
        msg = f"logged_at {logged_at.isoformat()} is in the future"
        raise ValidationError(msg)
    return min(logged_at, now)


async def _find_by_event_id(db: AsyncSession, event_id: str) -> GoalLog | None:
    result = await db.execute(select(GoalLog).where(GoalLog.event_id == event_id))
    return result.scalar_one_or_none()


async def _duplicate_result(db: AsyncSession, existing: GoalLog) -> GoalLogResult:
    account = await get_account(db, existing.user_id)
    return GoalLogResult(
        goal_log_id=existing.id,
        user_id=existing.user_id,
        week_iso=existing.week_iso,
        credibility_gained=existing.credibility_gained,
        credibility=account.credibility,
        current_progress=account.current_progress,
        frequency=account.frequency,
        weekly_goal_completed=account.current_progress >= account.frequency,
        duplicate=True,
    )


async def log_goal(
    db: AsyncSession,
    redis: object,
    user_id: str,
    logged_at: datetime | None = None,
    event_id: str | None = None,
    now: datetime | None = None,
    clock: WeekClock | None = None,
) -> GoalLogResult:
    """Record a goal completion and credit its per-goal gain.

    Closed weeks are settled first, so the event always lands in the
    account's pending week. Gains stop once progress reaches the committed
    frequency: the weekly allocation is the most goal logs can earn.
    Passing ``event_id`` makes a retried call return the original result.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if clock is None:
        clock = get_week_clock()
    max_skew = timedelta(seconds=get_settings().max_clock_skew_seconds)
    logged_at = _validate_logged_at(logged_at or now, now, max_skew)
    event_week = clock.week_of(logged_at)

    if event_id is not None:
        existing = await _find_by_event_id(db, event_id)
        if existing is not None:
            return await _duplicate_result(db, existing)

    account = await get_account(db, user_id)
    if account.week_iso < event_week:
        await settle_due_weeks(db, redis, user_id, now=now, clock=clock, until_week=event_week)
        account = await get_account(db, user_id)

    if event_week != account.week_iso:
        msg = f"Goal logged in {event_week} but week {account.week_iso} is pending"
        raise ValidationError(msg)

    frequency = account.frequency
    gain = per_goal_gain(frequency)

    try:
        applied = await db.execute(
            update(CredibilityAccount)
            .where(
                CredibilityAccount.user_id == user_id,
                CredibilityAccount.week_iso == event_week,
                CredibilityAccount.frequency == frequency,
            )
            .values(
                credibility=CredibilityAccount.credibility + case(
                    (CredibilityAccount.current_progress < CredibilityAccount.frequency, gain),
                    else_=0.0,
                ),
                current_progress=CredibilityAccount.current_progress + 1,
                updated_at=now,
            )
            .returning(CredibilityAccount.credibility, CredibilityAccount.current_progress)
        )
        row = applied.one_or_none()
        if row is None:
            await db.rollback()
            msg = f"Account {user_id} changed while logging a goal; retry"
            raise StoreUnavailable(msg)
        credibility, progress = row
        gained = gain if progress <= frequency else 0.0

        goal_log = GoalLog(
            user_id=user_id,
            logged_at=logged_at,
            week_iso=event_week,
            credibility_gained=gained,
            event_id=event_id,
        )
        db.add(goal_log)
        await db.flush()

        if gained:
            db.add(ledger_entry(user_id, gained, "goal_log", str(goal_log.id), f"goal:{goal_log.id}", now))

        stats = upsert_insert(db, UserStatistics).values(user_id=user_id, lifetime_goals_logged=1, updated_at=now)
        stats = stats.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "lifetime_goals_logged": UserStatistics.lifetime_goals_logged + 1,
                "updated_at": now,
            },
        )
        await db.execute(stats)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if event_id is not None:
            existing = await _find_by_event_id(db, event_id)
            if existing is not None:
                return await _duplicate_result(db, existing)
        raise StoreUnavailable(f"Failed to log goal for {user_id}") from exc
    except DBAPIError as exc:
        await db.rollback()
        raise StoreUnavailable(f"Failed to log goal for {user_id}") from exc

    logger.info(
        "Goal logged for %s in %s: +%.4f credibility (%d/%d)",
        user_id, event_week, gained, progress, frequency,
    )
    await publish_event(redis, CREDIBILITY_CHANGED_CHANNEL, {
        "user_id": user_id,
        "source": "goal_log",
        "delta": gained,
        "credibility": credibility,
        "current_progress": progress,
        "frequency": frequency,
    })

    return GoalLogResult(
        goal_log_id=goal_log.id,
        user_id=user_id,
        week_iso=event_week,
        credibility_gained=gained,
        credibility=credibility,
        current_progress=progress,
        frequency=frequency,
        weekly_goal_completed=progress == frequency,
    )
