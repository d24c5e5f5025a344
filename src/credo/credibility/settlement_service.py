"""Weekly settlement: apply bonus/penalty once per (user, week).

State per account week: pending -> settling -> settled. A week is claimed by
inserting its weekly_settlements row (UNIQUE(user_id, week_iso)); the claim,
the credibility delta, the progress reset and the ledger entry commit in one
transaction. A losing concurrent claimer, or a retry of a settled week, sees
the conflict and reports ``already_settled=True`` without touching the score.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credo.config import get_settings
from credo.credibility.account_service import get_account, ledger_entry
from credo.credibility.formulas import weekly_outcome
from credo.credibility.week_utils import WeekClock, get_week_clock
from credo.db.dialect import upsert_insert
from credo.db.models import CredibilityAccount, WeeklySettlement
from credo.errors import ConflictNoop, FatalInconsistency, StoreUnavailable, ValidationError
from credo.events import WEEK_SETTLED_CHANNEL, publish_event

logger = logging.getLogger(__name__)

PENDING = "pending"
SETTLING = "settling"
SETTLED = "settled"

VALID_TRANSITIONS: dict[str, list[str]] = {
    PENDING: [SETTLING],
    SETTLING: [SETTLED],
    SETTLED: [],
}


def validate_transition(current_state: str, target_state: str) -> None:
    """Validate a settlement state transition. Raises ValueError if invalid."""
    valid = VALID_TRANSITIONS.get(current_state, [])
    if target_state not in valid:
        raise ValueError(
            f"Invalid transition: {current_state} -> {target_state}. "
            f"Valid transitions: {valid}"
        )


@dataclass
class SettlementResult:
    user_id: str
    week_iso: str
    already_settled: bool
    frequency: int | None = None
    progress: int | None = None
    bonus: float = 0
    penalty: float = 0
    net: float = 0
    credibility: float | None = None


@dataclass
class SettlementRunReport:
    week_iso: str
    processed: int = 0
    weeks_settled: int = 0
    already_settled: int = 0
    failed: list[str] = field(default_factory=list)
    fatal: list[str] = field(default_factory=list)


async def settle_week(
    db: AsyncSession,
    redis: object,
    user_id: str,
    week_iso: str,
    now: datetime | None = None,
    clock: WeekClock | None = None,
) -> SettlementResult:
    """Settle one closed week for one user, exactly once."""
    if now is None:
        now = datetime.now(timezone.utc)
    if clock is None:
        clock = get_week_clock()

    if not clock.is_closed(week_iso, now):
        msg = f"Week {week_iso} has not ended yet"
        raise ValidationError(msg)

    account = await get_account(db, user_id)
    if account.week_iso > week_iso:
        # Settled earlier, or the account did not exist yet that week
        return SettlementResult(user_id=user_id, week_iso=week_iso, already_settled=True)
    if account.week_iso < week_iso:
        msg = f"Week {account.week_iso} must be settled before {week_iso}"
        raise ValidationError(msg)

    validate_transition(PENDING, SETTLING)
    try:
        result = await _claim_and_apply(db, account, week_iso, now, clock)
    except ConflictNoop:
        await db.rollback()
        return SettlementResult(user_id=user_id, week_iso=week_iso, already_settled=True)
    except FatalInconsistency:
        await db.rollback()
        logger.critical("Settlement claimed but not applied for %s %s", user_id, week_iso)
        raise
    except DBAPIError as exc:
        await db.rollback()
        raise StoreUnavailable(f"Settlement of {week_iso} for {user_id} failed") from exc

    logger.info(
        "Settled %s for %s: progress %d/%d, net %+g",
        week_iso, user_id, result.progress, result.frequency, result.net,
    )
    await publish_event(redis, WEEK_SETTLED_CHANNEL, {
        "user_id": user_id,
        "week_iso": week_iso,
        "bonus": result.bonus,
        "penalty": result.penalty,
        "net": result.net,
        "credibility": result.credibility,
    })
    return result


async def _claim_and_apply(
    db: AsyncSession,
    account: CredibilityAccount,
    week_iso: str,
    now: datetime,
    clock: WeekClock,
) -> SettlementResult:
    user_id = account.user_id

    claim = upsert_insert(db, WeeklySettlement).values(
        user_id=user_id,
        week_iso=week_iso,
        state=SETTLING,
        frequency=account.frequency,
        progress=account.current_progress,
    )
    claim = claim.on_conflict_do_nothing(index_elements=["user_id", "week_iso"]).returning(WeeklySettlement.id)
    settlement_id = (await db.execute(claim)).scalar_one_or_none()
    if settlement_id is None:
        raise ConflictNoop(f"{week_iso} already settled for {user_id}")

    # Re-read under the row lock: goal logs may have landed since the pre-check
    locked = (
        await db.execute(
            select(CredibilityAccount)
            .where(CredibilityAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    frequency = locked.frequency
    progress = locked.current_progress
    outcome = weekly_outcome(frequency, progress)

    applied = await db.execute(
        update(CredibilityAccount)
        .where(
            CredibilityAccount.user_id == user_id,
            CredibilityAccount.week_iso == week_iso,
        )
        .values(
            credibility=CredibilityAccount.credibility + outcome["net"],
            current_progress=0,
            week_iso=clock.next_week(week_iso),
            updated_at=now,
        )
        .returning(CredibilityAccount.credibility)
    )
    credibility = applied.scalar_one_or_none()
    if credibility is None:
        raise FatalInconsistency(
            f"Claimed {week_iso} for {user_id} but the account is at {locked.week_iso}"
        )

    source = "weekly_bonus" if outcome["bonus"] else "weekly_penalty"
    db.add(ledger_entry(
        user_id, outcome["net"], source, week_iso,
        f"settlement:{user_id}:{week_iso}", now,
    ))

    validate_transition(SETTLING, SETTLED)
    await db.execute(
        update(WeeklySettlement)
        .where(WeeklySettlement.id == settlement_id)
        .values(
            state=SETTLED,
            frequency=frequency,
            progress=progress,
            bonus=outcome["bonus"],
            penalty=outcome["penalty"],
            net=outcome["net"],
            settled_at=now,
        )
    )
    await db.commit()

    return SettlementResult(
        user_id=user_id,
        week_iso=week_iso,
        already_settled=False,
        frequency=frequency,
        progress=progress,
        bonus=outcome["bonus"],
        penalty=outcome["penalty"],
        net=outcome["net"],
        credibility=credibility,
    )


async def settle_due_weeks(
    db: AsyncSession,
    redis: object,
    user_id: str,
    now: datetime | None = None,
    clock: WeekClock | None = None,
    until_week: str | None = None,
) -> list[SettlementResult]:
    """Settle every closed week between the account's pending week and now.

    With ``until_week``, stop before that week even if later weeks are closed.

    Weeks are settled one at a time in order, each with its own outcome, so
    an account idle for three weeks receives three penalties.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if clock is None:
        clock = get_week_clock()

    account = await get_account(db, user_id)
    end_week = clock.current_week(now)
    if until_week is not None:
        end_week = min(end_week, until_week)
    return [
        await settle_week(db, redis, user_id, week, now=now, clock=clock)
        for week in clock.weeks_between(account.week_iso, end_week)
    ]


async def run_weekly_settlement(
    session_factory: async_sessionmaker[AsyncSession],
    redis: object,
    now: datetime | None = None,
    clock: WeekClock | None = None,
    concurrency: int | None = None,
) -> SettlementRunReport:
    """Scheduled weekly tick: settle all accounts whose week boundary passed.

    Users are settled independently and in parallel. Store failures are
    reported per user for the next tick to retry; any fatal inconsistency is
    raised after every other user has been processed.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if clock is None:
        clock = get_week_clock()
    if concurrency is None:
        concurrency = get_settings().settlement_concurrency

    current_week = clock.current_week(now)
    report = SettlementRunReport(week_iso=current_week)

    async with session_factory() as db:
        try:
            result = await db.execute(
                select(CredibilityAccount.user_id).where(CredibilityAccount.week_iso < current_week)
            )
            user_ids = list(result.scalars())
        except DBAPIError as exc:
            raise StoreUnavailable(f"Failed to list accounts due for {current_week}") from exc

    semaphore = asyncio.Semaphore(concurrency)

    async def _settle_user(user_id: str) -> None:
        async with semaphore, session_factory() as db:
            try:
                results = await settle_due_weeks(db, redis, user_id, now=now, clock=clock)
            except StoreUnavailable:
                logger.warning("Settlement of %s failed; retrying next tick", user_id, exc_info=True)
                report.failed.append(user_id)
                return
            except FatalInconsistency:
                report.fatal.append(user_id)
                return
        report.processed += 1
        for r in results:
            if r.already_settled:
                report.already_settled += 1
            else:
                report.weeks_settled += 1

    await asyncio.gather(*(_settle_user(user_id) for user_id in user_ids))

    logger.info(
        "Weekly settlement for %s: %d users, %d weeks settled, %d already settled, %d failed, %d fatal",
        current_week, report.processed, report.weeks_settled, report.already_settled,
        len(report.failed), len(report.fatal),
    )
    if report.fatal:
        logger.critical("Weekly settlement inconsistent for %s", report.fatal)
        raise FatalInconsistency(f"Settlement inconsistent for users: {', '.join(report.fatal)}")
    return report
