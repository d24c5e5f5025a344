"""Credibility accounts: creation, lookup and frequency changes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from credo.credibility.week_utils import WeekClock, get_week_clock
from credo.db.dialect import upsert_insert
from credo.db.models import CredibilityAccount, CredibilityLedger
from credo.errors import NotFound, StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)


def validate_frequency(frequency: object) -> int:
    """Committed weekly frequency must be a positive integer."""
    if isinstance(frequency, bool) or not isinstance(frequency, int) or frequency <= 0:
        msg = f"Weekly goal frequency must be a positive integer, got {frequency!r}"
        raise ValidationError(msg)
    return frequency


async def get_account(db: AsyncSession, user_id: str) -> CredibilityAccount:
    """Fetch a user's account. Raises NotFound if the user never committed."""
    try:
        result = await db.execute(
            select(CredibilityAccount)
            .where(CredibilityAccount.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        account = result.scalar_one_or_none()
    except DBAPIError as exc:
        raise StoreUnavailable(f"Failed to read account for {user_id}") from exc
    if account is None:
        msg = f"No credibility account for user {user_id}"
        raise NotFound(msg)
    return account


async def create_account(
    db: AsyncSession,
    user_id: str,
    frequency: int,
    now: datetime | None = None,
    clock: WeekClock | None = None,
) -> tuple[CredibilityAccount, bool]:
    """Open an account when a user first commits to a weekly frequency.

    Returns (account, created). An existing account is returned unchanged.
    """
    validate_frequency(frequency)
    if now is None:
        now = datetime.now(timezone.utc)
    if clock is None:
        clock = get_week_clock()

    stmt = upsert_insert(db, CredibilityAccount).values(
        user_id=user_id,
        credibility=0.0,
        frequency=frequency,
        current_progress=0,
        week_iso=clock.week_of(now),
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["user_id"]).returning(CredibilityAccount.user_id)
    try:
        created = (await db.execute(stmt)).scalar_one_or_none() is not None
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        raise StoreUnavailable(f"Failed to create account for {user_id}") from exc

    account = await get_account(db, user_id)
    if created:
        logger.info("Opened credibility account for %s (frequency=%d)", user_id, frequency)
    return account, created


async def change_frequency(
    db: AsyncSession,
    user_id: str,
    frequency: int,
    now: datetime | None = None,
) -> CredibilityAccount:
    """Change the committed frequency.

    Progress already logged this week is kept; the new frequency applies to
    subsequent goal logs and to this week's settlement.
    """
    validate_frequency(frequency)
    if now is None:
        now = datetime.now(timezone.utc)

    try:
        result = await db.execute(
            update(CredibilityAccount)
            .where(CredibilityAccount.user_id == user_id)
            .values(frequency=frequency, updated_at=now)
            .returning(CredibilityAccount.user_id)
        )
        changed = result.scalar_one_or_none() is not None
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        raise StoreUnavailable(f"Failed to change frequency for {user_id}") from exc

    if not changed:
        msg = f"No credibility account for user {user_id}"
        raise NotFound(msg)

    return await get_account(db, user_id)


def ledger_entry(
    user_id: str,
    amount: float,
    source: str,
    source_id: str,
    idempotency_key: str,
    now: datetime,
) -> CredibilityLedger:
    """Build a ledger row; callers add it inside their own transaction."""
    return CredibilityLedger(
        user_id=user_id,
        amount=amount,
        source=source,
        source_id=source_id,
        idempotency_key=idempotency_key,
        created_at=now,
    )


async def get_ledger_total(db: AsyncSession, user_id: str) -> float:
    """Sum of every applied delta; always equals the account score."""
    result = await db.execute(
        select(func.coalesce(func.sum(CredibilityLedger.amount), 0.0)).where(
            CredibilityLedger.user_id == user_id
        )
    )
    return float(result.scalar_one())
