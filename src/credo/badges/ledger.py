"""Award ledger — at-most-once badge awards per (user, badge)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from credo.badges.catalog import get_catalog
from credo.db.dialect import upsert_insert
from credo.db.models import UserBadge
from credo.errors import StoreUnavailable, ValidationError
from credo.events import BADGE_EARNED_CHANNEL, publish_event

logger = logging.getLogger(__name__)


async def has_badge(db: AsyncSession, user_id: str, badge_id: str) -> bool:
    """Check if user already has a specific badge."""
    result = await db.execute(
        select(UserBadge.id).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def award_badge(
    db: AsyncSession,
    redis: object,
    user_id: str,
    badge_id: str,
    progress_value: float | None = None,
    now: datetime | None = None,
) -> bool:
    """Award a badge to a user.

    Returns True only for the call that created the award row, False if the
    badge was already earned. A single INSERT ... ON CONFLICT DO NOTHING
    against UNIQUE(user_id, badge_id) decides the winner, so retries and
    concurrent callers in other processes are safe. Store failures raise
    StoreUnavailable, never False.
    """
    if not user_id:
        raise ValidationError("user_id is required")
    badge = get_catalog().require(badge_id)
    if now is None:
        now = datetime.now(timezone.utc)

    stmt = upsert_insert(db, UserBadge).values(
        user_id=user_id,
        badge_id=badge.id,
        earned_at=now,
        progress_value=progress_value,
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "badge_id"]).returning(UserBadge.id)

    try:
        granted = (await db.execute(stmt)).scalar_one_or_none() is not None
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        raise StoreUnavailable(f"Failed to award {badge_id} to {user_id}") from exc

    if not granted:
        return False

    logger.info("Awarded badge %s to %s (progress=%s)", badge_id, user_id, progress_value)
    await publish_event(redis, BADGE_EARNED_CHANNEL, {
        "user_id": user_id,
        "badge_id": badge.id,
        "badge_name": badge.name,
        "category": badge.category,
        "progress_value": progress_value,
        "earned_at": now.isoformat(),
    })
    return True
