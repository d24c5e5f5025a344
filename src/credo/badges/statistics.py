"""Point-in-time reads of a user's lifetime counters."""

from __future__ import annotations

from dataclasses import dataclass, fields

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from credo.db.models import UserStatistics
from credo.errors import NotFound, StoreUnavailable, ValidationError


@dataclass(frozen=True)
class StatisticsSnapshot:
    user_id: str
    alliance_quests_completed: int = 0
    battle_quests_won: int = 0
    speculation_bets_won_for: int = 0
    speculation_bets_won_against: int = 0
    speculation_quests_resolved: int = 0
    lifetime_mojo_earned: int = 0
    lifetime_mojo_spent_on_ranks: int = 0
    lifetime_goals_logged: int = 0

    def __post_init__(self) -> None:
        for name in COUNTER_NAMES:
            value = getattr(self, name)
            if value is None or value < 0:
                raise ValidationError(f"Malformed statistics for {self.user_id}: {name}={value!r}")

    def counter(self, name: str) -> int:
        if name not in COUNTER_NAMES:
            raise ValidationError(f"Unknown statistics counter: {name}")
        return getattr(self, name)


COUNTER_NAMES: tuple[str, ...] = tuple(f.name for f in fields(StatisticsSnapshot) if f.name != "user_id")


async def get_statistics_snapshot(db: AsyncSession, user_id: str) -> StatisticsSnapshot:
    """Read every counter for a user. Raises NotFound if no row exists yet."""
    try:
        result = await db.execute(
            select(UserStatistics)
            .where(UserStatistics.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
    except DBAPIError as exc:
        raise StoreUnavailable(f"Failed to read statistics for {user_id}") from exc

    if row is None:
        raise NotFound(f"No statistics for user {user_id}")
    return StatisticsSnapshot(user_id=user_id, **{name: getattr(row, name) for name in COUNTER_NAMES})
