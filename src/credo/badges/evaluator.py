"""Decides which badges a user qualifies for and awards them."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from credo.badges.catalog import SNAPSHOT_RULE, BadgeCatalog, get_catalog
from credo.badges.ledger import award_badge
from credo.badges.statistics import get_statistics_snapshot
from credo.errors import NotFound, StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)

HIGH_ROLLER = "high_roller"
UNDERDOG = "underdog"


@dataclass(frozen=True)
class SpeculationOutcome:
    """One resolved speculation, as seen by the user it paid out to."""

    mojo_won: float
    odds: float
    won: bool

    def validate(self) -> None:
        if self.mojo_won < 0:
            raise ValidationError(f"mojo_won must be non-negative, got {self.mojo_won}")
        if self.odds <= 0:
            raise ValidationError(f"odds must be positive, got {self.odds}")


class AchievementEvaluator:
    """Evaluates badge rules for one user at a time."""

    def __init__(self, db: AsyncSession, redis: object, catalog: BadgeCatalog | None = None) -> None:
        self.db = db
        self.redis = redis
        self.catalog = catalog or get_catalog()

    async def evaluate(self, user_id: str, category: str) -> list[str]:
        """Award every snapshot badge in ``category`` the user now qualifies for.

        Already-earned badges are re-offered to the ledger, which no-ops.
        Returns ids of badges newly awarded by this call. A failed snapshot
        read means no badges are evaluated; the triggering action stands.
        """
        badges = [b for b in self.catalog.by_category(category) if b.rule == SNAPSHOT_RULE]
        if not badges:
            return []

        try:
            snapshot = await get_statistics_snapshot(self.db, user_id)
        except NotFound:
            logger.debug("No statistics for %s; skipping %s badges", user_id, category)
            return []
        except (ValidationError, StoreUnavailable):
            logger.warning("Statistics read failed for %s; skipping %s badges", user_id, category, exc_info=True)
            return []

        awarded = []
        for badge in badges:
            value = badge.qualifies(snapshot)
            if value is None:
                continue
            if await award_badge(self.db, self.redis, user_id, badge.id, progress_value=value):
                awarded.append(badge.id)
        return awarded

    async def evaluate_single_event(self, user_id: str, outcome: SpeculationOutcome) -> list[str]:
        """Check high_roller / underdog against one resolved speculation.

        Must be called exactly once per resolved speculation by the code that
        owns it; these badges are never derived from history.
        """
        outcome.validate()
        awarded = []

        high_roller = self.catalog.require(HIGH_ROLLER)
        if outcome.mojo_won >= high_roller.threshold:
            if await award_badge(self.db, self.redis, user_id, HIGH_ROLLER, progress_value=outcome.mojo_won):
                awarded.append(HIGH_ROLLER)

        underdog = self.catalog.require(UNDERDOG)
        if outcome.won and outcome.odds >= underdog.threshold:
            if await award_badge(self.db, self.redis, user_id, UNDERDOG, progress_value=outcome.odds):
                awarded.append(UNDERDOG)

        return awarded
