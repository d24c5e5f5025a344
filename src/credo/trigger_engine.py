"""Trigger engine — routes inbound events to credibility and badge rules."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from credo.badges.catalog import EXTERNAL_RULE, MILESTONE, MOJO, QUEST, get_catalog
from credo.badges.evaluator import AchievementEvaluator, SpeculationOutcome
from credo.badges.ledger import award_badge
from credo.credibility.goal_service import GoalLogResult, log_goal
from credo.errors import StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)


class TriggerEngine:
    """Handles goal, speculation, statistics, rank purchase and external award triggers."""

    def __init__(self, db: AsyncSession, redis: object) -> None:
        self.db = db
        self.redis = redis
        self.evaluator = AchievementEvaluator(db, redis)

    async def on_goal_logged(
        self,
        user_id: str,
        logged_at: datetime | None = None,
        event_id: str | None = None,
    ) -> tuple[GoalLogResult, list[str]]:
        """Credit the goal, then check milestone badges.

        Goal logging failures propagate. Badge checks are best-effort: the
        goal is already committed when they run.
        """
        result = await log_goal(self.db, self.redis, user_id, logged_at=logged_at, event_id=event_id)
        if result.duplicate:
            return result, []
        return result, await self._evaluate_best_effort(user_id, [MILESTONE])

    async def on_speculation_resolved(
        self,
        user_id: str,
        mojo_won: float,
        odds: float,
        won: bool,
    ) -> list[str]:
        """Check the single-event badges, then quest and mojo counters."""
        outcome = SpeculationOutcome(mojo_won=mojo_won, odds=odds, won=won)
        awarded = await self.evaluator.evaluate_single_event(user_id, outcome)
        awarded += await self._evaluate_best_effort(user_id, [QUEST, MOJO])
        return awarded

    async def on_statistics_changed(
        self,
        user_id: str,
        categories: list[str] | None = None,
    ) -> list[str]:
        """Re-check counter badges after a gameplay system bumped the user's statistics.

        With no categories, every category holding counter badges is checked.
        """
        if categories is None:
            categories = [QUEST, MOJO, MILESTONE]
        # Reject unknown categories before awarding anything
        for category in categories:
            self.evaluator.catalog.by_category(category)
        return await self._evaluate_best_effort(user_id, categories)

    async def on_rank_purchased(self, user_id: str) -> list[str]:
        """Mojo spent on ranks only moves the mojo badges."""
        return await self._evaluate_best_effort(user_id, [MOJO])

    async def on_external_award(
        self,
        user_id: str,
        badge_id: str,
        progress_value: float | None = None,
    ) -> bool:
        """Record a streak/time badge decided by an external rule mirror."""
        badge = get_catalog().require(badge_id)
        if badge.rule != EXTERNAL_RULE:
            raise ValidationError(f"Badge {badge_id} is evaluated by the engine, not externally")
        return await award_badge(self.db, self.redis, user_id, badge_id, progress_value=progress_value)

    async def _evaluate_best_effort(self, user_id: str, categories: list[str]) -> list[str]:
        awarded: list[str] = []
        for category in categories:
            try:
                awarded += await self.evaluator.evaluate(user_id, category)
            except StoreUnavailable:
                logger.warning("Badge evaluation (%s) failed for %s", category, user_id, exc_info=True)
        return awarded
