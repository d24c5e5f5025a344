"""Read-side badge views: earned status and progress toward thresholds."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from credo.badges.catalog import SNAPSHOT_RULE, BadgeCatalog, get_catalog
from credo.badges.statistics import StatisticsSnapshot, get_statistics_snapshot
from credo.db.models import UserBadge
from credo.errors import NotFound


@dataclass
class BadgeStatus:
    id: str
    name: str
    description: str
    icon: str
    category: str
    sort_order: int
    is_earned: bool
    earned_at: datetime | None = None
    progress_value: float | None = None


@dataclass
class BadgeProgress:
    badge_id: str
    current: int
    target: float
    percentage: float


async def get_user_badges(db: AsyncSession, user_id: str) -> list[UserBadge]:
    """Badges earned by a user, most recent first."""
    result = await db.execute(
        select(UserBadge)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.earned_at.desc())
    )
    return list(result.scalars().unique())


async def count_earners(db: AsyncSession, badge_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(UserBadge).where(UserBadge.badge_id == badge_id)
    )
    return result.scalar_one()


async def get_badges_with_status(
    db: AsyncSession,
    user_id: str,
    catalog: BadgeCatalog | None = None,
) -> list[BadgeStatus]:
    """Every catalog badge, flagged with whether (and when) the user earned it."""
    if catalog is None:
        catalog = get_catalog()
    earned = {ub.badge_id: ub for ub in await get_user_badges(db, user_id)}

    statuses = []
    for badge in catalog:
        ub = earned.get(badge.id)
        statuses.append(BadgeStatus(
            id=badge.id,
            name=badge.name,
            description=badge.description,
            icon=badge.icon,
            category=badge.category,
            sort_order=badge.sort_order,
            is_earned=ub is not None,
            earned_at=ub.earned_at if ub else None,
            progress_value=ub.progress_value if ub else None,
        ))
    return statuses


async def get_badge_progress(
    db: AsyncSession,
    user_id: str,
    catalog: BadgeCatalog | None = None,
) -> list[BadgeProgress]:
    """Progress toward each unearned snapshot badge."""
    if catalog is None:
        catalog = get_catalog()
    try:
        snapshot = await get_statistics_snapshot(db, user_id)
    except NotFound:
        snapshot = StatisticsSnapshot(user_id=user_id)
    earned = {ub.badge_id for ub in await get_user_badges(db, user_id)}

    progress = []
    for badge in catalog:
        if badge.rule != SNAPSHOT_RULE or badge.id in earned:
            continue
        current = snapshot.counter(badge.counter)
        percentage = min(100.0, round(current / badge.threshold * 100, 2))
        progress.append(BadgeProgress(
            badge_id=badge.id,
            current=current,
            target=badge.threshold,
            percentage=percentage,
        ))
    return progress
