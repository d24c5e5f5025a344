"""Static, versioned badge catalog, loaded once per process.

Badge ids are stable keys (foreign keys in user_badges) and must never be
renamed. Within a category, badges are ordered by sort_order.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

from credo.errors import ValidationError

if TYPE_CHECKING:
    from credo.badges.statistics import StatisticsSnapshot

CATALOG_VERSION = 1

STREAK = "streak"
QUEST = "quest"
MOJO = "mojo"
MILESTONE = "milestone"
SPECIAL = "special"

CATEGORIES: tuple[str, ...] = (STREAK, QUEST, MOJO, MILESTONE, SPECIAL)

# How a badge is decided
SNAPSHOT_RULE = "snapshot"  # threshold over a cumulative counter
EVENT_RULE = "event"  # threshold over one resolved event
EXTERNAL_RULE = "external"  # decided by an external rule mirror, recorded via the ledger


@dataclass(frozen=True)
class BadgeSpec:
    id: str
    name: str
    description: str
    icon: str
    category: str
    sort_order: int
    rule: str
    counter: str | None = None
    threshold: float | None = None

    def qualifies(self, snapshot: StatisticsSnapshot) -> int | None:
        """Counter value that satisfies the threshold, or None."""
        if self.rule != SNAPSHOT_RULE or self.counter is None or self.threshold is None:
            return None
        value = snapshot.counter(self.counter)
        return value if value >= self.threshold else None


BADGE_SEED_DATA: list[BadgeSpec] = [
    # Streak (awarded by the streak rule mirror)
    BadgeSpec("streak_4", "Month Strong", "Hit your weekly goal 4 weeks in a row", "🔥", STREAK, 1, EXTERNAL_RULE),
    BadgeSpec("streak_12", "Quarter Committed", "Hit your weekly goal 12 weeks in a row", "⚡", STREAK, 2, EXTERNAL_RULE),
    BadgeSpec("streak_52", "Year of Grit", "Hit your weekly goal 52 weeks in a row", "🏆", STREAK, 3, EXTERNAL_RULE),
    # Quest
    BadgeSpec(
        "alliance_master", "Alliance Master", "Complete 25 alliance quests", "🤝", QUEST, 10,
        SNAPSHOT_RULE, "alliance_quests_completed", 25,
    ),
    BadgeSpec(
        "gladiator", "Gladiator", "Win 15 battle quests", "⚔️", QUEST, 11,
        SNAPSHOT_RULE, "battle_quests_won", 15,
    ),
    BadgeSpec(
        "warmonger", "Warmonger", "Win 10 speculations betting against", "🗡️", QUEST, 12,
        SNAPSHOT_RULE, "speculation_bets_won_against", 10,
    ),
    BadgeSpec(
        "prophet", "Prophet", "Win 10 speculations betting for", "🔮", QUEST, 13,
        SNAPSHOT_RULE, "speculation_bets_won_for", 10,
    ),
    BadgeSpec(
        "peacemaker", "Peacemaker", "Resolve 20 speculation quests", "🕊️", QUEST, 14,
        SNAPSHOT_RULE, "speculation_quests_resolved", 20,
    ),
    # Mojo
    BadgeSpec(
        "mojo_millionaire", "Mojo Millionaire", "Earn 1,000 mojo in your lifetime", "💰", MOJO, 20,
        SNAPSHOT_RULE, "lifetime_mojo_earned", 1000,
    ),
    BadgeSpec(
        "big_spender", "Big Spender", "Spend 500 mojo on ranks", "💎", MOJO, 21,
        SNAPSHOT_RULE, "lifetime_mojo_spent_on_ranks", 500,
    ),
    # Milestone
    BadgeSpec(
        "first_steps", "First Steps", "Log your first goal", "👣", MILESTONE, 30,
        SNAPSHOT_RULE, "lifetime_goals_logged", 1,
    ),
    # Special
    BadgeSpec(
        "high_roller", "High Roller", "Win a speculation worth 100+ mojo", "🎲", SPECIAL, 40,
        EVENT_RULE, "mojo_won", 100,
    ),
    BadgeSpec(
        "underdog", "Underdog", "Win a speculation at 3:1 odds or worse", "🐺", SPECIAL, 41,
        EVENT_RULE, "odds", 3.0,
    ),
    BadgeSpec("night_owl", "Night Owl", "Log a goal after midnight", "🦉", SPECIAL, 42, EXTERNAL_RULE),
    BadgeSpec("early_bird", "Early Bird", "Log a goal before 6am", "🐦", SPECIAL, 43, EXTERNAL_RULE),
]


class BadgeCatalog:
    """Immutable lookup over badge specs."""

    def __init__(self, badges: Iterable[BadgeSpec], version: int = CATALOG_VERSION) -> None:
        self.version = version
        self._by_id: dict[str, BadgeSpec] = {}
        for badge in badges:
            if badge.id in self._by_id:
                raise ValueError(f"Duplicate badge id: {badge.id}")
            if badge.category not in CATEGORIES:
                raise ValueError(f"Unknown category {badge.category!r} for {badge.id}")
            self._by_id[badge.id] = badge
        self._by_category: dict[str, tuple[BadgeSpec, ...]] = {
            category: tuple(sorted(
                (b for b in self._by_id.values() if b.category == category),
                key=lambda b: b.sort_order,
            ))
            for category in CATEGORIES
        }

    def __iter__(self) -> Iterator[BadgeSpec]:
        return iter(sorted(self._by_id.values(), key=lambda b: b.sort_order))

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, badge_id: object) -> bool:
        return badge_id in self._by_id

    def get(self, badge_id: str) -> BadgeSpec | None:
        return self._by_id.get(badge_id)

    def require(self, badge_id: str) -> BadgeSpec:
        badge = self._by_id.get(badge_id)
        if badge is None:
            raise ValidationError(f"Unknown badge: {badge_id}")
        return badge

    def by_category(self, category: str) -> tuple[BadgeSpec, ...]:
        if category not in self._by_category:
            raise ValidationError(f"Unknown badge category: {category}")
        return self._by_category[category]


@lru_cache
def get_catalog() -> BadgeCatalog:
    """The process-wide catalog."""
    return BadgeCatalog(BADGE_SEED_DATA)
