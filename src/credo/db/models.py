"""ORM models for credibility accounts, goal logs, statistics and badges."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credo.db.base import Base


# ---------------------------------------------------------------------------
# Credibility
# ---------------------------------------------------------------------------


class CredibilityAccount(Base):
    """One row per user: score, committed frequency and the PENDING week."""

    __tablename__ = "credibility_accounts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    credibility: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    frequency: Mapped[int] = mapped_column(Integer, nullable=False)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    week_iso: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class GoalLog(Base):
    """Append-only goal completion events."""

    __tablename__ = "goal_logs"
    __table_args__ = (Index("idx_goal_logs_user_week", "user_id", "week_iso"),)

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("credibility_accounts.user_id", ondelete="CASCADE"), nullable=False
    )
    logged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    week_iso: Mapped[str] = mapped_column(String(10), nullable=False)
    credibility_gained: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    event_id: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)


class CredibilityLedger(Base):
    """Immutable credibility deltas; the account score is their sum."""

    __tablename__ = "credibility_ledger"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("credibility_accounts.user_id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WeeklySettlement(Base):
    """Settlement claim per (user, week); the UNIQUE key makes settlement exactly-once."""

    __tablename__ = "weekly_settlements"
    __table_args__ = (
        UniqueConstraint("user_id", "week_iso", name="weekly_settlements_user_week_key"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("credibility_accounts.user_id", ondelete="CASCADE"), nullable=False
    )
    week_iso: Mapped[str] = mapped_column(String(10), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False)
    frequency: Mapped[int] = mapped_column(Integer, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    penalty: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    net: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Statistics (written by gameplay systems, read by the evaluator)
# ---------------------------------------------------------------------------


class UserStatistics(Base):
    """Cumulative lifetime counters, one row per user."""

    __tablename__ = "user_statistics"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    alliance_quests_completed: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    battle_quests_won: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    speculation_bets_won_for: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    speculation_bets_won_against: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    speculation_quests_resolved: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    lifetime_mojo_earned: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    lifetime_mojo_spent_on_ranks: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    lifetime_goals_logged: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    """Badge catalog rows, seeded from credo.badges.catalog on startup."""

    __tablename__ = "badge_definitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="1")


class UserBadge(Base):
    """Badges earned by users — UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="user_badges_user_id_badge_id_key"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    badge_id: Mapped[str] = mapped_column(String(64), ForeignKey("badge_definitions.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    progress_value: Mapped[float | None] = mapped_column(Float, nullable=True)

    badge: Mapped[BadgeDefinition] = relationship("BadgeDefinition", lazy="joined")
