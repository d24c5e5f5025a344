"""Pydantic response models for badge endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Badge ---


class BadgeDefinitionResponse(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    category: str
    sort_order: int


class BadgeDetailResponse(BadgeDefinitionResponse):
    total_earned: int = 0


class AllBadgesResponse(BaseModel):
    catalog_version: int
    badges: list[BadgeDefinitionResponse]


class BadgeStatusResponse(BadgeDefinitionResponse):
    is_earned: bool
    earned_at: datetime | None = None
    progress_value: float | None = None


class UserBadgesResponse(BaseModel):
    badges: list[BadgeStatusResponse]
    total_available: int
    total_earned: int


class BadgeProgressResponse(BaseModel):
    badge_id: str
    current: int
    target: float
    percentage: float


class UserBadgeProgressResponse(BaseModel):
    progress: list[BadgeProgressResponse]
