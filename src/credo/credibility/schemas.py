"""Pydantic response models for credibility endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class WeeklyOutcomeResponse(BaseModel):
    bonus: float
    penalty: float
    net: float


class CredibilityResponse(BaseModel):
    user_id: str
    credibility: float
    frequency: int
    current_progress: int
    week_iso: str
    week_ends_at: datetime
    weekly_allocation: float
    next_goal_gain: float
    projected_outcome: WeeklyOutcomeResponse
