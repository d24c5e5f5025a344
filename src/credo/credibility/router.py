"""Credibility read endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from credo.credibility.account_service import get_account
from credo.credibility.formulas import preview_goal_log_gain, weekly_allocation, weekly_outcome
from credo.credibility.schemas import CredibilityResponse, WeeklyOutcomeResponse
from credo.credibility.week_utils import get_week_clock
from credo.database import get_session

router = APIRouter(prefix="/api/v1", tags=["Credibility"])


@router.get("/users/{user_id}/credibility", response_model=CredibilityResponse)
async def get_user_credibility(user_id: str, db: AsyncSession = Depends(get_session)):
    """Current score, weekly progress and what the week would settle to now."""
    account = await get_account(db, user_id)
    clock = get_week_clock()
    remaining = account.current_progress < account.frequency

    return CredibilityResponse(
        user_id=account.user_id,
        credibility=account.credibility,
        frequency=account.frequency,
        current_progress=account.current_progress,
        week_iso=account.week_iso,
        week_ends_at=clock.week_end(account.week_iso),
        weekly_allocation=weekly_allocation(account.frequency),
        next_goal_gain=preview_goal_log_gain(account.frequency) if remaining else 0.0,
        projected_outcome=WeeklyOutcomeResponse(
            **weekly_outcome(account.frequency, account.current_progress)
        ),
    )
