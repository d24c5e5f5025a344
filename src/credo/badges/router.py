"""Badge read endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from credo.badges.catalog import get_catalog
from credo.badges.schemas import (
    AllBadgesResponse,
    BadgeDefinitionResponse,
    BadgeDetailResponse,
    BadgeProgressResponse,
    BadgeStatusResponse,
    UserBadgeProgressResponse,
    UserBadgesResponse,
)
from credo.badges.service import count_earners, get_badge_progress, get_badges_with_status
from credo.database import get_session

router = APIRouter(prefix="/api/v1", tags=["Badges"])


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges():
    """All badge definitions in catalog order."""
    catalog = get_catalog()
    return AllBadgesResponse(
        catalog_version=catalog.version,
        badges=[
            BadgeDefinitionResponse(
                id=b.id,
                name=b.name,
                description=b.description,
                icon=b.icon,
                category=b.category,
                sort_order=b.sort_order,
            )
            for b in catalog
        ],
    )


@router.get("/badges/{badge_id}", response_model=BadgeDetailResponse)
async def get_badge(badge_id: str, db: AsyncSession = Depends(get_session)):
    badge = get_catalog().get(badge_id)
    if badge is None:
        raise HTTPException(status_code=404, detail="Badge not found")

    return BadgeDetailResponse(
        id=badge.id,
        name=badge.name,
        description=badge.description,
        icon=badge.icon,
        category=badge.category,
        sort_order=badge.sort_order,
        total_earned=await count_earners(db, badge.id),
    )


@router.get("/users/{user_id}/badges", response_model=UserBadgesResponse)
async def get_user_badges(user_id: str, db: AsyncSession = Depends(get_session)):
    """Every badge with the user's earned status."""
    statuses = await get_badges_with_status(db, user_id)
    return UserBadgesResponse(
        badges=[BadgeStatusResponse(**vars(s)) for s in statuses],
        total_available=len(statuses),
        total_earned=sum(1 for s in statuses if s.is_earned),
    )


@router.get("/users/{user_id}/badges/progress", response_model=UserBadgeProgressResponse)
async def get_user_badge_progress(user_id: str, db: AsyncSession = Depends(get_session)):
    progress = await get_badge_progress(db, user_id)
    return UserBadgeProgressResponse(
        progress=[BadgeProgressResponse(**vars(p)) for p in progress],
    )
