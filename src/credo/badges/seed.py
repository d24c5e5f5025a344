"""Mirror the in-process badge catalog into badge_definitions."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from credo.badges.catalog import BadgeCatalog, get_catalog
from credo.db.dialect import upsert_insert
from credo.db.models import BadgeDefinition

logger = logging.getLogger(__name__)


async def seed_badges(db: AsyncSession, catalog: BadgeCatalog | None = None) -> int:
    """Upsert every catalog badge. Returns number of badges seeded."""
    if catalog is None:
        catalog = get_catalog()

    seeded = 0
    for badge in catalog:
        stmt = upsert_insert(db, BadgeDefinition).values(
            id=badge.id,
            name=badge.name,
            description=badge.description,
            icon=badge.icon,
            category=badge.category,
            sort_order=badge.sort_order,
            is_active=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "icon": stmt.excluded.icon,
                "category": stmt.excluded.category,
                "sort_order": stmt.excluded.sort_order,
                "is_active": stmt.excluded.is_active,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions (catalog v%d)", seeded, catalog.version)
    return seeded
