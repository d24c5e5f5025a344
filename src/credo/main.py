"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import DBAPIError

from credo.badges.router import router as badges_router
from credo.badges.seed import seed_badges
from credo.config import get_settings
from credo.credibility.router import router as credibility_router
from credo.database import close_db, create_schema, get_session_factory, init_db
from credo.health import router as health_router
from credo.middleware import setup_middleware
from credo.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Create tables and seed badge definitions (both idempotent)
    try:
        await create_schema()
        async with get_session_factory()() as db:
            await seed_badges(db)
    except DBAPIError:
        logger.warning("Schema creation or badge seeding failed", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Credo Engine API",
        description="Read API for credibility scores, weekly progress and badges",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(badges_router)
    app.include_router(credibility_router)

    return app


app = create_app()
