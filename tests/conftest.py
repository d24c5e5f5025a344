"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from credo.badges.seed import seed_badges
from credo.credibility.week_utils import WeekClock
from credo.db.base import Base

# 2026-W09 runs Monday 2026-02-23 00:00 UTC to Monday 2026-03-02 00:00 UTC
WEEK = "2026-W09"
NEXT_WEEK = "2026-W10"
WEDNESDAY = datetime(2026, 2, 25, 12, 0, 0, tzinfo=timezone.utc)
NEXT_MONDAY = datetime(2026, 3, 2, 0, 0, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine so concurrent sessions use separate connections."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'credo.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await seed_badges(session)
    return factory


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A session on a freshly created, badge-seeded database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis() -> MagicMock:
    """Redis stand-in recording published change events."""
    client = MagicMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def clock() -> WeekClock:
    return WeekClock("UTC", 0)


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, with sessions bound to the test database."""
    from credo.database import get_session
    from credo.main import create_app

    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
