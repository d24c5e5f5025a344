"""Credibility account integration tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from credo.credibility.account_service import (
    change_frequency,
    create_account,
    get_account,
    get_ledger_total,
)
from credo.errors import NotFound, StoreUnavailable, ValidationError
from tests.conftest import WEDNESDAY, WEEK

pytestmark = pytest.mark.asyncio


async def test_create_account(db_session, clock):
    account, created = await create_account(db_session, "u1", 3, now=WEDNESDAY, clock=clock)
    assert created
    assert account.credibility == 0
    assert account.frequency == 3
    assert account.current_progress == 0
    assert account.week_iso == WEEK


async def test_create_existing_account_unchanged(db_session, clock):
    await create_account(db_session, "u1", 3, now=WEDNESDAY, clock=clock)
    account, created = await create_account(db_session, "u1", 5, now=WEDNESDAY, clock=clock)
    assert not created
    assert account.frequency == 3


@pytest.mark.parametrize("frequency", [0, -1, 2.5, "3", True, None])
async def test_invalid_frequency(db_session, clock, frequency):
    with pytest.raises(ValidationError):
        await create_account(db_session, "u1", frequency, now=WEDNESDAY, clock=clock)


async def test_get_missing_account(db_session):
    with pytest.raises(NotFound):
        await get_account(db_session, "ghost")


async def test_get_account_store_failure():
    db = MagicMock()
    db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("connection reset")))
    with pytest.raises(StoreUnavailable, match="u1"):
        await get_account(db, "u1")


async def test_change_frequency_keeps_progress(db_session, clock):
    account, _ = await create_account(db_session, "u1", 3, now=WEDNESDAY, clock=clock)
    account.current_progress = 2
    await db_session.commit()

    account = await change_frequency(db_session, "u1", 5, now=WEDNESDAY)
    assert account.frequency == 5
    assert account.current_progress == 2


async def test_change_frequency_missing_account(db_session):
    with pytest.raises(NotFound):
        await change_frequency(db_session, "ghost", 4)


async def test_change_frequency_invalid(db_session, clock):
    await create_account(db_session, "u1", 3, now=WEDNESDAY, clock=clock)
    with pytest.raises(ValidationError):
        await change_frequency(db_session, "u1", 0)


async def test_empty_ledger_total(db_session):
    assert await get_ledger_total(db_session, "u1") == 0
