"""Trigger stream message parsing and dispatch."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from credo.errors import StoreUnavailable, ValidationError
from credo.workers import trigger_runner
from credo.workers.trigger_runner import (
    EXTERNAL_AWARD_STREAM,
    GOAL_LOGGED_STREAM,
    RANK_PURCHASED_STREAM,
    SPECULATION_RESOLVED_STREAM,
    STATISTICS_CHANGED_STREAM,
    consume,
    dispatch,
    handle_message,
    parse_message,
    reclaim_pending,
)

GROUP = "credo-triggers"


@pytest.fixture
def trigger_engine():
    mock = MagicMock()
    mock.on_goal_logged = AsyncMock(return_value=(SimpleNamespace(credibility_gained=4.0), ["first_steps"]))
    mock.on_speculation_resolved = AsyncMock(return_value=["high_roller"])
    mock.on_external_award = AsyncMock(return_value=True)
    mock.on_statistics_changed = AsyncMock(return_value=["alliance_master"])
    mock.on_rank_purchased = AsyncMock(return_value=["big_spender"])
    return mock


class TestParseMessage:
    def test_json_data_field(self):
        assert parse_message({"data": json.dumps({"user_id": "u1"})}) == {"user_id": "u1"}

    def test_flat_fields(self):
        assert parse_message({"user_id": "u1", "odds": "3.5"}) == {"user_id": "u1", "odds": "3.5"}

    def test_invalid_json_falls_back(self):
        assert parse_message({"data": "{not json"}) == {"data": "{not json"}


class TestDispatch:
    @pytest.mark.asyncio
    async def test_goal_logged(self, trigger_engine):
        outcome = await dispatch(trigger_engine, GOAL_LOGGED_STREAM, "1-0", {
            "user_id": "u1",
            "logged_at": "2026-02-25T12:00:00+00:00",
            "event_id": "evt-1",
        })
        assert outcome == {"credibility_gained": 4.0, "awarded": ["first_steps"]}
        trigger_engine.on_goal_logged.assert_awaited_once_with(
            "u1",
            logged_at=datetime(2026, 2, 25, 12, tzinfo=timezone.utc),
            event_id="evt-1",
        )

    @pytest.mark.asyncio
    async def test_goal_logged_defaults_event_id_to_message_id(self, trigger_engine):
        await dispatch(trigger_engine, GOAL_LOGGED_STREAM, "1700000000000-0", {"user_id": "u1"})
        trigger_engine.on_goal_logged.assert_awaited_once_with("u1", logged_at=None, event_id="1700000000000-0")

    @pytest.mark.asyncio
    async def test_speculation_resolved(self, trigger_engine):
        outcome = await dispatch(trigger_engine, SPECULATION_RESOLVED_STREAM, "2-0", {
            "user_id": "u1", "mojo_won": "150", "odds": "3.5", "won": "true",
        })
        assert outcome == ["high_roller"]
        trigger_engine.on_speculation_resolved.assert_awaited_once_with("u1", mojo_won=150.0, odds=3.5, won=True)

    @pytest.mark.asyncio
    async def test_external_award(self, trigger_engine):
        assert await dispatch(trigger_engine, EXTERNAL_AWARD_STREAM, "3-0", {"user_id": "u1", "badge_id": "streak_4"})
        trigger_engine.on_external_award.assert_awaited_once_with("u1", "streak_4", progress_value=None)

    @pytest.mark.asyncio
    async def test_missing_user_id(self, trigger_engine):
        with pytest.raises(ValidationError):
            await dispatch(trigger_engine, GOAL_LOGGED_STREAM, "4-0", {})

    @pytest.mark.asyncio
    async def test_unknown_stream(self, trigger_engine):
        with pytest.raises(ValidationError):
            await dispatch(trigger_engine, "credo:unknown", "5-0", {"user_id": "u1"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("logged_at", [12345, "yesterday", ["2026-02-25"]])
    async def test_malformed_logged_at(self, trigger_engine, logged_at):
        with pytest.raises(ValidationError, match="logged_at"):
            await dispatch(trigger_engine, GOAL_LOGGED_STREAM, "6-0", {"user_id": "u1", "logged_at": logged_at})
        trigger_engine.on_goal_logged.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_statistics_changed(self, trigger_engine):
        outcome = await dispatch(trigger_engine, STATISTICS_CHANGED_STREAM, "7-0", {
            "user_id": "u1", "categories": "quest, mojo",
        })
        assert outcome == ["alliance_master"]
        trigger_engine.on_statistics_changed.assert_awaited_once_with("u1", ["quest", "mojo"])

    @pytest.mark.asyncio
    async def test_statistics_changed_all_categories(self, trigger_engine):
        await dispatch(trigger_engine, STATISTICS_CHANGED_STREAM, "8-0", {"user_id": "u1"})
        trigger_engine.on_statistics_changed.assert_awaited_once_with("u1", None)

    @pytest.mark.asyncio
    async def test_rank_purchased(self, trigger_engine):
        assert await dispatch(trigger_engine, RANK_PURCHASED_STREAM, "9-0", {"user_id": "u1"}) == ["big_spender"]
        trigger_engine.on_rank_purchased.assert_awaited_once_with("u1")


@asynccontextmanager
async def _session():
    yield MagicMock()


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.xack = AsyncMock(return_value=1)
    client.xpending_range = AsyncMock(return_value=[])
    client.xclaim = AsyncMock(return_value=[])
    return client


@pytest.fixture
def runner_engine(monkeypatch, trigger_engine):
    monkeypatch.setattr(trigger_runner, "TriggerEngine", lambda db, redis: trigger_engine)
    return trigger_engine


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_handled_message_is_acked(self, redis_client, runner_engine):
        acked = await handle_message(redis_client, _session, GROUP, RANK_PURCHASED_STREAM, "1-0", {"user_id": "u1"})
        assert acked
        redis_client.xack.assert_awaited_once_with(RANK_PURCHASED_STREAM, GROUP, "1-0")

    @pytest.mark.asyncio
    async def test_rejected_message_is_acked(self, redis_client, runner_engine):
        assert await handle_message(redis_client, _session, GROUP, RANK_PURCHASED_STREAM, "1-0", {})
        redis_client.xack.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_store_failure_stays_pending(self, redis_client, runner_engine):
        runner_engine.on_rank_purchased.side_effect = StoreUnavailable("down")
        assert not await handle_message(redis_client, _session, GROUP, RANK_PURCHASED_STREAM, "1-0", {"user_id": "u1"})
        redis_client.xack.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_stays_pending(self, redis_client, runner_engine):
        runner_engine.on_rank_purchased.side_effect = RuntimeError("boom")
        assert not await handle_message(redis_client, _session, GROUP, RANK_PURCHASED_STREAM, "1-0", {"user_id": "u1"})
        redis_client.xack.assert_not_awaited()


class TestConsume:
    @pytest.mark.asyncio
    async def test_bad_messages_do_not_stop_the_loop(self, monkeypatch, redis_client, runner_engine):
        async def _on_goal(user_id, logged_at=None, event_id=None):
            if event_id == "2-0":
                raise RuntimeError("boom")
            return SimpleNamespace(credibility_gained=4.0), []

        runner_engine.on_goal_logged.side_effect = _on_goal
        batches = [[(GOAL_LOGGED_STREAM, [
            ("1-0", {"user_id": "u1", "logged_at": 12345}),
            ("2-0", {"user_id": "u1"}),
            ("3-0", {"user_id": "u1"}),
        ])]]

        async def _read(**kwargs):
            if batches:
                return batches.pop(0)
            monkeypatch.setattr(trigger_runner, "_running", False)
            return []

        redis_client.xreadgroup = AsyncMock(side_effect=_read)
        monkeypatch.setattr(trigger_runner, "_running", True)

        await consume(redis_client, _session, GROUP, "worker-1")

        assert redis_client.xack.await_args_list == [
            call(GOAL_LOGGED_STREAM, GROUP, "1-0"),
            call(GOAL_LOGGED_STREAM, GROUP, "3-0"),
        ]
        assert redis_client.xpending_range.await_count >= 1


class TestReclaimPending:
    @pytest.mark.asyncio
    async def test_retries_idle_entries_and_drops_exhausted(self, redis_client, runner_engine):
        async def _pending(stream, group, **kwargs):
            if stream != RANK_PURCHASED_STREAM:
                return []
            return [
                {"message_id": "1-0", "consumer": "worker-0", "time_since_delivered": 90_000, "times_delivered": 5},
                {"message_id": "2-0", "consumer": "worker-0", "time_since_delivered": 90_000, "times_delivered": 2},
            ]

        redis_client.xpending_range = AsyncMock(side_effect=_pending)
        redis_client.xclaim = AsyncMock(return_value=[("2-0", {"user_id": "u1"})])

        acked = await reclaim_pending(redis_client, _session, GROUP, "worker-1")

        assert acked == 2
        redis_client.xclaim.assert_awaited_once_with(RANK_PURCHASED_STREAM, GROUP, "worker-1", 60_000, ["2-0"])
        runner_engine.on_rank_purchased.assert_awaited_once_with("u1")
        assert redis_client.xack.await_args_list == [
            call(RANK_PURCHASED_STREAM, GROUP, "1-0"),
            call(RANK_PURCHASED_STREAM, GROUP, "2-0"),
        ]

    @pytest.mark.asyncio
    async def test_store_failure_left_for_next_pass(self, redis_client, runner_engine):
        async def _pending(stream, group, **kwargs):
            if stream != RANK_PURCHASED_STREAM:
                return []
            return [{"message_id": "2-0", "consumer": "worker-0", "time_since_delivered": 90_000, "times_delivered": 1}]

        redis_client.xpending_range = AsyncMock(side_effect=_pending)
        redis_client.xclaim = AsyncMock(return_value=[("2-0", {"user_id": "u1"})])
        runner_engine.on_rank_purchased.side_effect = StoreUnavailable("down")

        assert await reclaim_pending(redis_client, _session, GROUP, "worker-1") == 0
        redis_client.xack.assert_not_awaited()
