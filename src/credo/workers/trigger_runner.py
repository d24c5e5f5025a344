"""Standalone runner for inbound engine triggers.

Reads goal, speculation, statistics, rank purchase and external award events
from Redis Streams and hands them to the TriggerEngine. Messages are acked
once handled; a message rejected by validation is acked too, since a retry
cannot fix it. Messages that hit a store failure stay pending and are
claimed again by the reclaim pass once they have been idle long enough.

Usage: python -m credo.workers.trigger_runner
"""

from __future__ import annotations

import asyncio
import json
import signal
from datetime import datetime

import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credo.config import get_settings
from credo.database import close_db, get_session_factory, init_db
from credo.errors import FatalInconsistency, NotFound, StoreUnavailable, ValidationError
from credo.middleware.logging import setup_logging
from credo.trigger_engine import TriggerEngine

logger = structlog.get_logger()

GOAL_LOGGED_STREAM = "credo:goal_logged"
SPECULATION_RESOLVED_STREAM = "credo:speculation_resolved"
STATISTICS_CHANGED_STREAM = "credo:statistics_changed"
RANK_PURCHASED_STREAM = "credo:rank_purchased"
EXTERNAL_AWARD_STREAM = "credo:external_award"

STREAMS = [
    GOAL_LOGGED_STREAM,
    SPECULATION_RESOLVED_STREAM,
    STATISTICS_CHANGED_STREAM,
    RANK_PURCHASED_STREAM,
    EXTERNAL_AWARD_STREAM,
]

# Pending entries idle this long are reclaimed by this consumer
RECLAIM_MIN_IDLE_MS = 60_000
# Deliveries after which a pending entry is dropped instead of retried
MAX_DELIVERIES = 5

_running = True


def parse_message(raw_data: dict) -> dict:
    """Decode the 'data' JSON field, falling back to the raw fields."""
    data_str = raw_data.get("data")
    if isinstance(data_str, str):
        try:
            return json.loads(data_str)
        except json.JSONDecodeError:
            pass
    return dict(raw_data)


def _parse_logged_at(value: object) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"logged_at must be an ISO 8601 string, got {value!r}")
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"logged_at is not ISO 8601: {value!r}") from exc


def _parse_categories(value: object) -> list[str] | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return [c.strip() for c in value.split(",") if c.strip()]
    if isinstance(value, list) and all(isinstance(c, str) for c in value):
        return value
    raise ValidationError(f"categories must be a list or comma-separated string, got {value!r}")


async def dispatch(engine: TriggerEngine, stream: str, msg_id: str, data: dict) -> object:
    """Route one stream message to the matching trigger."""
    user_id = str(data.get("user_id", ""))
    if not user_id:
        raise ValidationError(f"Message {msg_id} on {stream} has no user_id")

    if stream == GOAL_LOGGED_STREAM:
        result, awarded = await engine.on_goal_logged(
            user_id,
            logged_at=_parse_logged_at(data.get("logged_at")),
            event_id=data.get("event_id") or msg_id,
        )
        return {"credibility_gained": result.credibility_gained, "awarded": awarded}

    if stream == SPECULATION_RESOLVED_STREAM:
        return await engine.on_speculation_resolved(
            user_id,
            mojo_won=float(data.get("mojo_won", 0)),
            odds=float(data.get("odds", 0)),
            won=str(data.get("won", "false")).lower() in ("1", "true"),
        )

    if stream == STATISTICS_CHANGED_STREAM:
        return await engine.on_statistics_changed(user_id, _parse_categories(data.get("categories")))

    if stream == RANK_PURCHASED_STREAM:
        return await engine.on_rank_purchased(user_id)

    if stream == EXTERNAL_AWARD_STREAM:
        progress = data.get("progress_value")
        return await engine.on_external_award(
            user_id,
            str(data.get("badge_id", "")),
            progress_value=float(progress) if progress is not None else None,
        )

    raise ValidationError(f"Unknown stream {stream}")


async def handle_message(
    redis_client: aioredis.Redis,
    session_factory: async_sessionmaker[AsyncSession],
    group: str,
    stream: str,
    msg_id: str,
    raw_data: dict,
) -> bool:
    """Process one message. Returns True if it was acked."""
    try:
        async with session_factory() as db:
            outcome = await dispatch(TriggerEngine(db, redis_client), stream, msg_id, parse_message(raw_data))
        logger.info("trigger_handled", stream=stream, msg_id=msg_id, outcome=outcome)
    except (ValidationError, NotFound, ValueError, TypeError) as exc:
        logger.warning("trigger_rejected", stream=stream, msg_id=msg_id, error=str(exc))
    except FatalInconsistency:
        # Never retried automatically; the settlement path already rolled back
        logger.critical("trigger_fatal_inconsistency", stream=stream, msg_id=msg_id, exc_info=True)
    except StoreUnavailable:
        logger.warning("trigger_store_unavailable", stream=stream, msg_id=msg_id, exc_info=True)
        return False
    except Exception:
        logger.exception("trigger_failed", stream=stream, msg_id=msg_id)
        return False
    await redis_client.xack(stream, group, msg_id)
    return True


async def reclaim_pending(
    redis_client: aioredis.Redis,
    session_factory: async_sessionmaker[AsyncSession],
    group: str,
    consumer_name: str,
    min_idle_ms: int = RECLAIM_MIN_IDLE_MS,
) -> int:
    """Retry pending entries that have sat unacked for ``min_idle_ms``.

    Entries delivered ``MAX_DELIVERIES`` times are acked and logged instead.
    Returns the number of entries acked by this pass.
    """
    acked = 0
    for stream in STREAMS:
        pending = await redis_client.xpending_range(
            stream, group, min="-", max="+", count=100, idle=min_idle_ms,
        )
        if not pending:
            continue

        exhausted = [p["message_id"] for p in pending if p["times_delivered"] >= MAX_DELIVERIES]
        if exhausted:
            logger.error("trigger_dead_lettered", stream=stream, msg_ids=exhausted)
            await redis_client.xack(stream, group, *exhausted)
            acked += len(exhausted)

        retry = [p["message_id"] for p in pending if p["times_delivered"] < MAX_DELIVERIES]
        if not retry:
            continue
        claimed = await redis_client.xclaim(stream, group, consumer_name, min_idle_ms, retry)
        for msg_id, raw_data in claimed:
            if msg_id is None:
                continue
            # Entries trimmed from the stream come back without fields
            if not raw_data:
                await redis_client.xack(stream, group, msg_id)
                acked += 1
                continue
            if await handle_message(redis_client, session_factory, group, stream, msg_id, raw_data):
                acked += 1
    return acked


async def consume(
    redis_client: aioredis.Redis,
    session_factory: async_sessionmaker[AsyncSession],
    group: str,
    consumer_name: str,
) -> None:
    """Main consumer loop."""
    streams = {s: ">" for s in STREAMS}

    while _running:
        try:
            await reclaim_pending(redis_client, session_factory, group, consumer_name)
            events = await redis_client.xreadgroup(
                groupname=group,
                consumername=consumer_name,
                streams=streams,
                count=100,
                block=5000,
            )
        except aioredis.ResponseError as e:
            logger.error("xreadgroup_error", error=str(e))
            await asyncio.sleep(1)
            continue

        for stream_name, messages in events or []:
            stream = stream_name if isinstance(stream_name, str) else stream_name.decode()
            for msg_id, raw_data in messages:
                await handle_message(redis_client, session_factory, group, stream, msg_id, raw_data)


async def main() -> None:
    """Run the trigger consumer."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )

    # Create consumer groups (idempotent)
    for stream in STREAMS:
        try:
            await redis_client.xgroup_create(stream, settings.trigger_consumer_group, id="0", mkstream=True)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    loop = asyncio.get_running_loop()

    def _stop() -> None:
        global _running  # noqa: PLW0603
        _running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _stop)

    logger.info("trigger_consumer_started", consumer=settings.trigger_consumer_name)
    try:
        await consume(redis_client, get_session_factory(), settings.trigger_consumer_group,
                      settings.trigger_consumer_name)
    finally:
        await redis_client.aclose()
        await close_db()
        logger.info("trigger_consumer_stopped")


if __name__ == "__main__":
    asyncio.run(main())
