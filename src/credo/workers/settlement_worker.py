"""arq worker running the weekly settlement tick.

Import path for arq CLI: arq credo.workers.settlement_worker.WorkerSettings

The cron fires at the weekly reset instant. Settlement is idempotent per
(user, week), so the startup run and any missed or duplicated firing only
catch up weeks that are still unsettled.
"""

from __future__ import annotations

from zoneinfo import ZoneInfo

import structlog
from arq import cron
from arq.connections import RedisSettings

from credo.config import get_settings
from credo.credibility.settlement_service import run_weekly_settlement
from credo.credibility.week_utils import get_week_clock
from credo.database import close_db, get_session_factory, init_db
from credo.middleware.logging import setup_logging

logger = structlog.get_logger()

_settings = get_settings()


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database on worker startup."""
    setup_logging(_settings)
    await init_db(_settings.database_url)
    ctx["session_factory"] = get_session_factory()
    logger.info("settlement_worker_started", reset_hour=_settings.weekly_reset_hour,
                reset_timezone=_settings.weekly_reset_timezone)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_db()
    logger.info("settlement_worker_stopped")


async def weekly_settlement(ctx: dict) -> dict[str, object]:  # type: ignore[type-arg]
    """Settle every account whose week boundary has passed."""
    report = await run_weekly_settlement(
        ctx["session_factory"],
        ctx["redis"],
        clock=get_week_clock(_settings),
        concurrency=_settings.settlement_concurrency,
    )
    return {
        "week_iso": report.week_iso,
        "processed": report.processed,
        "weeks_settled": report.weeks_settled,
        "already_settled": report.already_settled,
        "failed": report.failed,
    }


class WorkerSettings:
    """arq worker settings for weekly settlement."""

    functions = [weekly_settlement]
    cron_jobs = [
        cron(
            weekly_settlement,
            weekday="mon",
            hour=_settings.weekly_reset_hour,
            minute=0,
            second=0,
            run_at_startup=True,
            unique=True,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(_settings.redis_url)
    timezone = ZoneInfo(_settings.weekly_reset_timezone)
    max_jobs = 1
    job_timeout = 3600
