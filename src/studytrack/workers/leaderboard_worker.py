"""Leaderboard refresh arq worker: scheduled snapshot rebuilds.

Every period is rebuilt once per ``leaderboard_refresh_interval_minutes``
(hourly by default). Operators can also enqueue ``trigger_leaderboard_refresh``
for a single period.

Usage: arq studytrack.workers.leaderboard_worker.LeaderboardWorkerSettings
"""

from __future__ import annotations

import logging

from arq.connections import RedisSettings
from arq.cron import cron

from studytrack.config import get_settings
from studytrack.database import close_db, get_session_factory, init_db
from studytrack.errors import RefreshFailedError
from studytrack.leaderboard.materializer import PERIODS, LeaderboardMaterializer

logger = logging.getLogger(__name__)


def cron_schedule(interval_minutes: int) -> dict[str, set[int]]:
    """arq ``cron`` keyword arguments for a fixed refresh interval.

    Intervals under an hour run on minute marks; longer ones on hour marks.
    """
    if interval_minutes <= 0:
        msg = f"interval must be positive, got {interval_minutes}"
        raise ValueError(msg)
    if interval_minutes < 60:
        return {"minute": set(range(0, 60, interval_minutes))}
    hours = max(1, interval_minutes // 60)
    return {"hour": set(range(0, 24, hours)), "minute": {0}}


async def _refresh(ctx: dict, period: str) -> dict:
    materializer: LeaderboardMaterializer = ctx["materializer"]
    try:
        outcome = await materializer.refresh(period)
    except RefreshFailedError as exc:
        logger.warning("Leaderboard %s refresh failed, previous snapshot kept: %s", period, exc.reason)
        return {"period": period, "error": exc.reason}
    logger.info("Leaderboard %s refreshed: %d entries", period, outcome["entry_count"])
    return outcome


async def refresh_week_leaderboard(ctx: dict) -> dict:
    return await _refresh(ctx, "week")


async def refresh_month_leaderboard(ctx: dict) -> dict:
    return await _refresh(ctx, "month")


async def refresh_year_leaderboard(ctx: dict) -> dict:
    return await _refresh(ctx, "year")


async def trigger_leaderboard_refresh(ctx: dict, period: str) -> dict:
    """On-demand refresh of one period."""
    if period not in PERIODS:
        logger.error("Ignoring refresh for unknown period %r", period)
        return {"period": period, "error": "unknown period"}
    return await _refresh(ctx, period)


async def leaderboard_startup(ctx: dict) -> None:
    """Initialize the database and the materializer on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)

    ctx["materializer"] = LeaderboardMaterializer(get_session_factory(), settings)
    logger.info("Leaderboard worker started")


async def leaderboard_shutdown(ctx: dict) -> None:
    """Clean up on worker shutdown."""
    await close_db()
    logger.info("Leaderboard worker shut down")


def _cron_jobs() -> list:
    settings = get_settings()
    schedule = cron_schedule(settings.leaderboard_refresh_interval_minutes)
    return [
        cron(refresh_week_leaderboard, run_at_startup=True, **schedule),
        cron(refresh_month_leaderboard, **schedule),
        cron(refresh_year_leaderboard, **schedule),
    ]


class LeaderboardWorkerSettings:
    """arq worker settings for leaderboard refresh."""

    functions = [trigger_leaderboard_refresh]
    cron_jobs = _cron_jobs()
    on_startup = leaderboard_startup
    on_shutdown = leaderboard_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 3
    job_timeout = int(get_settings().leaderboard_refresh_timeout_seconds) + 30
