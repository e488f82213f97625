"""Leaderboard reads: the active snapshot, cached in Redis per version.

Entries are always selected through a join on the period's active version, so
a read racing a refresh sees one whole snapshot. Cache keys embed the version,
which makes a swap invalidate every cached page of the old snapshot.
"""

from __future__ import annotations

import json
import uuid

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.config import get_settings
from studytrack.db.models import LeaderboardRefresh, LeaderboardSnapshot
from studytrack.leaderboard.materializer import check_period
from studytrack.sessions.schemas import as_utc

logger = structlog.get_logger()


def build_cache_key(period: str, version: str, limit: int) -> str:
    return f"leaderboard:{period}:{version}:{limit}"


def _entry(row: LeaderboardSnapshot) -> dict:
    return {
        "rank": row.rank,
        "user_id": row.user_id,
        "username": row.username,
        "avatar_url": row.avatar_url,
        "level": row.level,
        "total_seconds": row.total_seconds,
    }


def _active_snapshot():
    return select(
        LeaderboardSnapshot,
        LeaderboardRefresh.active_version,
        LeaderboardRefresh.refreshed_at,
        LeaderboardRefresh.entry_count,
    ).join(
        LeaderboardRefresh,
        and_(
            LeaderboardRefresh.period == LeaderboardSnapshot.period,
            LeaderboardRefresh.active_version == LeaderboardSnapshot.version,
        ),
    )


async def get_refresh_status(db: AsyncSession, period: str) -> LeaderboardRefresh | None:
    result = await db.execute(
        select(LeaderboardRefresh).where(LeaderboardRefresh.period == check_period(period))
    )
    return result.scalar_one_or_none()


async def _cache_get(redis: Redis | None, key: str) -> dict | None:
    if redis is None:
        return None
    try:
        cached = await redis.get(key)
    except RedisError:
        logger.warning("leaderboard_cache_read_failed", key=key, exc_info=True)
        return None
    return json.loads(cached) if cached else None


async def _cache_set(redis: Redis | None, key: str, payload: dict, ttl: int) -> None:
    if redis is None or ttl <= 0:
        return
    try:
        await redis.setex(key, ttl, json.dumps(payload, default=str))
    except RedisError:
        logger.warning("leaderboard_cache_write_failed", key=key, exc_info=True)


async def get_leaderboard(
    db: AsyncSession,
    redis: Redis | None,
    period: str,
    limit: int | None = None,
) -> dict:
    """Top ``limit`` entries of the active snapshot with its ``as_of``."""
    settings = get_settings()
    check_period(period)
    if limit is None:
        limit = settings.leaderboard_default_limit
    limit = max(1, min(limit, settings.leaderboard_max_limit))

    status = await get_refresh_status(db, period)
    last_status = status.last_status if status else "idle"
    if status is None or status.active_version is None:
        return {
            "period": period,
            "version": None,
            "as_of": None,
            "total": 0,
            "last_refresh_status": last_status,
            "entries": [],
        }

    cached = await _cache_get(redis, build_cache_key(period, status.active_version, limit))
    if cached is not None:
        return {**cached, "last_refresh_status": last_status}

    result = await db.execute(
        _active_snapshot()
        .where(LeaderboardSnapshot.period == period)
        .order_by(LeaderboardSnapshot.rank)
        .limit(limit)
    )
    rows = result.all()

    # Rows carry the pointer they were read through; it may be newer than ``status``.
    if rows:
        _, version, refreshed_at, total = rows[0]
    else:
        version, refreshed_at, total = status.active_version, status.refreshed_at, status.entry_count
    payload = {
        "period": period,
        "version": version,
        "as_of": as_utc(refreshed_at) if refreshed_at else None,
        "total": total,
        "entries": [_entry(row[0]) for row in rows],
    }
    await _cache_set(
        redis,
        build_cache_key(period, version, limit),
        payload,
        settings.leaderboard_cache_ttl_seconds,
    )
    return {**payload, "last_refresh_status": last_status}


async def get_user_entry(db: AsyncSession, period: str, user_id: uuid.UUID) -> dict | None:
    """One user's row in the active snapshot, or None if they are not ranked."""
    result = await db.execute(
        _active_snapshot().where(
            LeaderboardSnapshot.period == check_period(period),
            LeaderboardSnapshot.user_id == user_id,
        )
    )
    row = result.first()
    if row is None:
        return None

    snapshot, _, refreshed_at, total = row
    return {
        "period": period,
        "as_of": as_utc(refreshed_at) if refreshed_at else None,
        "total": total,
        "entry": _entry(snapshot),
    }
