"""Read paths for the profile screen: aggregate counters and daily totals."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.config import get_settings
from studytrack.db.models import Profile
from studytrack.errors import ProfileNotFoundError
from studytrack.sessions import daily_summary
from studytrack.sessions.streak_service import get_monday, session_day
from studytrack.sessions.xp_service import level_progress

MAX_SUMMARY_RANGE_DAYS = 366


def today(now: datetime | None = None) -> date:
    """Current calendar day in the canonical zone."""
    if now is None:
        now = datetime.now(timezone.utc)
    return session_day(now, get_settings().calendar_timezone)


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile:
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        raise ProfileNotFoundError(user_id)
    return profile


async def get_profile_aggregate(
    db: AsyncSession,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> dict:
    """XP, level and streak counters plus level and weekly-goal progress."""
    settings = get_settings()
    profile = await get_profile(db, user_id)

    current_day = today(now)
    monday = get_monday(current_day)
    week_seconds = await daily_summary.total_between(db, user_id, monday, current_day)
    goal_seconds = profile.weekly_goal_minutes * 60

    return {
        "user_id": profile.id,
        "xp_total": profile.xp_total,
        "level": profile.level,
        "current_streak": profile.current_streak,
        "longest_streak": profile.longest_streak,
        "level_progress": level_progress(profile.xp_total, settings.seconds_per_level),
        "weekly_goal": {
            "week_start": monday,
            "goal_minutes": profile.weekly_goal_minutes,
            "studied_seconds": week_seconds,
            "percent": round(100.0 * week_seconds / goal_seconds, 1) if goal_seconds > 0 else 0.0,
        },
    }


async def get_daily_summaries(
    db: AsyncSession,
    user_id: uuid.UUID,
    start: date | None = None,
    end: date | None = None,
) -> dict:
    """Daily totals over an inclusive date range (last 30 days by default)."""
    await get_profile(db, user_id)

    if end is None:
        end = today()
    if start is None:
        start = end - timedelta(days=29)
    if start > end:
        msg = f"start {start} is after end {end}"
        raise ValueError(msg)
    if (end - start).days >= MAX_SUMMARY_RANGE_DAYS:
        msg = f"date range exceeds {MAX_SUMMARY_RANGE_DAYS} days"
        raise ValueError(msg)

    rows = await daily_summary.list_summaries(db, user_id, start, end)
    return {
        "user_id": user_id,
        "start": start,
        "end": end,
        "summaries": [
            {"date": r.date, "total_seconds": r.total_seconds, "updated_at": r.updated_at}
            for r in rows
        ],
        "total_seconds": sum(r.total_seconds for r in rows),
    }
