"""Daily streak tracking.

A streak transition happens at most once per calendar day per user: only the
first session of the day (no summary row yet) may touch the streak counters.
The first-session check therefore runs *before* the day's summary upsert, and
the caller must hold the per-user lock across both.

Calendar days are taken from the session's ``started_at`` in a single
canonical zone (``Settings.calendar_timezone``, UTC by default).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.db.models import Profile
from studytrack.sessions import daily_summary

logger = structlog.get_logger()

# Streak transitions
SAME_DAY = "same_day"
STARTED = "started"
CONTINUED = "continued"
RESET = "reset"


@lru_cache
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def session_day(started_at: datetime, tz_name: str = "UTC") -> date:
    """Calendar day a session counts towards. Naive datetimes are read as UTC."""
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    return started_at.astimezone(_zone(tz_name)).date()


def get_monday(d: date) -> date:
    """Monday of the ISO week containing ``d``."""
    return d - timedelta(days=d.weekday())


async def apply_streak(db: AsyncSession, profile: Profile, day: date) -> str:
    """Decide and apply the streak transition for a session on ``day``.

    Must run before today's summary row is upserted. Returns the transition.
    """
    if await daily_summary.has_row(db, profile.id, day):
        return SAME_DAY

    last_day = await daily_summary.latest_day_before(db, profile.id, day)

    if last_day is not None and last_day == day - timedelta(days=1):
        profile.current_streak = profile.current_streak + 1
        transition = CONTINUED
    else:
        if profile.current_streak > 0 and last_day is not None:
            logger.info(
                "streak_reset",
                user_id=str(profile.id),
                previous_streak=profile.current_streak,
                last_active_day=last_day.isoformat(),
            )
        profile.current_streak = 1
        transition = STARTED if last_day is None else RESET

    profile.longest_streak = max(profile.longest_streak, profile.current_streak)
    profile.updated_at = datetime.now(timezone.utc)
    return transition


async def record_day_activity(
    db: AsyncSession,
    profile: Profile,
    day: date,
    duration_seconds: int,
) -> tuple[str, int]:
    """Streak decision first, then the day's additive upsert.

    Returns ``(transition, day_total_seconds)``.
    """
    transition = await apply_streak(db, profile, day)
    await db.flush()
    day_total = await daily_summary.upsert_add(db, profile.id, day, duration_seconds)
    return transition, day_total
