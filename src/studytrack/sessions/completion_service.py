"""Session completion: the single writer of XP, level, streak and daily totals.

``complete_session`` applies one completed session atomically inside the
caller's transaction, with the profile row locked until that transaction ends:

1. Persist the session row. Replaying an identical stored session is a no-op;
   reusing its id for a different session is rejected.
2. Lock the profile row, add XP, recompute the level.
3. Streak decision against the day's summary row, then the additive upsert.
4. Task progress, behind a savepoint.

``complete_session_with_retry`` is the caller-side policy: the in-process
per-user lock held across one whole transaction (commit included) per
attempt, retried on a concurrency conflict with the same session id.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date

import structlog
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studytrack.config import Settings, get_settings
from studytrack.db.models import StudySession
from studytrack.errors import ConcurrencyConflictError, SessionConflictError, SessionValidationError
from studytrack.sessions import daily_summary, streak_service
from studytrack.sessions.schemas import CompletedSession, as_utc
from studytrack.sessions.task_progress import link_task_progress
from studytrack.sessions.user_lock import UserLockRegistry, is_conflict, lock_profile, user_locks
from studytrack.sessions.xp_service import apply_xp

logger = structlog.get_logger()

RETRY_BACKOFF_SECONDS = 0.05


@dataclass(frozen=True)
class CompletionResult:
    session_id: object
    applied: bool
    session_date: date
    duration_seconds: int
    xp_total: int
    level: int
    leveled_up: bool
    current_streak: int
    longest_streak: int
    streak_transition: str
    day_total_seconds: int
    task_linked: bool


def validate_session(session: CompletedSession, max_seconds: int | None = None) -> int:
    """Reject non-positive or over-long sessions. Returns the duration in seconds."""
    if max_seconds is None:
        max_seconds = get_settings().max_session_seconds
    duration = session.duration_seconds
    if duration <= 0:
        msg = f"Session {session.id} has non-positive duration ({duration}s)"
        raise SessionValidationError(msg)
    if duration > max_seconds:
        msg = f"Session {session.id} exceeds the {max_seconds}s cap ({duration}s)"
        raise SessionValidationError(msg)
    return duration


async def _stored_session(db: AsyncSession, session_id: object) -> StudySession | None:
    result = await db.execute(select(StudySession).where(StudySession.id == session_id))
    return result.scalar_one_or_none()


def _mismatched_fields(stored: StudySession, session: CompletedSession, duration: int) -> list[str]:
    """Fields where a stored session differs from a replayed event with the same id."""
    incoming = {
        "user_id": session.user_id,
        "started_at": session.started_at,
        "ended_at": session.ended_at,
        "duration_seconds": duration,
    }
    current = {
        "user_id": stored.user_id,
        "started_at": as_utc(stored.started_at),
        "ended_at": as_utc(stored.ended_at),
        "duration_seconds": stored.duration_seconds,
    }
    return [name for name in incoming if incoming[name] != current[name]]


async def complete_session(
    db: AsyncSession,
    session: CompletedSession,
    settings: Settings | None = None,
) -> CompletionResult:
    """Apply one completed session. The caller commits or rolls back ``db``."""
    settings = settings or get_settings()
    duration = validate_session(session, settings.max_session_seconds)
    day = streak_service.session_day(session.started_at, settings.calendar_timezone)

    profile = await lock_profile(db, session.user_id, settings.user_lock_timeout_seconds)

    stored = await _stored_session(db, session.id)
    if stored is not None:
        mismatched = _mismatched_fields(stored, session, duration)
        if mismatched:
            logger.warning(
                "session_id_reused",
                session_id=str(session.id),
                user_id=str(session.user_id),
                fields=mismatched,
            )
            raise SessionConflictError(session.id, mismatched)

        logger.info("session_already_applied", session_id=str(session.id), user_id=str(session.user_id))
        stored_day = streak_service.session_day(as_utc(stored.started_at), settings.calendar_timezone)
        return CompletionResult(
            session_id=stored.id,
            applied=False,
            session_date=stored_day,
            duration_seconds=stored.duration_seconds,
            xp_total=profile.xp_total,
            level=profile.level,
            leveled_up=False,
            current_streak=profile.current_streak,
            longest_streak=profile.longest_streak,
            streak_transition=streak_service.SAME_DAY,
            day_total_seconds=await daily_summary.total_between(db, profile.id, stored_day, stored_day),
            task_linked=False,
        )

    row = StudySession(
        id=session.id,
        user_id=session.user_id,
        subject_id=session.subject_id,
        task_id=session.task_id,
        started_at=session.started_at,
        ended_at=session.ended_at,
        duration_seconds=duration,
        notes=session.notes,
    )
    db.add(row)

    old_level, new_level = apply_xp(profile, duration, settings.seconds_per_level)
    transition, day_total = await streak_service.record_day_activity(db, profile, day, duration)

    xp_total = profile.xp_total
    current_streak = profile.current_streak
    longest_streak = profile.longest_streak

    task_linked = await link_task_progress(db, row)

    logger.info(
        "session_completed",
        session_id=str(session.id),
        user_id=str(session.user_id),
        session_date=day.isoformat(),
        duration_seconds=duration,
        xp_total=xp_total,
        level=new_level,
        streak=current_streak,
        streak_transition=transition,
    )

    return CompletionResult(
        session_id=session.id,
        applied=True,
        session_date=day,
        duration_seconds=duration,
        xp_total=xp_total,
        level=new_level,
        leveled_up=new_level > old_level,
        current_streak=current_streak,
        longest_streak=longest_streak,
        streak_transition=transition,
        day_total_seconds=day_total,
        task_linked=task_linked,
    )


async def _attempt(
    session_factory: async_sessionmaker[AsyncSession],
    session: CompletedSession,
    settings: Settings,
    locks: UserLockRegistry,
) -> CompletionResult:
    async with locks.hold(session.user_id, settings.user_lock_timeout_seconds):
        try:
            async with session_factory() as db, db.begin():
                return await complete_session(db, session, settings)
        except DBAPIError as exc:
            if is_conflict(exc):
                raise ConcurrencyConflictError(session.user_id, "transaction conflict") from exc
            raise


async def complete_session_with_retry(
    session_factory: async_sessionmaker[AsyncSession],
    session: CompletedSession,
    settings: Settings | None = None,
    locks: UserLockRegistry = user_locks,
) -> CompletionResult:
    """Run ``complete_session`` in its own transaction, retrying conflicts.

    Validation errors are raised before any attempt. A conflict on the last
    attempt is re-raised as-is.
    """
    settings = settings or get_settings()
    validate_session(session, settings.max_session_seconds)
    attempts = max(1, settings.completion_max_attempts)

    attempt = 1
    while True:
        try:
            return await _attempt(session_factory, session, settings, locks)
        except ConcurrencyConflictError as exc:
            if attempt >= attempts:
                logger.error(
                    "session_completion_conflict",
                    session_id=str(session.id),
                    user_id=str(session.user_id),
                    attempts=attempt,
                    reason=exc.reason,
                )
                raise
            logger.warning(
                "session_completion_retry",
                session_id=str(session.id),
                user_id=str(session.user_id),
                attempt=attempt,
                reason=exc.reason,
            )
            await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)
            attempt += 1
