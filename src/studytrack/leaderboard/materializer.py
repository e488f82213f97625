"""Leaderboard snapshot materialization.

Each refresh ranks every opted-in profile by study time over a trailing
window and writes the result under a fresh snapshot version. The version is
made active and every other version of that period is deleted in the same
transaction, so readers see either the old snapshot or the new one, never a
mix. Concurrent refreshes of one period are safe: the last to commit wins.

State per period: idle -> refreshing -> idle, or refreshing -> failed -> idle.
A failed period stays failed until its next attempt starts. A failed or
timed-out refresh leaves the previous snapshot active and is recorded on the
period's ``leaderboard_refreshes`` row.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from datetime import date, datetime, timedelta, timezone

import structlog
from sqlalchemy import and_, delete, func, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studytrack.config import Settings, get_settings
from studytrack.db.models import DailySummary, LeaderboardRefresh, LeaderboardSnapshot, Profile
from studytrack.errors import RefreshFailedError, UnknownPeriodError
from studytrack.sessions.streak_service import session_day

logger = structlog.get_logger()

PERIOD_WINDOW_DAYS: dict[str, int] = {
    "week": 7,
    "month": 30,
    "year": 365,
}
PERIODS = tuple(PERIOD_WINDOW_DAYS)


class RefreshState(str, enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    FAILED = "failed"


def check_period(period: str) -> str:
    if period not in PERIOD_WINDOW_DAYS:
        raise UnknownPeriodError(period)
    return period


def window_bounds(period: str, today: date) -> tuple[date, date]:
    """Inclusive ``(start, end)`` of the trailing window ending today."""
    days = PERIOD_WINDOW_DAYS[check_period(period)]
    return today - timedelta(days=days - 1), today


async def compute_rankings(db: AsyncSession, period: str, today: date) -> list[dict]:
    """Rank opted-in profiles by windowed study time, ties broken by user id."""
    start, end = window_bounds(period, today)
    total = func.coalesce(func.sum(DailySummary.total_seconds), 0).label("total_seconds")

    result = await db.execute(
        select(Profile.id, Profile.username, Profile.avatar_url, Profile.level, total)
        .outerjoin(
            DailySummary,
            and_(
                DailySummary.user_id == Profile.id,
                DailySummary.date >= start,
                DailySummary.date <= end,
            ),
        )
        .where(Profile.show_in_leaderboard.is_(True))
        .group_by(Profile.id, Profile.username, Profile.avatar_url, Profile.level)
    )
    rows = sorted(result.all(), key=lambda r: (-int(r.total_seconds), r.id))

    return [
        {
            "user_id": row.id,
            "rank": position,
            "total_seconds": int(row.total_seconds),
            "username": row.username,
            "avatar_url": row.avatar_url,
            "level": row.level,
        }
        for position, row in enumerate(rows, start=1)
    ]


def _insert_for(db: AsyncSession):
    return pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert


async def _upsert_refresh_row(db: AsyncSession, period: str, values: dict) -> None:
    stmt = _insert_for(db)(LeaderboardRefresh).values(period=period, **values)
    stmt = stmt.on_conflict_do_update(index_elements=[LeaderboardRefresh.period], set_=values)
    await db.execute(stmt)


class LeaderboardMaterializer:
    """Recomputes and swaps in leaderboard snapshots."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._states: dict[str, RefreshState] = {p: RefreshState.IDLE for p in PERIODS}

    def state(self, period: str) -> RefreshState:
        return self._states[check_period(period)]

    def states(self) -> dict[str, str]:
        return {period: state.value for period, state in self._states.items()}

    def _begin(self, period: str) -> None:
        if self._states[period] is RefreshState.FAILED:
            logger.info("leaderboard_refresh_retrying", period=period)
            self._states[period] = RefreshState.IDLE
        self._states[period] = RefreshState.REFRESHING

    async def refresh(self, period: str, now: datetime | None = None) -> dict:
        """Materialize one period. Raises RefreshFailedError on failure or timeout."""
        check_period(period)
        if now is None:
            now = datetime.now(timezone.utc)
        timeout = self._settings.leaderboard_refresh_timeout_seconds

        self._begin(period)
        started = datetime.now(timezone.utc)
        try:
            outcome = await asyncio.wait_for(self._materialize(period, now), timeout=timeout)
        except TimeoutError as exc:
            await self._fail(period, f"timed out after {timeout}s")
            raise RefreshFailedError(period, f"timed out after {timeout}s") from exc
        except Exception as exc:
            await self._fail(period, repr(exc))
            raise RefreshFailedError(period, repr(exc)) from exc

        self._states[period] = RefreshState.IDLE
        logger.info(
            "leaderboard_refreshed",
            period=period,
            version=outcome["version"],
            entries=outcome["entry_count"],
            duration_ms=int((datetime.now(timezone.utc) - started).total_seconds() * 1000),
        )
        return outcome

    async def refresh_all(self, now: datetime | None = None) -> dict[str, dict]:
        """Refresh every period; one period failing does not stop the others."""
        results: dict[str, dict] = {}
        for period in PERIODS:
            try:
                results[period] = await self.refresh(period, now)
            except RefreshFailedError as exc:
                results[period] = {"period": period, "error": exc.reason}
        return results

    async def _materialize(self, period: str, now: datetime) -> dict:
        version = uuid.uuid4().hex
        today = session_day(now, self._settings.calendar_timezone)

        async with self._session_factory() as db, db.begin():
            entries = await compute_rankings(db, period, today)
            if entries:
                await db.execute(
                    insert(LeaderboardSnapshot),
                    [{"period": period, "version": version, **entry} for entry in entries],
                )
            await _upsert_refresh_row(db, period, {
                "active_version": version,
                "refreshed_at": now,
                "entry_count": len(entries),
                "last_status": "ok",
                "last_error": None,
                "last_attempt_at": now,
            })
            await db.execute(
                delete(LeaderboardSnapshot).where(
                    LeaderboardSnapshot.period == period,
                    LeaderboardSnapshot.version != version,
                )
            )

        return {
            "period": period,
            "version": version,
            "entry_count": len(entries),
            "refreshed_at": now,
        }

    async def _fail(self, period: str, reason: str) -> None:
        self._states[period] = RefreshState.FAILED
        logger.warning("leaderboard_refresh_failed", period=period, reason=reason)
        try:
            async with self._session_factory() as db, db.begin():
                await _upsert_refresh_row(db, period, {
                    "last_status": "failed",
                    "last_error": reason[:1000],
                    "last_attempt_at": datetime.now(timezone.utc),
                })
        except Exception:
            logger.warning("leaderboard_refresh_status_write_failed", period=period, exc_info=True)
