"""ORM models for profiles, study sessions, daily summaries and leaderboards.

Profile, DailySummary and the snapshot tables are owned by the engine.
Task is a projection of the externally managed task store; the engine only
touches ``logged_seconds``, ``status`` and ``updated_at``.
"""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from studytrack.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """Per-user aggregate counters. Written only by the completion handler."""

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("xp_total >= 0", name="ck_profiles_xp_non_negative"),
        CheckConstraint("level >= 1", name="ck_profiles_level_positive"),
        CheckConstraint("current_streak >= 0", name="ck_profiles_streak_non_negative"),
        CheckConstraint("longest_streak >= current_streak", name="ck_profiles_longest_streak"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    xp_total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    weekly_goal_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=1200, server_default="1200")

    # --- Privacy ---
    show_in_leaderboard: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Profile id={self.id} level={self.level} xp={self.xp_total} streak={self.current_streak}>"


# ---------------------------------------------------------------------------
# Study sessions
# ---------------------------------------------------------------------------


class StudySession(Base):
    """A completed timed study session. Immutable once written."""

    __tablename__ = "study_sessions"
    __table_args__ = (
        CheckConstraint(
            "duration_seconds > 0 AND duration_seconds <= 86400",
            name="ck_study_sessions_duration_reasonable",
        ),
        Index("idx_study_sessions_user_started", "user_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    task_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Daily summaries
# ---------------------------------------------------------------------------


class DailySummary(Base):
    """One row per (user, calendar day) with activity."""

    __tablename__ = "daily_summaries"
    __table_args__ = (
        Index("idx_daily_summaries_date_user", "date", "user_id"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    total_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Tasks (external store projection)
# ---------------------------------------------------------------------------


class Task(Base):
    """Planned unit of work a session may be logged against."""

    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="planned", server_default="planned")
    planned_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    logged_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class LeaderboardSnapshot(Base):
    """One ranked row of one materialized leaderboard version."""

    __tablename__ = "leaderboard_snapshots"
    __table_args__ = (
        UniqueConstraint("period", "version", "user_id", name="lb_snapshots_period_version_user_key"),
        Index("idx_lb_snapshots_period_version_rank", "period", "version", "rank"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period: Mapped[str] = mapped_column(String(8), nullable=False)
    version: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    total_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)


class LeaderboardRefresh(Base):
    """Active snapshot pointer and last refresh outcome, one row per period."""

    __tablename__ = "leaderboard_refreshes"

    period: Mapped[str] = mapped_column(String(8), primary_key=True)
    active_version: Mapped[str | None] = mapped_column(String(36), nullable=True)
    refreshed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_status: Mapped[str] = mapped_column(String(16), nullable=False, default="idle", server_default="idle")
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
