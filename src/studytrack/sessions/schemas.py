"""Pydantic models for session completion and profile reads."""

from __future__ import annotations

import datetime as dt
import math
import uuid
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field, computed_field, field_validator


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Inbound event ---


class CompletedSession(BaseModel):
    """A finished timed study session as reported by the timer."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    user_id: uuid.UUID
    subject_id: uuid.UUID
    task_id: uuid.UUID | None = None
    started_at: datetime
    ended_at: datetime
    notes: str | None = None

    @field_validator("started_at", "ended_at")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return as_utc(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> int:
        """Whole seconds between start and end, floored."""
        return math.floor((self.ended_at - self.started_at).total_seconds())


class CompletionResponse(BaseModel):
    session_id: uuid.UUID
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


# --- Profile reads ---


class LevelProgress(BaseModel):
    level: int
    seconds_into_level: int
    seconds_for_level: int
    seconds_to_next_level: int


class WeeklyGoalProgress(BaseModel):
    week_start: date
    goal_minutes: int
    studied_seconds: int
    percent: float


class ProfileAggregateResponse(BaseModel):
    user_id: uuid.UUID
    xp_total: int
    level: int
    current_streak: int
    longest_streak: int
    level_progress: LevelProgress
    weekly_goal: WeeklyGoalProgress


class DailySummaryResponse(BaseModel):
    date: dt.date
    total_seconds: int
    updated_at: datetime | None = None


class DailySummariesResponse(BaseModel):
    user_id: uuid.UUID
    start: date
    end: date
    summaries: list[DailySummaryResponse]
    total_seconds: int
