"""Pydantic models for leaderboard reads and admin refresh."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: uuid.UUID
    username: str | None = None
    avatar_url: str | None = None
    level: int
    total_seconds: int


class LeaderboardResponse(BaseModel):
    period: str
    version: str | None = None
    as_of: datetime | None = None
    total: int = 0
    last_refresh_status: str = "idle"
    entries: list[LeaderboardEntry]


class UserRankResponse(BaseModel):
    period: str
    as_of: datetime | None = None
    total: int
    entry: LeaderboardEntry


class RefreshResult(BaseModel):
    period: str
    version: str | None = None
    entry_count: int = 0
    refreshed_at: datetime | None = None
    error: str | None = None


class RefreshAllResponse(BaseModel):
    results: list[RefreshResult]
