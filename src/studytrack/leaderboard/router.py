"""Leaderboard read endpoints and the admin refresh trigger."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.database import get_session
from studytrack.dependencies import get_materializer, get_redis_dep
from studytrack.errors import RefreshFailedError, UnknownPeriodError
from studytrack.leaderboard.materializer import LeaderboardMaterializer, check_period
from studytrack.leaderboard.schemas import (
    LeaderboardResponse,
    RefreshAllResponse,
    RefreshResult,
    UserRankResponse,
)
from studytrack.leaderboard.service import get_leaderboard, get_user_entry

router = APIRouter(prefix="/api/v1/leaderboard", tags=["Leaderboard"])
admin_router = APIRouter(prefix="/api/v1/admin/leaderboard", tags=["Admin"])


def _known_period(period: str) -> str:
    try:
        return check_period(period)
    except UnknownPeriodError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/{period}", response_model=LeaderboardResponse)
async def read_leaderboard(
    period: str,
    limit: int | None = Query(None, ge=1),
    db: AsyncSession = Depends(get_session),  # noqa: B008
    redis=Depends(get_redis_dep),  # noqa: B008
):
    """Ranked study totals for week, month or year, with the snapshot's ``as_of``."""
    return await get_leaderboard(db, redis, _known_period(period), limit)


@router.get("/{period}/users/{user_id}", response_model=UserRankResponse)
async def read_user_rank(
    period: str,
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),  # noqa: B008
):
    """A single user's rank in the active snapshot."""
    entry = await get_user_entry(db, _known_period(period), user_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="User is not on this leaderboard")
    return entry


@admin_router.post("/refresh", response_model=RefreshAllResponse)
async def trigger_refresh_all(
    materializer: LeaderboardMaterializer = Depends(get_materializer),  # noqa: B008
):
    """Refresh every period now. Per-period failures are reported, not raised."""
    results = await materializer.refresh_all()
    return {"results": list(results.values())}


@admin_router.post("/{period}/refresh", response_model=RefreshResult)
async def trigger_refresh(
    period: str,
    materializer: LeaderboardMaterializer = Depends(get_materializer),  # noqa: B008
):
    """Recompute one period's snapshot now and swap it in."""
    try:
        return await materializer.refresh(_known_period(period))
    except RefreshFailedError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
