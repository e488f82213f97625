"""Session completion and profile endpoints."""

from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import date

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studytrack.database import get_session
from studytrack.dependencies import get_session_factory_dep
from studytrack.errors import (
    ConcurrencyConflictError,
    ProfileNotFoundError,
    SessionConflictError,
    SessionValidationError,
)
from studytrack.sessions.completion_service import complete_session_with_retry
from studytrack.sessions.profile_service import get_daily_summaries, get_profile_aggregate
from studytrack.sessions.schemas import (
    CompletedSession,
    CompletionResponse,
    DailySummariesResponse,
    ProfileAggregateResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["Sessions"])


@router.post("/sessions", response_model=CompletionResponse, status_code=201)
async def complete_session(
    body: CompletedSession,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),  # noqa: B008
):
    """Record a completed study session and update the user's aggregates."""
    try:
        result = await complete_session_with_retry(session_factory, body)
    except SessionValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Profile not found") from exc
    except SessionConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ConcurrencyConflictError as exc:
        logger.warning("session_completion_rejected", session_id=str(body.id), reason=exc.reason)
        return JSONResponse(
            status_code=409,
            content={"detail": "Concurrent completion in progress, retry", "retryable": True},
        )

    payload = asdict(result)
    if not result.applied:
        return JSONResponse(status_code=200, content=CompletionResponse(**payload).model_dump(mode="json"))
    return CompletionResponse(**payload)


@router.get("/profiles/{user_id}", response_model=ProfileAggregateResponse)
async def read_profile(user_id: uuid.UUID, db: AsyncSession = Depends(get_session)):  # noqa: B008
    """XP, level and streak counters for one user."""
    try:
        return await get_profile_aggregate(db, user_id)
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Profile not found") from exc


@router.get("/profiles/{user_id}/daily-summaries", response_model=DailySummariesResponse)
async def read_daily_summaries(
    user_id: uuid.UUID,
    start: date | None = Query(None),
    end: date | None = Query(None),
    db: AsyncSession = Depends(get_session),  # noqa: B008
):
    """Per-day study totals over an inclusive date range."""
    try:
        return await get_daily_summaries(db, user_id, start, end)
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Profile not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
