"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studytrack.database import get_session_factory
from studytrack.leaderboard.materializer import LeaderboardMaterializer
from studytrack.redis_client import get_redis as _get_redis


def get_session_factory_dep() -> async_sessionmaker[AsyncSession]:
    """Session factory for endpoints that manage their own transactions."""
    return get_session_factory()


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client as a FastAPI dependency."""
    yield _get_redis()


def get_materializer(request: Request) -> LeaderboardMaterializer:
    """The app-wide materializer, created on first use."""
    materializer = getattr(request.app.state, "materializer", None)
    if materializer is None:
        materializer = LeaderboardMaterializer(get_session_factory())
        request.app.state.materializer = materializer
    return materializer
