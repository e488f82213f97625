"""Shared test fixtures.

Each test gets its own SQLite file database (schema created from the ORM
metadata) and an in-memory fakeredis client.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studytrack.config import Settings, get_settings
from studytrack.database import close_db, get_engine, get_session_factory, init_db
from studytrack.db import models  # noqa: F401
from studytrack.db.base import Base
from studytrack.db.models import Profile, Task
from studytrack.redis_client import set_redis
from studytrack.sessions.schemas import CompletedSession


@pytest.fixture
def settings(tmp_path, monkeypatch) -> Settings:
    """Settings pointed at a throwaway SQLite file."""
    monkeypatch.setenv("STUDYTRACK_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'studytrack.db'}")
    monkeypatch.setenv("STUDYTRACK_LOG_FORMAT", "console")
    monkeypatch.setenv("STUDYTRACK_USER_LOCK_TIMEOUT_SECONDS", "30")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    await init_db(settings.database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[FakeRedis, None]:
    client = FakeRedis(decode_responses=True)
    set_redis(client)
    yield client
    await client.flushall()
    set_redis(None)


@pytest_asyncio.fixture
async def client(session_factory, redis_client) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against a fresh app wired to the test database and fake Redis."""
    from studytrack.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_profile(session_factory):
    """Create a profile row. Returns its id."""

    async def _make(**fields) -> uuid.UUID:
        fields.setdefault("username", f"learner-{uuid.uuid4().hex[:6]}")
        profile = Profile(**fields)
        async with session_factory() as db, db.begin():
            db.add(profile)
        return profile.id

    return _make


@pytest.fixture
def make_task(session_factory):
    """Create a task row owned by ``user_id``. Returns its id."""

    async def _make(user_id: uuid.UUID, **fields) -> uuid.UUID:
        fields.setdefault("title", "Read chapter 3")
        task = Task(user_id=user_id, **fields)
        async with session_factory() as db, db.begin():
            db.add(task)
        return task.id

    return _make


def completed(
    user_id: uuid.UUID,
    started_at: datetime,
    seconds: int,
    **fields,
) -> CompletedSession:
    """A completed session lasting ``seconds`` from ``started_at``."""
    return CompletedSession(
        user_id=user_id,
        subject_id=fields.pop("subject_id", uuid.UUID(int=1)),
        started_at=started_at,
        ended_at=started_at + timedelta(seconds=seconds),
        **fields,
    )


def utc(year: int, month: int, day: int, hour: int = 9, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


async def load(session_factory, model, key):
    """Fetch one row in a short-lived session."""
    async with session_factory() as db:
        return await db.get(model, key)
