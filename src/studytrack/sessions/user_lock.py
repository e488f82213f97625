"""Per-user serialization for session completion.

Two layers: a keyed in-process ``asyncio.Lock`` (bounded wait) and, inside
the transaction, a ``SELECT ... FOR UPDATE`` on the profile row so that
completions running in other processes serialize on the database.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.db.models import Profile
from studytrack.errors import ConcurrencyConflictError, ProfileNotFoundError

# lock_not_available, serialization_failure, deadlock_detected
CONFLICT_SQLSTATES = frozenset({"55P03", "40001", "40P01"})


class UserLockRegistry:
    """Keyed asyncio locks; entries are dropped once nobody holds or waits."""

    def __init__(self) -> None:
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._refs: dict[uuid.UUID, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, user_id: uuid.UUID, timeout: float) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._refs[user_id] = self._refs.get(user_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except TimeoutError as exc:
                raise ConcurrencyConflictError(user_id, f"lock wait exceeded {timeout}s") from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[user_id] -= 1
            if self._refs[user_id] == 0:
                del self._refs[user_id]
                del self._locks[user_id]


user_locks = UserLockRegistry()


def is_conflict(exc: DBAPIError) -> bool:
    """Whether a driver error is a lock/serialization conflict worth retrying."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(orig or exc)


async def lock_profile(db: AsyncSession, user_id: uuid.UUID, timeout: float) -> Profile:
    """Load the profile row with a row lock held until the transaction ends."""
    if db.get_bind().dialect.name == "postgresql":
        await db.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))

    try:
        result = await db.execute(
            select(Profile)
            .where(Profile.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    except DBAPIError as exc:
        if is_conflict(exc):
            raise ConcurrencyConflictError(user_id, "profile row lock not available") from exc
        raise

    profile = result.scalar_one_or_none()
    if profile is None:
        raise ProfileNotFoundError(user_id)
    return profile
