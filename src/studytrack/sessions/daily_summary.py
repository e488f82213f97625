"""Per-user, per-day study totals.

``upsert_add`` is a single INSERT ... ON CONFLICT DO UPDATE statement so
concurrent additions to the same (user, day) never lose an update.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.db.models import DailySummary


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    msg = f"Unsupported dialect for daily summary upsert: {dialect}"
    raise RuntimeError(msg)


async def upsert_add(
    db: AsyncSession,
    user_id: uuid.UUID,
    day: date,
    delta_seconds: int,
) -> int:
    """Create the (user, day) row or add ``delta_seconds`` to it. Returns the new total."""
    now = datetime.now(timezone.utc)
    insert = _insert_for(db)

    stmt = insert(DailySummary).values(
        user_id=user_id,
        date=day,
        total_seconds=delta_seconds,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[DailySummary.user_id, DailySummary.date],
        set_={
            "total_seconds": DailySummary.total_seconds + stmt.excluded.total_seconds,
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(DailySummary.total_seconds)

    result = await db.execute(stmt)
    return int(result.scalar_one())


async def has_row(db: AsyncSession, user_id: uuid.UUID, day: date) -> bool:
    """Whether the user already has activity recorded for ``day``."""
    result = await db.execute(
        select(DailySummary.date).where(
            DailySummary.user_id == user_id,
            DailySummary.date == day,
        )
    )
    return result.first() is not None


async def latest_day_before(db: AsyncSession, user_id: uuid.UUID, day: date) -> date | None:
    """Most recent active day strictly before ``day``, or None."""
    result = await db.execute(
        select(DailySummary.date)
        .where(
            DailySummary.user_id == user_id,
            DailySummary.date < day,
        )
        .order_by(DailySummary.date.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_summaries(
    db: AsyncSession,
    user_id: uuid.UUID,
    start: date,
    end: date,
) -> list[DailySummary]:
    """Summaries for ``start <= date <= end``, oldest first."""
    result = await db.execute(
        select(DailySummary)
        .where(
            DailySummary.user_id == user_id,
            DailySummary.date >= start,
            DailySummary.date <= end,
        )
        .order_by(DailySummary.date.asc())
    )
    return list(result.scalars().all())


async def total_between(db: AsyncSession, user_id: uuid.UUID, start: date, end: date) -> int:
    """Sum of totals for ``start <= date <= end``."""
    result = await db.execute(
        select(func.coalesce(func.sum(DailySummary.total_seconds), 0)).where(
            DailySummary.user_id == user_id,
            DailySummary.date >= start,
            DailySummary.date <= end,
        )
    )
    return int(result.scalar_one())
