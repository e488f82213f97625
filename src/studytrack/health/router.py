"""Liveness, readiness and version endpoints.

``/ready`` also reports each leaderboard period: the in-process refresh state
and the last persisted refresh outcome. A failed refresh is stale data, not
unreadiness, so it never flips the overall status.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.config import get_settings
from studytrack.database import get_session
from studytrack.db.models import LeaderboardRefresh
from studytrack.dependencies import get_materializer
from studytrack.leaderboard.materializer import LeaderboardMaterializer
from studytrack.redis_client import get_redis

router = APIRouter()


async def _dependency_checks(db: AsyncSession) -> dict[str, str]:
    checks: dict[str, str] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    return checks


async def _leaderboard_status(db: AsyncSession, materializer: LeaderboardMaterializer) -> dict[str, dict]:
    periods: dict[str, dict] = {
        period: {"state": state, "last_status": None, "refreshed_at": None}
        for period, state in materializer.states().items()
    }
    try:
        rows = (await db.execute(select(LeaderboardRefresh))).scalars().all()
    except Exception:
        # database failure is already reported under checks
        return periods

    for row in rows:
        if row.period in periods:
            periods[row.period]["last_status"] = row.last_status
            periods[row.period]["refreshed_at"] = row.refreshed_at.isoformat() if row.refreshed_at else None
    return periods


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
    materializer: LeaderboardMaterializer = Depends(get_materializer),  # noqa: B008
) -> dict[str, object]:
    """Readiness: database and Redis reachable, plus leaderboard freshness."""
    checks = await _dependency_checks(db)
    ready = all(v == "ok" for v in checks.values())
    return {
        "status": "ready" if ready else "degraded",
        "checks": checks,
        "leaderboard": await _leaderboard_status(db, materializer),
    }


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"version": settings.app_version, "environment": settings.environment}
