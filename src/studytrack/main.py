"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from studytrack.config import get_settings
from studytrack.database import close_db, get_session_factory, init_db
from studytrack.health.router import router as health_router
from studytrack.leaderboard.materializer import LeaderboardMaterializer
from studytrack.leaderboard.router import admin_router as leaderboard_admin_router
from studytrack.leaderboard.router import router as leaderboard_router
from studytrack.middleware import setup_middleware
from studytrack.redis_client import close_redis, init_redis
from studytrack.sessions.router import router as sessions_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    app.state.materializer = LeaderboardMaterializer(get_session_factory(), settings)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="StudyTrack API",
        description="Study session aggregation: XP, levels, streaks, daily totals and leaderboards",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(sessions_router)
    app.include_router(leaderboard_router)
    app.include_router(leaderboard_admin_router)

    return app


app = create_app()
