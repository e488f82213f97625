"""Global exception handlers: every error leaves as JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from studytrack.errors import (
    ConcurrencyConflictError,
    ProfileNotFoundError,
    RefreshFailedError,
    SessionConflictError,
    SessionValidationError,
    StudyTrackError,
    UnknownPeriodError,
)

logger = structlog.get_logger()

_STATUS_BY_ERROR: list[tuple[type[StudyTrackError], int]] = [
    (SessionValidationError, 422),
    (ProfileNotFoundError, 404),
    (UnknownPeriodError, 404),
    (ConcurrencyConflictError, 409),
    (SessionConflictError, 409),
    (RefreshFailedError, 503),
]


def status_for(exc: StudyTrackError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(StudyTrackError)
    async def domain_exception_handler(request: Request, exc: StudyTrackError) -> JSONResponse:
        """Domain errors that escaped a router keep their meaning over HTTP."""
        status_code = status_for(exc)
        logger.warning("domain_error", path=request.url.path, error=str(exc), status=status_code)
        content: dict[str, object] = {"detail": str(exc)}
        if isinstance(exc, ConcurrencyConflictError):
            content["retryable"] = True
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
