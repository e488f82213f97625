"""Middleware registration."""

from fastapi import FastAPI

from studytrack.config import Settings
from studytrack.middleware.cors import setup_cors
from studytrack.middleware.error_handler import setup_error_handlers
from studytrack.middleware.logging import setup_logging
from studytrack.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and middleware.

    Starlette runs middleware in reverse-add order, so CORS is added last to
    wrap every response, error responses included.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
