"""Middleware registration."""

from fastapi import FastAPI

from wellquest.config import Settings
from wellquest.middleware.cors import setup_cors
from wellquest.middleware.error_handler import setup_error_handlers
from wellquest.middleware.logging import setup_logging
from wellquest.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost).
    CORS is added last so it also wraps error responses.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
