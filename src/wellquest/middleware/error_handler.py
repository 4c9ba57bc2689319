"""Global error handlers: consistent JSON error responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wellquest.errors import PersistenceFailure, UnknownUser

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_errors(exc)},
        )

    @app.exception_handler(PersistenceFailure)
    async def persistence_failure_handler(request: Request, exc: PersistenceFailure) -> JSONResponse:
        """The operation was rolled back. 503 when a retry can succeed, else 409."""
        logger.warning(
            "persistence_failure",
            path=request.url.path,
            operation=exc.operation,
            user_id=exc.user_id,
            retryable=exc.retryable,
        )
        return JSONResponse(
            status_code=503 if exc.retryable else 409,
            content={"detail": str(exc), "retryable": exc.retryable},
        )

    @app.exception_handler(UnknownUser)
    async def unknown_user_handler(request: Request, exc: UnknownUser) -> JSONResponse:
        logger.warning("unknown_user", path=request.url.path, user_id=exc.user_id)
        return JSONResponse(
            status_code=404,
            content={"detail": str(exc), "retryable": False},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the non-serializable ``ctx`` exception objects."""
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
