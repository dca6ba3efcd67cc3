"""Standard error handler — consistent error responses across all routes."""

from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..monitoring.errors import (
    EventAlreadyResolved,
    EventStoreError,
    SecurityEventNotFound,
    UnknownAddress,
)
from ..utils.logging import get_logger

logger = get_logger("middleware.error_handler")


def _error_response(status_code: int, detail, headers: dict | None = None, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "status_code": status_code,
            "detail": detail,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **extra,
        },
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register standard error handlers on the app."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, exc.detail, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(422, "Validation error", errors=jsonable_encoder(exc.errors()))

    @app.exception_handler(SecurityEventNotFound)
    async def event_not_found_handler(request: Request, exc: SecurityEventNotFound):
        return _error_response(404, str(exc))

    @app.exception_handler(UnknownAddress)
    async def unknown_address_handler(request: Request, exc: UnknownAddress):
        return _error_response(404, str(exc))

    @app.exception_handler(EventAlreadyResolved)
    async def already_resolved_handler(request: Request, exc: EventAlreadyResolved):
        return _error_response(409, str(exc))

    @app.exception_handler(EventStoreError)
    async def store_error_handler(request: Request, exc: EventStoreError):
        logger.error("event_store_error", action=exc.action, error=str(exc.cause), path=str(request.url.path))
        return _error_response(503, "Security data store unavailable")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            path=str(request.url.path),
            exc_info=True,
        )
        return _error_response(500, "Internal server error")
