"""
Error types raised by the click pipeline and the FastAPI handlers that render them.

Every typed error carries an HTTP status and a stable machine-readable code.
The handlers turn them into ``{"error", "code", "field"?, "details"?}``:

- NotFoundError (404): unknown, inactive or expired short link; raised
  before anything is written.
- ValidationError (400): rejected input at the service boundary.
- StorageError (503): the event store or the URL counters failed. The
  repositories raise it from the underlying PyMongoError.
- BroadcastError: delivery to one realtime subscriber failed. The
  broadcaster raises and logs it per subscriber; it never reaches a client.

Server-side failures (5xx) are logged with the request path. Anything that is
not an AppError becomes a generic 500; Sentry captures it when configured.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)

INTERNAL_ERROR_BODY = {"error": "An internal server error occurred.", "code": "internal_error"}


class AppError(Exception):
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    def to_dict(self) -> dict:
        payload: dict = {"error": self.message, "code": self.error_code}
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    status_code = 400
    error_code = "validation_error"


class NotFoundError(AppError):
    status_code = 404
    error_code = "not_found"


class StorageError(AppError):
    """The event store or the URL counters could not be written or read."""

    status_code = 503
    error_code = "storage_failure"


class BroadcastError(AppError):
    """Delivery to a single realtime subscriber failed."""

    error_code = "broadcast_failure"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        if exc.is_server_error:
            cause = exc.__cause__
            log.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                code=exc.error_code,
                error=exc.message,
                cause_type=type(cause).__name__ if cause is not None else None,
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        log.error(
            "unhandled_exception",
            method=request.method,
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)
