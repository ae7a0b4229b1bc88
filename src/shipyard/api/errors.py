"""Error responses for the HTTP API.

Domain exceptions map to stable status codes and a machine-checkable body::

    {"error": {"code": "...", "message": "...", "details": {...}}}

Unexpected exceptions are logged in full with a short reference id and
returned as a generic 500. Never expose internal exceptions directly to API
clients.
"""

import uuid
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shipyard.errors import (
    ConflictError,
    NotFoundError,
    ShipyardError,
    UnauthorizedError,
    UpstreamError,
)

log = structlog.get_logger()

INTERNAL_ERROR = "An internal error occurred. Please try again later."

STATUS_BY_ERROR: tuple[tuple[type[ShipyardError], int], ...] = (
    (NotFoundError, 404),
    (UnauthorizedError, 401),
    (ConflictError, 409),
    (UpstreamError, 502),
)


def status_for(exc: ShipyardError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def error_body(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details or {}}}


async def handle_shipyard_error(request: Request, exc: ShipyardError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code == 500:
        return await handle_unexpected_error(request, exc)

    log_method = log.warning if status_code >= 500 else log.info
    log_method(
        "request_failed",
        method=request.method,
        path=request.url.path,
        status=status_code,
        code=exc.code,
        error_message=exc.message,
    )
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.code, exc.message, exc.details),
        headers=headers,
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Sanitised 500 with a reference id; full details go to the log only."""
    error_id = str(uuid.uuid4())[:8]
    log.error(
        "internal_error",
        error_id=error_id,
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
        error_message=str(exc),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content=error_body("internal_error", f"{INTERNAL_ERROR} (ref: {error_id})"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ShipyardError, handle_shipyard_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unexpected_error)
