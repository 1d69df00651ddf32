"""FastAPI exception handlers for custom exceptions."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from core.exceptions import (
    AccessDeniedError,
    ArgosError,
    BackendUnavailableError,
    ConfigurationError,
    InvalidInputError,
    ObjectNotFoundError,
    PayloadTooLargeError,
    RequestTimeoutError,
    StorageError,
)

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"

# Most specific first: subclasses must precede their bases.
_STATUS_MAP: tuple[tuple[type[ArgosError], int, str], ...] = (
    (PayloadTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "WARNING"),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST, "WARNING"),
    (ObjectNotFoundError, status.HTTP_404_NOT_FOUND, "INFO"),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN, "ERROR"),
    (BackendUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "WARNING"),
    (RequestTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT, "WARNING"),
    (StorageError, status.HTTP_502_BAD_GATEWAY, "ERROR"),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "CRITICAL"),
)


def status_for(exc: ArgosError) -> tuple[int, str]:
    for exc_type, status_code, level in _STATUS_MAP:
        if isinstance(exc, exc_type):
            return status_code, level
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "ERROR"


def error_body(status_code: int, error: str, message: str, details: dict[str, str] | None = None) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status_code,
        "error": error,
        "message": message,
        "details": details or {},
    }


async def argos_exception_handler(request: Request, exc: ArgosError) -> JSONResponse:
    """Handle Argos-specific exceptions."""
    status_code, level = status_for(exc)
    logger.log(
        level,
        "{method} {path} -> {status}: {type} - {error_message}",
        method=request.method,
        path=request.url.path,
        status=status_code,
        type=type(exc).__name__,
        error_message=exc.message,
        details=exc.details,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_body(status_code, type(exc).__name__, exc.message, exc.details),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with the same body shape.

    The exception text goes to the log only; clients get a fixed message.
    """
    logger.opt(exception=exc).error(
        "Unhandled exception on {method} {path}", method=request.method, path=request.url.path
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(500, "Internal Server Error", INTERNAL_ERROR_MESSAGE),
    )


__all__ = [
    "INTERNAL_ERROR_MESSAGE",
    "argos_exception_handler",
    "unhandled_exception_handler",
    "status_for",
    "error_body",
]
