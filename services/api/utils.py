"""Shared utilities for API routes."""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Callable
from typing import Any, TypeVar

from fastapi import Request

from core.exceptions import InvalidInputError, PayloadTooLargeError, RequestTimeoutError
from core.file_manager import FileManager

T = TypeVar("T")

# Uploads above this size spill from memory to a temporary file.
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


def get_file_manager(request: Request) -> FileManager:
    return request.app.state.file_manager


async def run_blocking(request: Request, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking storage call in a worker thread under the request timeout.

    On timeout the request is aborted but the worker thread is not: a write
    already handed to the backend may still land, so the error reports the
    outcome as unknown. The thread itself is bounded by the storage client's
    own connect/read timeouts.
    """
    timeout = request.app.state.settings.api.request_timeout_s
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout)
    except asyncio.TimeoutError as exc:
        raise RequestTimeoutError(
            f"Request exceeded {timeout:g}s; the operation may still complete",
            {"path": request.url.path, "outcome": "unknown"},
        ) from exc


async def spool_request_body(request: Request, limit: int) -> tempfile.SpooledTemporaryFile:
    """Copy the raw request body into a seekable spool, enforcing ``limit``."""
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            declared_size = int(declared)
        except ValueError as exc:
            raise InvalidInputError("Malformed Content-Length header") from exc
        if declared_size > limit:
            raise PayloadTooLargeError(
                f"Upload exceeds {limit} bytes", {"limit_bytes": str(limit)}
            )

    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
    received = 0
    try:
        async for chunk in request.stream():
            received += len(chunk)
            if received > limit:
                raise PayloadTooLargeError(
                    f"Upload exceeds {limit} bytes", {"limit_bytes": str(limit)}
                )
            spool.write(chunk)
    except BaseException:
        spool.close()
        raise
    spool.seek(0)
    return spool


__all__ = [
    "SPOOL_MAX_MEMORY",
    "get_file_manager",
    "run_blocking",
    "spool_request_body",
]
