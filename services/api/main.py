import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from core.exceptions import ArgosError
from core.file_manager import FileManager
from core.logging_config import setup_logging
from core.settings import Settings, get_settings
from core.storage import ObjectStorage
from core.storage.factory import create_storage
from services.api.exception_handlers import argos_exception_handler, unhandled_exception_handler
from services.api.middleware import REQUEST_ID_HEADER, RequestIdMiddleware, SecurityHeadersMiddleware
from services.api.routes import router as files_router
from services.api.schemas import HealthResponse


def create_app(settings: Settings | None = None, storage: ObjectStorage | None = None) -> FastAPI:
    """Build the API.

    Settings are loaded (and validated) before anything else, so a missing
    bucket or malformed credential stops the process at startup. Tests pass
    their own ``settings`` and ``storage``.
    """
    settings = settings or get_settings()

    json_logging = os.getenv("JSON_LOGGING", "false").lower() in {"true", "1", "yes"}
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_file = os.getenv("LOG_FILE")
    setup_logging(
        level=log_level,
        json_format=json_logging,
        log_file=Path(log_file) if log_file else None,
        secrets=settings.secret_values(),
    )

    storage = storage or create_storage(settings)

    app = FastAPI(
        title="Argos File Manager",
        version="0.1.0",
        description="File upload, download, listing and deletion over S3-compatible object storage",
    )
    app.state.settings = settings
    app.state.file_manager = FileManager(storage, max_upload_bytes=settings.api.max_upload_bytes)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # CORS middleware - add LAST so it executes FIRST (FastAPI executes middleware in reverse order)
    cors_origins = list(dict.fromkeys(settings.api.cors_origins))
    logger.info(f"CORS allowed origins: {cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Type", "Content-Length", "ETag", "Last-Modified", "Location", REQUEST_ID_HEADER],
    )

    @app.get("/healthz", response_model=HealthResponse, tags=["meta"])
    async def healthcheck() -> HealthResponse:
        return HealthResponse()

    app.add_exception_handler(ArgosError, argos_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(files_router)

    logger.info(
        "API initialised with bucket={bucket} backend={backend}",
        bucket=settings.storage.bucket,
        backend=settings.storage.backend,
    )
    return app


__all__ = ["create_app"]
