from __future__ import annotations

from loguru import logger

from core.settings import Settings
from core.storage import ObjectStorage


def create_storage(settings: Settings) -> ObjectStorage:
    """Build the backend named by ``settings.storage.backend``."""
    if settings.storage.backend == "local":
        from core.storage.local import LocalStorage

        logger.info("Using local storage at {root}", root=str(settings.storage.local_root))
        return LocalStorage.from_settings(settings)

    from core.storage.s3 import S3Storage

    logger.info(
        "Using S3 bucket={bucket} region={region} endpoint={endpoint}",
        bucket=settings.storage.bucket,
        region=settings.storage.region,
        endpoint=settings.storage.endpoint_url or "aws",
    )
    return S3Storage.from_settings(settings)


__all__ = ["create_storage"]
