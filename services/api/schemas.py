from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from core.storage.models import StoredObject


class StoredObjectOut(BaseModel):
    key: str
    size: int = Field(ge=0)
    content_type: str
    last_modified: datetime
    bucket: str
    etag: str | None = None

    @classmethod
    def from_object(cls, obj: StoredObject) -> "StoredObjectOut":
        return cls(
            key=obj.key,
            size=obj.size,
            content_type=obj.content_type,
            last_modified=obj.last_modified,
            bucket=obj.bucket,
            etag=obj.etag,
        )


class ProjectUploadResponse(BaseModel):
    project_id: str
    upload_results: dict[str, str]


class ErrorResponse(BaseModel):
    timestamp: datetime
    status: int
    error: str
    message: str
    details: dict[str, str] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = "ok"


__all__ = [
    "StoredObjectOut",
    "ProjectUploadResponse",
    "ErrorResponse",
    "HealthResponse",
]
