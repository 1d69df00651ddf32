"""Storage abstraction (S3-compatible object store or local filesystem fallback)."""

from __future__ import annotations

from typing import BinaryIO, Protocol, Union

from core.storage.models import ObjectListing, ObjectStream, ProjectUpload, StoredObject

Content = Union[bytes, BinaryIO]


class ObjectStorage(Protocol):
    bucket: str

    def put(self, key: str, content: Content, content_type: str | None = None) -> StoredObject:
        ...

    def get(self, key: str) -> ObjectStream:
        ...

    def head(self, key: str) -> StoredObject:
        ...

    def list(self, prefix: str = "") -> ObjectListing:
        ...

    def delete(self, key: str) -> None:  # missing keys are not an error
        ...


__all__ = [
    "Content",
    "ObjectStorage",
    "ObjectListing",
    "ObjectStream",
    "ProjectUpload",
    "StoredObject",
]
