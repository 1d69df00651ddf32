from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    content_type: str
    last_modified: datetime
    bucket: str
    etag: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "size": self.size,
            "content_type": self.content_type,
            "last_modified": self.last_modified.isoformat(),
            "bucket": self.bucket,
            "etag": self.etag,
        }


@dataclass
class ProjectUpload:
    project_id: str
    files: dict[str, str] = field(default_factory=dict)


class ObjectStream:
    """Body of a downloaded object plus its metadata.

    Iterating yields byte chunks; the underlying handle is released when the
    iteration finishes or ``close()`` is called, whichever comes first.
    """

    def __init__(
        self,
        info: StoredObject,
        chunks: Iterator[bytes],
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self.info = info
        self._chunks = chunks
        self._on_close = on_close
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        try:
            yield from self._chunks
        finally:
            self.close()

    def read(self) -> bytes:
        return b"".join(self)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> "ObjectStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ObjectListing:
    """Lazy, restartable listing: every iteration starts a fresh backend listing."""

    def __init__(self, prefix: str, factory: Callable[[str], Iterator[StoredObject]]) -> None:
        self.prefix = prefix
        self._factory = factory

    def __iter__(self) -> Iterator[StoredObject]:
        return self._factory(self.prefix)

    def keys(self) -> list[str]:
        return [obj.key for obj in self]


__all__ = ["StoredObject", "ProjectUpload", "ObjectStream", "ObjectListing"]
