from __future__ import annotations

import hashlib
import json
import os
import shutil
import tempfile
import time
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from core.exceptions import AccessDeniedError, InvalidInputError, ObjectNotFoundError, StorageError
from core.settings import Settings
from core.storage import Content
from core.storage.keys import normalize_key, normalize_prefix, resolve_content_type
from core.storage.models import ObjectListing, ObjectStream, StoredObject


class LocalStorage:
    """Filesystem stand-in for the object store, for development and tests.

    Object bytes live under ``<root>/objects`` in a tree mirroring the key.
    Content types live in a flat ``<root>/meta`` directory, one JSON sidecar
    per key named by the key's SHA-256, so no key can collide with a sidecar.
    A sidecar records the size and mtime of the bytes it was written with and
    is ignored when they no longer match. Writes land in ``<root>/tmp`` and are
    renamed into place, so a reader sees either the old or the new object,
    never a mix. Directories emptied by a delete are removed again.
    """

    CHUNK_SIZE = 64 * 1024
    PUBLISH_ATTEMPTS = 3

    def __init__(self, root: Path, bucket: str = "local") -> None:
        self.root = root
        self.bucket = bucket
        self._objects = root / "objects"
        self._meta = root / "meta"
        self._tmp = root / "tmp"
        for path in (self._objects, self._meta, self._tmp):
            path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalStorage":
        return cls(Path(settings.storage.local_root), bucket=settings.storage.bucket)

    def _object_path(self, key: str) -> Path:
        return self._objects.joinpath(*key.split("/"))

    def _meta_path(self, key: str) -> Path:
        return self._meta / (hashlib.sha256(key.encode("utf-8")).hexdigest() + ".json")

    def put(self, key: str, content: Content, content_type: str | None = None) -> StoredObject:
        storage_key = normalize_key(key)
        ctype = resolve_content_type(storage_key, content_type)
        target = self._object_path(storage_key)
        if target.is_dir():
            raise InvalidInputError("Key conflicts with an existing key prefix", {"key": storage_key})
        pending: list[str] = []
        try:
            with tempfile.NamedTemporaryFile(dir=self._tmp, delete=False) as tmp:
                pending.append(tmp.name)
                if isinstance(content, (bytes, bytearray)):
                    tmp.write(content)
                else:
                    shutil.copyfileobj(content, tmp, self.CHUNK_SIZE)
                size = tmp.tell()
            stamp = time.time_ns()
            os.utime(tmp.name, ns=(stamp, stamp))
            mtime_ns = os.stat(tmp.name).st_mtime_ns
            with tempfile.NamedTemporaryFile("w", dir=self._tmp, delete=False, encoding="utf-8") as meta_tmp:
                pending.append(meta_tmp.name)
                json.dump(
                    {"key": storage_key, "content_type": ctype, "size": size, "mtime_ns": mtime_ns},
                    meta_tmp,
                )
            self._publish(tmp.name, target)
            os.replace(meta_tmp.name, self._meta_path(storage_key))
        except (IsADirectoryError, NotADirectoryError, FileExistsError) as exc:
            self._prune(target.parent)
            raise InvalidInputError(
                "Key conflicts with an existing key prefix", {"key": storage_key}
            ) from exc
        except PermissionError as exc:
            raise AccessDeniedError(f"Permission denied writing {storage_key}", {"key": storage_key}) from exc
        except OSError as exc:
            self._prune(target.parent)
            raise StorageError(f"Failed to upload object: {exc}", {"key": storage_key}) from exc
        finally:
            for name in pending:
                if os.path.exists(name):
                    os.unlink(name)
        logger.info("Stored {key} at {path} ({size} bytes)", key=storage_key, path=str(target), size=size)
        return StoredObject(
            key=storage_key,
            size=size,
            content_type=ctype,
            last_modified=datetime.fromtimestamp(mtime_ns / 1e9, tz=timezone.utc),
            bucket=self.bucket,
        )

    def _publish(self, source: str, target: Path) -> None:
        for attempt in range(1, self.PUBLISH_ATTEMPTS + 1):
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.replace(source, target)
                return
            except FileNotFoundError:
                # A concurrent delete pruned the parent between mkdir and rename.
                if attempt == self.PUBLISH_ATTEMPTS or not os.path.exists(source):
                    raise

    def _prune(self, directory: Path) -> None:
        """Remove empty directories from ``directory`` up to the objects root."""
        while directory != self._objects and self._objects in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    def head(self, key: str) -> StoredObject:
        storage_key = normalize_key(key)
        path = self._object_path(storage_key)
        try:
            stat = path.stat()
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise ObjectNotFoundError(f"File not found: {storage_key}", {"key": storage_key}) from exc
        if not path.is_file():
            raise ObjectNotFoundError(f"File not found: {storage_key}", {"key": storage_key})
        return self._to_object(storage_key, stat)

    def get(self, key: str) -> ObjectStream:
        storage_key = normalize_key(key)
        path = self._object_path(storage_key)
        try:
            handle = path.open("rb")
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError) as exc:
            raise ObjectNotFoundError(f"File not found: {storage_key}", {"key": storage_key}) from exc
        except PermissionError as exc:
            raise AccessDeniedError(f"Permission denied reading {storage_key}", {"key": storage_key}) from exc
        info = self._to_object(storage_key, os.fstat(handle.fileno()))
        return ObjectStream(info, iter(lambda: handle.read(self.CHUNK_SIZE), b""), on_close=handle.close)

    def list(self, prefix: str = "") -> ObjectListing:
        return ObjectListing(normalize_prefix(prefix), self._iter_objects)

    def _iter_objects(self, prefix: str) -> Iterator[StoredObject]:
        keys: list[str] = []
        for dirpath, _dirnames, filenames in os.walk(self._objects):
            for name in filenames:
                key = Path(dirpath, name).relative_to(self._objects).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        for key in sorted(keys):
            try:
                yield self.head(key)
            except ObjectNotFoundError:
                # Deleted while the listing was in progress.
                continue

    def delete(self, key: str) -> None:
        storage_key = normalize_key(key)
        path = self._object_path(storage_key)
        try:
            path.unlink(missing_ok=True)
            self._meta_path(storage_key).unlink(missing_ok=True)
        except (IsADirectoryError, NotADirectoryError):
            logger.debug("Delete of missing key {key} treated as success", key=storage_key)
            return
        except PermissionError as exc:
            raise AccessDeniedError(f"Permission denied deleting {storage_key}", {"key": storage_key}) from exc
        except OSError as exc:
            raise StorageError(f"Failed to delete object: {exc}", {"key": storage_key}) from exc
        self._prune(path.parent)
        logger.info("Deleted {key}", key=storage_key)

    def _to_object(self, key: str, stat: os.stat_result) -> StoredObject:
        try:
            meta = json.loads(self._meta_path(key).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            meta = {}
        content_type = None
        if meta.get("size") == stat.st_size and meta.get("mtime_ns") == stat.st_mtime_ns:
            content_type = meta.get("content_type")
        return StoredObject(
            key=key,
            size=stat.st_size,
            content_type=resolve_content_type(key, content_type),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            bucket=self.bucket,
        )


__all__ = ["LocalStorage"]
