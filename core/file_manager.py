from __future__ import annotations

import uuid
from typing import BinaryIO

from loguru import logger

from core.archive import archive_members, open_archive, read_member
from core.exceptions import ArgosError, ObjectNotFoundError
from core.storage import Content, ObjectStorage
from core.storage.keys import normalize_key, normalize_prefix, project_key, project_prefix
from core.storage.models import ObjectListing, ObjectStream, ProjectUpload, StoredObject


class FileManager:
    """File operations over one configured bucket.

    Single-object calls go straight to the storage gateway; project calls
    group the files of an uploaded archive under ``projects/<id>/``.
    """

    def __init__(self, storage: ObjectStorage, *, max_upload_bytes: int = 100 * 1024 * 1024) -> None:
        self.storage = storage
        self.max_upload_bytes = max_upload_bytes

    @property
    def bucket(self) -> str:
        return self.storage.bucket

    def upload(self, key: str, content: Content, content_type: str | None = None) -> StoredObject:
        return self.storage.put(normalize_key(key), content, content_type)

    def download(self, key: str) -> ObjectStream:
        return self.storage.get(normalize_key(key))

    def stat(self, key: str) -> StoredObject:
        return self.storage.head(normalize_key(key))

    def list(self, prefix: str = "") -> ObjectListing:
        return self.storage.list(normalize_prefix(prefix))

    def delete(self, key: str) -> None:
        self.storage.delete(normalize_key(key))

    def upload_archive(self, archive: BinaryIO, project_id: str | None = None) -> ProjectUpload:
        """Unpack a ZIP archive into a new project.

        Entries are validated before anything is written. If a write fails
        midway, the keys already written are removed again before the error
        propagates.
        """
        project_id = project_id or str(uuid.uuid4())
        project_prefix(project_id)
        with open_archive(archive) as zf:
            members = archive_members(zf, max_total_bytes=self.max_upload_bytes)
            result = ProjectUpload(project_id=project_id)
            try:
                for member in members:
                    key = project_key(project_id, member.path)
                    self.storage.put(key, read_member(zf, member))
                    result.files[key] = "Uploaded"
            except ArgosError:
                self._rollback(list(result.files))
                raise
        logger.info(
            "Uploaded project {project_id} ({count} files)",
            project_id=project_id,
            count=len(result.files),
        )
        return result

    def _rollback(self, keys: list[str]) -> None:
        for key in keys:
            try:
                self.storage.delete(key)
            except ArgosError as exc:
                logger.warning("Could not roll back {key}: {error}", key=key, error=exc.message)

    def list_project(self, project_id: str) -> list[str]:
        keys = self.storage.list(project_prefix(project_id)).keys()
        if not keys:
            raise ObjectNotFoundError(
                f"No files found for project ID: {project_id}", {"project_id": project_id}
            )
        return keys

    def read_project_file(self, project_id: str, path: str) -> str:
        with self.storage.get(project_key(project_id, path)) as stream:
            return stream.read().decode("utf-8", errors="replace")


__all__ = ["FileManager"]
