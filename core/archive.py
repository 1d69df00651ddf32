"""Safe reading of uploaded ZIP archives."""

from __future__ import annotations

import stat
import zipfile
from dataclasses import dataclass
from typing import BinaryIO

from core.exceptions import ArchiveError, InvalidInputError, PayloadTooLargeError
from core.storage.keys import normalize_key


@dataclass(frozen=True)
class ArchiveMember:
    path: str
    info: zipfile.ZipInfo


def open_archive(fileobj: BinaryIO) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(fileobj)
    except (zipfile.BadZipFile, OSError) as exc:
        raise ArchiveError(f"Error extracting ZIP file: {exc}") from exc


def archive_members(archive: zipfile.ZipFile, *, max_total_bytes: int) -> list[ArchiveMember]:
    """Validate every entry up front and return the regular files.

    Raises:
        ArchiveError: On traversal entries, symbolic links or an archive with
            no regular files.
        PayloadTooLargeError: If the uncompressed size exceeds the limit.
    """
    members: list[ArchiveMember] = []
    total = 0
    for info in archive.infolist():
        if info.is_dir():
            continue
        if stat.S_ISLNK(info.external_attr >> 16):
            raise ArchiveError(
                f"ZIP entry contains a symbolic link: {info.filename}", {"entry": info.filename}
            )
        try:
            path = normalize_key(info.filename)
        except InvalidInputError as exc:
            raise ArchiveError(f"Invalid ZIP entry: {info.filename}", {"entry": info.filename}) from exc
        total += info.file_size
        if total > max_total_bytes:
            raise PayloadTooLargeError(
                "Archive expands beyond the upload limit", {"limit_bytes": str(max_total_bytes)}
            )
        members.append(ArchiveMember(path=path, info=info))
    if not members:
        raise ArchiveError("No files found in the archive to upload.")
    return members


def read_member(archive: zipfile.ZipFile, member: ArchiveMember) -> bytes:
    try:
        return archive.read(member.info)
    except (zipfile.BadZipFile, RuntimeError, NotImplementedError, OSError) as exc:
        raise ArchiveError(
            f"Error extracting ZIP entry {member.info.filename}: {exc}", {"entry": member.info.filename}
        ) from exc


__all__ = ["ArchiveMember", "open_archive", "archive_members", "read_member"]
