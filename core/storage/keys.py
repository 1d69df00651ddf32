"""Storage key normalization and content-type resolution."""

from __future__ import annotations

import mimetypes
import re

from core.exceptions import InvalidInputError

DEFAULT_CONTENT_TYPE = "application/octet-stream"
MAX_KEY_BYTES = 1024
PROJECTS_ROOT = "projects"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def _segments(raw: str, *, what: str) -> list[str]:
    if _CONTROL_CHARS.search(raw):
        raise InvalidInputError(f"{what} contains control characters", {what: repr(raw)})
    segments: list[str] = []
    for segment in raw.replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise InvalidInputError(f"{what} must not contain '..' segments", {what: raw})
        segments.append(segment)
    return segments


def _check_length(key: str, *, what: str) -> str:
    if len(key.encode("utf-8")) > MAX_KEY_BYTES:
        raise InvalidInputError(
            f"{what} exceeds {MAX_KEY_BYTES} bytes", {what: key[:64] + "..."}
        )
    return key


def normalize_key(raw: str | None) -> str:
    """Turn a caller-supplied path into a storage key.

    Backslashes become slashes, leading/duplicate/trailing slashes and ``.``
    segments are dropped. ``..`` segments, control characters, empty results
    and over-long keys raise InvalidInputError.
    """
    if raw is None or not raw.strip():
        raise InvalidInputError("Key cannot be null or empty.")
    segments = _segments(raw, what="key")
    if not segments:
        raise InvalidInputError("Key cannot be null or empty.", {"key": raw})
    return _check_length("/".join(segments), what="key")


def normalize_prefix(raw: str | None) -> str:
    """Like normalize_key, but empty is allowed and a trailing slash is kept."""
    if raw is None or not raw.strip():
        return ""
    segments = _segments(raw, what="prefix")
    if not segments:
        return ""
    prefix = "/".join(segments)
    if raw.replace("\\", "/").endswith("/"):
        prefix += "/"
    return _check_length(prefix, what="prefix")


def resolve_content_type(key: str, content_type: str | None = None) -> str:
    if content_type and content_type.strip():
        return content_type.strip()
    guessed, _ = mimetypes.guess_type(key, strict=False)
    return guessed or DEFAULT_CONTENT_TYPE


def project_prefix(project_id: str | None) -> str:
    if project_id is None or not project_id.strip():
        raise InvalidInputError("Project ID cannot be null or empty.")
    segments = _segments(project_id, what="project_id")
    if len(segments) != 1:
        raise InvalidInputError("Project ID must be a single path segment.", {"project_id": project_id})
    return f"{PROJECTS_ROOT}/{segments[0]}/"


def project_key(project_id: str, relative_path: str) -> str:
    return _check_length(project_prefix(project_id) + normalize_key(relative_path), what="key")


__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "MAX_KEY_BYTES",
    "normalize_key",
    "normalize_prefix",
    "resolve_content_type",
    "project_prefix",
    "project_key",
]
