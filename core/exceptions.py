"""Custom exception hierarchy for the Argos file manager."""

from __future__ import annotations


class ArgosError(Exception):
    """Base exception for all Argos-specific errors."""

    def __init__(self, message: str, details: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ArgosError):
    """Raised when configuration is invalid or missing."""
    pass


class InvalidInputError(ArgosError):
    """Raised when a key, prefix or request field is malformed."""
    pass


class PayloadTooLargeError(InvalidInputError):
    """Raised when an upload exceeds the configured size limit."""
    pass


class ArchiveError(InvalidInputError):
    """Raised when an uploaded archive cannot be unpacked safely."""
    pass


class ObjectNotFoundError(ArgosError):
    """Raised when the requested key does not exist."""
    pass


class RequestTimeoutError(ArgosError):
    """Raised when a request exceeds its time budget."""
    pass


class StorageError(ArgosError):
    """Raised when the storage backend fails permanently."""
    pass


class AccessDeniedError(StorageError):
    """Raised when the backend rejects the configured credentials."""
    pass


class BackendUnavailableError(StorageError):
    """Raised on transient backend failures (network, throttling, 5xx)."""
    pass


__all__ = [
    "ArgosError",
    "ConfigurationError",
    "InvalidInputError",
    "PayloadTooLargeError",
    "ArchiveError",
    "ObjectNotFoundError",
    "RequestTimeoutError",
    "StorageError",
    "AccessDeniedError",
    "BackendUnavailableError",
]
