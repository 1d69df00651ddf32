from __future__ import annotations

import io
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from typing import Any, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)
from loguru import logger

from core.exceptions import (
    AccessDeniedError,
    ArgosError,
    BackendUnavailableError,
    ObjectNotFoundError,
    StorageError,
)
from core.settings import RetrySettings, Settings
from core.storage import Content
from core.storage.keys import normalize_key, normalize_prefix, resolve_content_type
from core.storage.models import ObjectListing, ObjectStream, StoredObject
from core.storage.retry import call_with_retry

T = TypeVar("T")

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
_ACCESS_DENIED_CODES = {
    "AccessDenied",
    "AllAccessDisabled",
    "ExpiredToken",
    "Forbidden",
    "InvalidAccessKeyId",
    "InvalidToken",
    "SignatureDoesNotMatch",
    "403",
}
_TRANSIENT_CODES = {
    "InternalError",
    "RequestLimitExceeded",
    "RequestTimeout",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "TooManyRequests",
    "500",
    "503",
}
_TRANSIENT_BOTO_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


def translate_error(exc: Exception, *, key: str, operation: str) -> ArgosError:
    """Map a botocore failure onto the service error taxonomy."""
    details = {"key": key, "operation": operation}
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = error.get("Message") or str(exc)
        details["code"] = code
        if code in _NOT_FOUND_CODES:
            return ObjectNotFoundError(f"File not found: {key}", details)
        if code in _ACCESS_DENIED_CODES or status == 403:
            return AccessDeniedError(f"Access denied during {operation}: {message}", details)
        if code in _TRANSIENT_CODES or (isinstance(status, int) and status >= 500):
            return BackendUnavailableError(f"S3 unavailable during {operation}: {message}", details)
        return StorageError(f"Failed to {operation} object: {message}", details)
    if isinstance(exc, _TRANSIENT_BOTO_ERRORS):
        return BackendUnavailableError(f"S3 unreachable during {operation}: {exc}", details)
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return AccessDeniedError(f"S3 credentials unavailable: {exc}", details)
    return StorageError(f"Failed to {operation} object: {exc}", details)


def _body_size(body: io.IOBase) -> int:
    start = body.tell()
    end = body.seek(0, io.SEEK_END)
    body.seek(start)
    return end - start


class S3Storage:
    """Object storage backed by an S3-compatible bucket.

    A single boto3 client is shared by all callers; botocore clients are
    thread-safe and pool their own connections. SDK-level retries are turned
    off so that the retry policy lives in one place.
    """

    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        bucket: str,
        *,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        retry: RetrySettings | None = None,
        connect_timeout_s: float = 5.0,
        read_timeout_s: float = 30.0,
        page_size: int = 1000,
    ) -> None:
        self.bucket = bucket
        self.retry = retry or RetrySettings()
        self.page_size = page_size
        if client is None:
            session = boto3.session.Session(
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                region_name=region,
            )
            client = session.client(
                "s3",
                endpoint_url=endpoint_url,
                config=Config(
                    connect_timeout=connect_timeout_s,
                    read_timeout=read_timeout_s,
                    retries={"total_max_attempts": 1, "mode": "standard"},
                ),
            )
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3Storage":
        storage = settings.storage
        return cls(
            storage.bucket,
            region=storage.region,
            endpoint_url=storage.endpoint_url,
            access_key_id=storage.access_key_id.get_secret_value() if storage.access_key_id else None,
            secret_access_key=(
                storage.secret_access_key.get_secret_value() if storage.secret_access_key else None
            ),
            retry=settings.retry,
            connect_timeout_s=storage.connect_timeout_s,
            read_timeout_s=storage.read_timeout_s,
            page_size=storage.list_page_size,
        )

    def _call(self, operation: str, key: str, fn: Callable[[], T]) -> T:
        def attempt() -> T:
            try:
                return fn()
            except (ClientError, BotoCoreError) as exc:
                raise translate_error(exc, key=key, operation=operation) from exc

        return call_with_retry(attempt, self.retry, description=f"s3 {operation} {key!r}")

    def put(self, key: str, content: Content, content_type: str | None = None) -> StoredObject:
        s3_key = normalize_key(key)
        ctype = resolve_content_type(s3_key, content_type)
        body = io.BytesIO(content) if isinstance(content, (bytes, bytearray)) else content
        if not body.seekable():
            body = io.BytesIO(body.read())
        start = body.tell()
        size = _body_size(body)

        def _put() -> dict[str, Any]:
            body.seek(start)
            return self.client.put_object(
                Bucket=self.bucket,
                Key=s3_key,
                Body=body,
                ContentLength=size,
                ContentType=ctype,
            )

        response = self._call("upload", s3_key, _put)
        etag = (response.get("ETag") or "").strip('"') or None
        try:
            last_modified = self.head(s3_key).last_modified
        except ObjectNotFoundError:
            # Deleted by a concurrent request between the put and the head.
            last_modified = datetime.now(timezone.utc)
        logger.info(
            "Uploaded s3://{bucket}/{key} ({size} bytes, {content_type})",
            bucket=self.bucket,
            key=s3_key,
            size=size,
            content_type=ctype,
        )
        return StoredObject(
            key=s3_key,
            size=size,
            content_type=ctype,
            last_modified=last_modified,
            bucket=self.bucket,
            etag=etag,
        )

    def head(self, key: str) -> StoredObject:
        s3_key = normalize_key(key)
        response = self._call(
            "head", s3_key, lambda: self.client.head_object(Bucket=self.bucket, Key=s3_key)
        )
        return self._to_object(s3_key, response)

    def get(self, key: str) -> ObjectStream:
        s3_key = normalize_key(key)
        response = self._call(
            "download", s3_key, lambda: self.client.get_object(Bucket=self.bucket, Key=s3_key)
        )
        body = response["Body"]
        return ObjectStream(
            self._to_object(s3_key, response),
            self._iter_body(s3_key, body),
            on_close=body.close,
        )

    def _iter_body(self, key: str, body: Any) -> Iterator[bytes]:
        try:
            yield from body.iter_chunks(self.CHUNK_SIZE)
        except BotoCoreError as exc:
            # Bytes already went out; the read cannot be retried transparently.
            raise translate_error(exc, key=key, operation="download") from exc

    def list(self, prefix: str = "") -> ObjectListing:
        return ObjectListing(normalize_prefix(prefix), self._iter_objects)

    def _iter_objects(self, prefix: str) -> Iterator[StoredObject]:
        token: str | None = None
        while True:
            params: dict[str, Any] = {
                "Bucket": self.bucket,
                "Prefix": prefix,
                "MaxKeys": self.page_size,
            }
            if token:
                params["ContinuationToken"] = token
            page = self._call("list", prefix, lambda: self.client.list_objects_v2(**params))
            for item in page.get("Contents", []):
                yield StoredObject(
                    key=item["Key"],
                    size=int(item.get("Size", 0)),
                    # ListObjectsV2 does not return content types.
                    content_type=resolve_content_type(item["Key"]),
                    last_modified=item["LastModified"],
                    bucket=self.bucket,
                    etag=(item.get("ETag") or "").strip('"') or None,
                )
            token = page.get("NextContinuationToken")
            if not page.get("IsTruncated") or not token:
                return

    def delete(self, key: str) -> None:
        s3_key = normalize_key(key)
        try:
            self._call(
                "delete", s3_key, lambda: self.client.delete_object(Bucket=self.bucket, Key=s3_key)
            )
        except ObjectNotFoundError:
            # S3 itself answers 204; some compatible stores answer 404.
            logger.debug("Delete of missing key {key} treated as success", key=s3_key)
            return
        logger.info("Deleted s3://{bucket}/{key}", bucket=self.bucket, key=s3_key)

    def _to_object(self, key: str, response: dict[str, Any]) -> StoredObject:
        return StoredObject(
            key=key,
            size=int(response.get("ContentLength", 0)),
            content_type=response.get("ContentType") or resolve_content_type(key),
            last_modified=response.get("LastModified") or datetime.now(timezone.utc),
            bucket=self.bucket,
            etag=(response.get("ETag") or "").strip('"') or None,
        )


__all__ = ["S3Storage", "translate_error"]
