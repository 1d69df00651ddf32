"""Fake boto3 S3 client used by the storage and API tests."""

from __future__ import annotations

import hashlib
import io
from collections import defaultdict
from datetime import datetime, timezone

from botocore.exceptions import ClientError


def client_error(code: str, status: int, operation: str = "Operation") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} from fake"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeBody:
    def __init__(self, data: bytes) -> None:
        self._buf = io.BytesIO(data)
        self.closed = False

    def iter_chunks(self, chunk_size: int):
        while True:
            chunk = self._buf.read(chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self.closed = True


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client methods S3Storage uses.

    ``failures[operation]`` is a queue of exceptions raised (one per call)
    before the operation takes effect.
    """

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str, datetime]] = {}
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.calls: dict[str, int] = defaultdict(int)
        self.bodies: list[FakeBody] = []

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.failures[operation]:
            raise self.failures[operation].pop(0)

    def put_object(self, *, Bucket, Key, Body, ContentLength, ContentType):
        data = Body.read()
        self._enter("put_object")
        assert len(data) == ContentLength
        self.objects[Key] = (data, ContentType, datetime.now(timezone.utc))
        return {"ETag": f'"{hashlib.md5(data).hexdigest()}"'}

    def head_object(self, *, Bucket, Key):
        self._enter("head_object")
        if Key not in self.objects:
            raise client_error("404", 404, "HeadObject")
        data, content_type, modified = self.objects[Key]
        return {
            "ContentLength": len(data),
            "ContentType": content_type,
            "LastModified": modified,
            "ETag": f'"{hashlib.md5(data).hexdigest()}"',
        }

    def get_object(self, *, Bucket, Key):
        self._enter("get_object")
        if Key not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        data, content_type, modified = self.objects[Key]
        body = FakeBody(data)
        self.bodies.append(body)
        return {
            "Body": body,
            "ContentLength": len(data),
            "ContentType": content_type,
            "LastModified": modified,
        }

    def list_objects_v2(self, *, Bucket, Prefix, MaxKeys, ContinuationToken=None):
        self._enter("list_objects_v2")
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start : start + MaxKeys]
        truncated = start + MaxKeys < len(keys)
        response = {
            "IsTruncated": truncated,
            "KeyCount": len(page),
            "Contents": [
                {
                    "Key": key,
                    "Size": len(self.objects[key][0]),
                    "LastModified": self.objects[key][2],
                    "ETag": '"etag"',
                }
                for key in page
            ],
        }
        if not page:
            del response["Contents"]
        if truncated:
            response["NextContinuationToken"] = str(start + MaxKeys)
        return response

    def delete_object(self, *, Bucket, Key):
        self._enter("delete_object")
        self.objects.pop(Key, None)
        return {}
