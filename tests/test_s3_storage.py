from __future__ import annotations

import io

import pytest
from botocore.exceptions import EndpointConnectionError, NoCredentialsError, ReadTimeoutError

from core.exceptions import (
    AccessDeniedError,
    BackendUnavailableError,
    InvalidInputError,
    ObjectNotFoundError,
    StorageError,
)
from core.settings import RetrySettings, Settings, StorageSettings
from core.storage.s3 import S3Storage, translate_error
from tests.utils_s3 import client_error


@pytest.fixture()
def storage(fake_s3, no_wait_retry) -> S3Storage:
    return S3Storage("argos-files", client=fake_s3, retry=no_wait_retry, page_size=2)


def test_upload_then_download_round_trip(storage, fake_s3):
    stored = storage.put("/reports//2024/q1.csv", b"a,b,c\n1,2,3", "text/csv")

    assert stored.key == "reports/2024/q1.csv"
    assert stored.size == 11
    assert stored.content_type == "text/csv"
    assert stored.bucket == "argos-files"
    assert stored.etag
    assert fake_s3.objects["reports/2024/q1.csv"][0] == b"a,b,c\n1,2,3"

    with storage.get("reports/2024/q1.csv") as stream:
        assert stream.info.content_type == "text/csv"
        assert stream.read() == b"a,b,c\n1,2,3"
    assert fake_s3.bodies[-1].closed


def test_upload_infers_content_type(storage):
    assert storage.put("docs/readme.txt", b"hi").content_type == "text/plain"
    assert storage.put("blob", b"\x00\x01").content_type == "application/octet-stream"


def test_upload_rejects_invalid_key(storage, fake_s3):
    with pytest.raises(InvalidInputError):
        storage.put("../escape.txt", b"x")
    assert fake_s3.calls["put_object"] == 0


def test_upload_rewinds_file_body_between_attempts(storage, fake_s3):
    fake_s3.failures["put_object"] = [client_error("SlowDown", 503)]
    body = io.BytesIO(b"payload-bytes")

    stored = storage.put("data.bin", body)

    assert fake_s3.calls["put_object"] == 2
    assert fake_s3.objects["data.bin"][0] == b"payload-bytes"
    assert stored.size == len(b"payload-bytes")


def test_upload_of_non_seekable_stream(storage, fake_s3):
    class OneShot(io.RawIOBase):
        def __init__(self, data: bytes) -> None:
            self._inner = io.BytesIO(data)

        def readable(self) -> bool:
            return True

        def readinto(self, buffer) -> int:
            return self._inner.readinto(buffer)

    stored = storage.put("stream.bin", io.BufferedReader(OneShot(b"streamed")))

    assert stored.size == 8
    assert fake_s3.objects["stream.bin"][0] == b"streamed"


def test_download_missing_key(storage):
    with pytest.raises(ObjectNotFoundError):
        storage.get("nope.txt")


def test_head(storage):
    storage.put("a.json", b"{}")
    info = storage.head("a.json")
    assert info.size == 2
    assert info.content_type == "application/json"

    with pytest.raises(ObjectNotFoundError):
        storage.head("b.json")


def test_list_paginates_and_is_restartable(storage, fake_s3):
    for name in ("e", "a", "c", "b", "d"):
        storage.put(f"reports/{name}.csv", b"x")
    storage.put("other/z.csv", b"x")
    fake_s3.calls.clear()

    listing = storage.list("reports/")

    assert fake_s3.calls["list_objects_v2"] == 0
    assert listing.keys() == [f"reports/{n}.csv" for n in "abcde"]
    assert fake_s3.calls["list_objects_v2"] == 3
    assert listing.keys() == [f"reports/{n}.csv" for n in "abcde"]
    first = next(iter(listing))
    assert first.content_type == "text/csv"
    assert first.bucket == "argos-files"


def test_list_without_matches_is_empty(storage):
    storage.put("reports/a.csv", b"x")
    assert list(storage.list("missing/")) == []


def test_list_rejects_invalid_prefix(storage):
    with pytest.raises(InvalidInputError):
        storage.list("../")


def test_delete_then_download_is_not_found(storage):
    storage.put("tmp/x.txt", b"x")
    storage.delete("tmp/x.txt")

    with pytest.raises(ObjectNotFoundError):
        storage.get("tmp/x.txt")


def test_delete_missing_key_is_idempotent(storage, fake_s3):
    storage.delete("never/existed.txt")
    fake_s3.failures["delete_object"] = [client_error("NoSuchKey", 404)]
    storage.delete("never/existed.txt")


def test_transient_errors_are_retried(storage, fake_s3):
    storage.put("k.txt", b"v")
    fake_s3.failures["get_object"] = [
        client_error("SlowDown", 503),
        EndpointConnectionError(endpoint_url="https://s3.example"),
    ]

    assert storage.get("k.txt").read() == b"v"
    assert fake_s3.calls["get_object"] == 3


def test_retries_exhaust_into_backend_unavailable(storage, fake_s3):
    fake_s3.failures["get_object"] = [client_error("ServiceUnavailable", 503)] * 3

    with pytest.raises(BackendUnavailableError):
        storage.get("k.txt")
    assert fake_s3.calls["get_object"] == 3


def test_access_denied_is_not_retried(storage, fake_s3):
    fake_s3.failures["put_object"] = [client_error("AccessDenied", 403)]

    with pytest.raises(AccessDeniedError):
        storage.put("k.txt", b"v")
    assert fake_s3.calls["put_object"] == 1


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (client_error("NoSuchKey", 404), ObjectNotFoundError),
        (client_error("404", 404), ObjectNotFoundError),
        (client_error("AccessDenied", 403), AccessDeniedError),
        (client_error("SomethingNew", 403), AccessDeniedError),
        (client_error("InvalidAccessKeyId", 403), AccessDeniedError),
        (client_error("SlowDown", 503), BackendUnavailableError),
        (client_error("Whatever", 500), BackendUnavailableError),
        (client_error("NoSuchBucket", 404), StorageError),
        (client_error("InvalidArgument", 400), StorageError),
        (ReadTimeoutError(endpoint_url="https://s3.example"), BackendUnavailableError),
        (NoCredentialsError(), AccessDeniedError),
    ],
)
def test_translate_error(exc, expected):
    translated = translate_error(exc, key="k", operation="download")
    assert type(translated) is expected
    assert translated.details["key"] == "k"


def test_from_settings_builds_client():
    settings = Settings(
        storage=StorageSettings(
            bucket="argos-files",
            region="eu-west-1",
            access_key_id="AKIAEXAMPLE",
            secret_access_key="secret",
            endpoint_url="http://localhost:9000",
        ),
        retry=RetrySettings(max_attempts=4),
    )

    storage = S3Storage.from_settings(settings)

    assert storage.bucket == "argos-files"
    assert storage.retry.max_attempts == 4
    assert storage.client.meta.region_name == "eu-west-1"
    assert storage.client.meta.endpoint_url == "http://localhost:9000"
