from __future__ import annotations

from pathlib import Path

import pytest

from core.settings import ApiSettings, RetrySettings, Settings, StorageSettings
from core.storage.local import LocalStorage
from tests.utils_s3 import FakeS3Client


@pytest.fixture()
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture()
def no_wait_retry() -> RetrySettings:
    return RetrySettings(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0)


@pytest.fixture()
def settings(tmp_path: Path, no_wait_retry: RetrySettings) -> Settings:
    return Settings(
        storage=StorageSettings(backend="local", bucket="test-bucket", local_root=tmp_path / "store"),
        retry=no_wait_retry,
        api=ApiSettings(request_timeout_s=5.0, max_upload_bytes=1024 * 1024),
    )


@pytest.fixture()
def local_storage(settings: Settings) -> LocalStorage:
    return LocalStorage.from_settings(settings)
