from __future__ import annotations

import pytest

from core.exceptions import AccessDeniedError, BackendUnavailableError, ObjectNotFoundError
from core.settings import RetrySettings
from core.storage.retry import backoff_delay, call_with_retry


class Flaky:
    def __init__(self, errors: list[Exception], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_backoff_is_exponential_and_bounded():
    policy = RetrySettings(max_attempts=6, base_delay_s=0.5, max_delay_s=3.0)
    assert [backoff_delay(n, policy) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_transient_failure_is_retried():
    sleeps: list[float] = []
    op = Flaky([BackendUnavailableError("slow down"), BackendUnavailableError("slow down")])
    policy = RetrySettings(max_attempts=3, base_delay_s=0.1, max_delay_s=1.0)

    assert call_with_retry(op, policy, description="test", sleep=sleeps.append) == "ok"
    assert op.calls == 3
    assert sleeps == [0.1, 0.2]


def test_retries_are_exhausted():
    op = Flaky([BackendUnavailableError("down")] * 5)
    policy = RetrySettings(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0)

    with pytest.raises(BackendUnavailableError):
        call_with_retry(op, policy, description="test", sleep=lambda _: None)
    assert op.calls == 3


@pytest.mark.parametrize("error", [AccessDeniedError("denied"), ObjectNotFoundError("missing"), ValueError("bug")])
def test_permanent_failures_are_not_retried(error):
    op = Flaky([error])
    policy = RetrySettings(max_attempts=5, base_delay_s=0.0, max_delay_s=0.0)

    with pytest.raises(type(error)):
        call_with_retry(op, policy, description="test", sleep=lambda _: None)
    assert op.calls == 1
