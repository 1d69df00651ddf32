"""Bounded exponential backoff for transient storage failures."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from loguru import logger

from core.exceptions import BackendUnavailableError
from core.settings import RetrySettings

T = TypeVar("T")


def backoff_delay(attempt: int, policy: RetrySettings) -> float:
    """Delay before retrying after the given (1-based) failed attempt."""
    return min(policy.max_delay_s, policy.base_delay_s * (2 ** (attempt - 1)))


def call_with_retry(
    operation: Callable[[], T],
    policy: RetrySettings,
    *,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying only BackendUnavailableError.

    Every other exception propagates on the first occurrence.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except BackendUnavailableError as exc:
            if attempt >= policy.max_attempts:
                logger.warning(
                    "Giving up on {description} after {attempts} attempts: {error}",
                    description=description,
                    attempts=attempt,
                    error=exc.message,
                )
                raise
            delay = backoff_delay(attempt, policy)
            logger.warning(
                "Transient failure during {description} (attempt {attempt}/{max_attempts}): "
                "{error}. Retrying in {delay:.2f}s...",
                description=description,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                error=exc.message,
                delay=delay,
            )
            sleep(delay)


__all__ = ["backoff_delay", "call_with_retry"]
