"""Structured logging configuration for the Argos file manager."""

from __future__ import annotations

import json
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from loguru import logger

REDACTED = "***"

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[request_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


class JSONFormatter:
    """JSON formatter for structured logging.

    loguru treats the return value of a format callable as a template, so the
    serialized record is stashed in ``extra`` and referenced from there.
    """

    def __call__(self, record: dict[str, Any]) -> str:
        log_data = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name,
            "message": record["message"],
            "module": record["module"],
            "function": record["function"],
            "line": record["line"],
        }
        if record["exception"] is not None:
            exc_type, exc_value, _ = record["exception"]
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "value": str(exc_value) if exc_value else None,
            }
        log_data.update({k: v for k, v in record["extra"].items() if k != "serialized"})
        record["extra"]["serialized"] = json.dumps(log_data, ensure_ascii=False, default=str)
        return "{extra[serialized]}\n"


class SecretMasker:
    """Patcher replacing known secret values in messages and extras."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        self.secrets = [s for s in secrets if s]

    def __call__(self, record: dict[str, Any]) -> None:
        if not self.secrets:
            return
        record["message"] = self.mask(record["message"])
        for key, value in record["extra"].items():
            if isinstance(value, str):
                record["extra"][key] = self.mask(value)

    def mask(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return text


def setup_logging(
    *,
    level: str = "INFO",
    json_format: bool = False,
    log_file: Path | None = None,
    secrets: Iterable[str] = (),
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Whether to use JSON formatting (useful for production).
        log_file: Optional path to log file. If None, logs only to stderr.
        secrets: Values masked out of every record, e.g. storage credentials.
    """
    logger.remove()
    logger.configure(extra={"request_id": "-"}, patcher=SecretMasker(secrets))

    formatter: Any = JSONFormatter() if json_format else TEXT_FORMAT
    logger.add(
        sys.stderr,
        format=formatter,
        level=level,
        colorize=not json_format,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=formatter,
            level=level,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
        )


__all__ = ["JSONFormatter", "SecretMasker", "setup_logging"]
