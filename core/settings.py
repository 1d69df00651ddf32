from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)

from core.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
DEFAULT_ENV_FILE = Path(".env")

# Environment variable -> StorageSettings field
_STORAGE_ENV = {
    "AWS_BUCKET_NAME": "bucket",
    "AWS_REGION": "region",
    "AWS_ENDPOINT_URL": "endpoint_url",
    "AWS_ACCESS_KEY_ID": "access_key_id",
    "AWS_SECRET_ACCESS_KEY": "secret_access_key",
    "ARGOS_STORAGE_BACKEND": "backend",
    "ARGOS_LOCAL_ROOT": "local_root",
}
_CORS_ENV = ("ArgosAPI_address", "ArgosUI_address")


class StorageSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    backend: Literal["s3", "local"] = "s3"
    bucket: str
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: SecretStr | None = None
    secret_access_key: SecretStr | None = None
    local_root: Path = Path("data/objects")
    connect_timeout_s: float = Field(5.0, gt=0.0)
    read_timeout_s: float = Field(30.0, gt=0.0)
    list_page_size: int = Field(1000, ge=1, le=1000)

    @field_validator("bucket", "region")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("endpoint_url", "access_key_id", "secret_access_key", mode="before")
    @classmethod
    def _empty_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _credentials_pair(self) -> "StorageSettings":
        if (self.access_key_id is None) != (self.secret_access_key is None):
            raise ValueError(
                "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set together"
            )
        return self


class RetrySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(3, ge=1, le=10)
    base_delay_s: float = Field(0.2, ge=0.0)
    max_delay_s: float = Field(2.0, ge=0.0)


class ApiSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    cors_origins: tuple[str, ...] = ("http://localhost:5173", "http://localhost:8081")
    request_timeout_s: float = Field(30.0, gt=0.0)
    max_upload_bytes: int = Field(100 * 1024 * 1024, ge=1)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        return _split_origins(value)


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    storage: StorageSettings
    retry: RetrySettings = Field(default_factory=RetrySettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    def secret_values(self) -> list[str]:
        """Plain-text secrets that must never reach a log sink."""
        secrets = [self.storage.access_key_id, self.storage.secret_access_key]
        return [s.get_secret_value() for s in secrets if s is not None]

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        env_file: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "Settings":
        """Build settings from YAML tuning values, a dotenv file and the environment.

        Args:
            path: Optional YAML file. Falls back to ARGOS_CONFIG, then to
                config/default.yaml (which may be absent).
            env_file: Optional dotenv file. Falls back to ARGOS_ENV_FILE, then
                to ``.env`` in the working directory.
            environ: Environment mapping, ``os.environ`` by default.

        Returns:
            Frozen Settings instance.

        Raises:
            ConfigurationError: If a required value is missing or malformed.
        """
        env = dict(os.environ if environ is None else environ)
        payload = _read_yaml(path, env)

        dotenv_path = env_file or Path(env.get("ARGOS_ENV_FILE", DEFAULT_ENV_FILE))
        with _dotenv_scope(dotenv_path) as dotenv:
            source = {**dotenv, **env}
            storage = dict(payload.get("storage") or {})
            for var, field in _STORAGE_ENV.items():
                if source.get(var):
                    storage[field] = source[var]
            storage.setdefault("region", "us-east-1")

            api = dict(payload.get("api") or {})
            extra_origins = [source[var] for var in _CORS_ENV if source.get(var)]
            if extra_origins:
                api["cors_origins"] = [
                    *_split_origins(api.get("cors_origins", ApiSettings().cors_origins)),
                    *extra_origins,
                ]

            try:
                return cls(storage=storage, retry=payload.get("retry") or {}, api=api)
            except ValidationError as exc:
                # Only locations and messages: inputs may carry secrets.
                details = {
                    ".".join(str(part) for part in err["loc"]): err["msg"]
                    for err in exc.errors()
                }
                raise ConfigurationError("Invalid configuration", details) from None
            finally:
                storage.clear()
                source.clear()


def _split_origins(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(origin.strip() for origin in value if origin and origin.strip())


def _read_yaml(path: Path | None, env: Mapping[str, str]) -> dict[str, Any]:
    explicit = path is not None or "ARGOS_CONFIG" in env
    config_path = path or Path(env.get("ARGOS_CONFIG", DEFAULT_CONFIG_PATH))
    if not config_path.exists():
        if explicit:
            raise ConfigurationError(
                f"Configuration file not found: {config_path}", {"path": str(config_path)}
            )
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as fp:
            payload = yaml.safe_load(fp) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Malformed configuration file: {config_path}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")
    return payload


@contextmanager
def _dotenv_scope(env_file: Path) -> Iterator[dict[str, str]]:
    """Expose dotenv values for the duration of the block, then drop them.

    Values are never copied into ``os.environ``.
    """
    values: dict[str, str] = {}
    if env_file.is_file():
        values = {k: v for k, v in dotenv_values(env_file).items() if v is not None}
    try:
        yield values
    finally:
        values.clear()


@lru_cache(maxsize=1)
def get_settings(path: str | None = None) -> Settings:
    return Settings.load(Path(path) if path else None)


__all__ = [
    "Settings",
    "StorageSettings",
    "RetrySettings",
    "ApiSettings",
    "get_settings",
]
