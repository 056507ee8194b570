from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError


DEFAULT_BASE_URL = "http://localhost:8083/api"
DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_MAX_ATTEMPTS = 3

# Environment variable names for the three tunables
ENV_BASE_URL = "TIMATIX_API_BASE_URL"
ENV_TIMEOUT_MS = "TIMATIX_API_TIMEOUT_MS"
ENV_MAX_ATTEMPTS = "TIMATIX_API_MAX_ATTEMPTS"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


class ClientConfig(BaseModel):
    """
    Process-wide HTTP client configuration.

    Built once at startup and handed to `ApiClient`. Instances are frozen;
    changing a setting means swapping in a validated copy (see `updated`).
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(default=DEFAULT_BASE_URL, min_length=1)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("base_url must not be empty")
        return v

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def updated(self, **changes: Any) -> "ClientConfig":
        """Return a re-validated copy with `changes` applied."""
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ConfigError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        try:
            return type(self).model_validate({**self.model_dump(), **changes})
        except ValidationError as ve:
            raise ConfigError(f"Invalid client config: {ve}") from ve

    @classmethod
    def from_env(cls) -> "ClientConfig":
        raw = {
            "base_url": _getenv(ENV_BASE_URL),
            "timeout_ms": _getenv(ENV_TIMEOUT_MS),
            "max_attempts": _getenv(ENV_MAX_ATTEMPTS),
        }
        values = {k: v for k, v in raw.items() if v is not None}
        try:
            return cls.model_validate(values)
        except ValidationError as ve:
            raise ConfigError(f"Invalid client config in environment: {ve}") from ve


__all__ = [
    "ClientConfig",
    "DEFAULT_BASE_URL",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_TIMEOUT_MS",
    "ENV_BASE_URL",
    "ENV_MAX_ATTEMPTS",
    "ENV_TIMEOUT_MS",
]
