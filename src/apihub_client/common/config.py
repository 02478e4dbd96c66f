"""Gateway configuration: loaded once per process, then passed around read-only."""
from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from apihub_client.common.errors import ConfigurationError

DEFAULT_BASE_URL = "https://api.heybossai.com/v1"
DEFAULT_CONFIG_PATH = "config.json"
PLACEHOLDER_API_KEY = "YOUR_API_KEY_HERE"

_FILE_ALIASES = {"api_key": "apiKey", "base_url": "baseUrl", "timeout_s": "timeoutS"}


class RetryPolicy(BaseModel):
    """Bounded exponential backoff settings for the transport."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_attempts: int = Field(3, ge=1, alias="maxAttempts")
    base_delay_ms: int = Field(500, gt=0, alias="baseDelayMs")
    max_delay_ms: int = Field(8000, ge=0, alias="maxDelayMs")

    @model_validator(mode="after")
    def _check_bounds(self) -> "RetryPolicy":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self


class GatewayConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    api_key: str | None = Field(None, alias="apiKey")
    base_url: str = Field(DEFAULT_BASE_URL, alias="baseUrl")
    timeout_s: float = Field(120.0, gt=0, alias="timeoutS")
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    def require_api_key(self) -> str:
        """Return the API key or raise if it is missing or still the placeholder."""
        key = (self.api_key or "").strip()
        if not key or key == PLACEHOLDER_API_KEY:
            raise ConfigurationError(
                "API key not configured. Set APIHUB_API_KEY or update config.json with your API key."
            )
        return key

    def endpoint(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


def _read_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if env.get("APIHUB_API_KEY"):
        overrides["api_key"] = env["APIHUB_API_KEY"]
    if env.get("APIHUB_BASE_URL"):
        overrides["base_url"] = env["APIHUB_BASE_URL"]
    if env.get("APIHUB_TIMEOUT_S"):
        overrides["timeout_s"] = env["APIHUB_TIMEOUT_S"]
    if env.get("APIHUB_MAX_ATTEMPTS"):
        overrides["max_attempts"] = env["APIHUB_MAX_ATTEMPTS"]
    return overrides


def load_config(path: str | None = None, env: Mapping[str, str] | None = None) -> GatewayConfig:
    """
    Build the process configuration from an optional file plus environment overrides.

    Args:
        path: YAML or JSON file. Defaults to $APIHUB_CONFIG, then ./config.json if it exists.
        env: Environment mapping, defaults to os.environ.

    Raises:
        ConfigurationError: unreadable file or invalid values.
    """
    env = os.environ if env is None else env
    raw: dict[str, Any] = {}

    explicit = path or env.get("APIHUB_CONFIG")
    if explicit:
        raw = _read_file(Path(explicit))
    elif Path(DEFAULT_CONFIG_PATH).is_file():
        raw = _read_file(Path(DEFAULT_CONFIG_PATH))

    overrides = _env_overrides(env)
    max_attempts = overrides.pop("max_attempts", None)
    for field, alias in _FILE_ALIASES.items():
        # env wins over either spelling in the file
        if field in overrides:
            raw.pop(alias, None)
    raw.update(overrides)
    if max_attempts is not None:
        retry = dict(raw.get("retry") or {})
        retry.pop("maxAttempts", None)
        retry["max_attempts"] = max_attempts
        raw["retry"] = retry

    try:
        return GatewayConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
