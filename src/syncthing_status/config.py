"""Load the daemon connection and tunables from environment variables.

  SYNCTHING_API_KEY   - Required. API key, or path to a file containing it.
  SYNCTHING_URL       - Optional. Base URL (default: http://localhost:8384).
                        SYNCTHING_BASE_URL is accepted as an alias.

  SYNCTHING_STATUS_*  - Optional tunables, see ``ENV_FIELDS``.
"""

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from syncthing_status.sink import parse_signal

DEFAULT_URL = "http://localhost:8384"

# Environment variable -> Settings field
ENV_FIELDS: dict[str, str] = {
    "SYNCTHING_STATUS_POLL_TIMEOUT": "poll_timeout",
    "SYNCTHING_STATUS_BACKOFF_MIN": "backoff_min",
    "SYNCTHING_STATUS_BACKOFF_MAX": "backoff_max",
    "SYNCTHING_STATUS_BACKOFF_FACTOR": "backoff_factor",
    "SYNCTHING_STATUS_BACKOFF_JITTER": "backoff_jitter",
    "SYNCTHING_STATUS_MAX_ATTEMPTS": "max_attempts",
    "SYNCTHING_STATUS_STARTUP_ATTEMPTS": "startup_attempts",
    "SYNCTHING_STATUS_DEBOUNCE": "debounce",
    "SYNCTHING_STATUS_IDLE_TICK": "idle_tick",
    "SYNCTHING_STATUS_OUTPUT": "output",
    "SYNCTHING_STATUS_SIGNAL": "signal",
    "SYNCTHING_STATUS_SIGNAL_PID": "signal_pid",
    "SYNCTHING_STATUS_EXPECTED_DEVICES": "expected_devices",
    "SYNCTHING_STATUS_LOG_LEVEL": "log_level",
}


class Settings(BaseModel):
    """Everything the core needs, validated once at startup."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    url: str = Field(DEFAULT_URL, min_length=1)
    api_key: str = Field(..., min_length=1)
    poll_timeout: float = Field(60.0, ge=1, description="Long-poll window, whole seconds")
    backoff_min: float = Field(1.0, gt=0)
    backoff_max: float = Field(60.0, gt=0)
    backoff_factor: float = Field(2.0, ge=1)
    backoff_jitter: float = Field(0.2, ge=0, lt=1)
    max_attempts: int = Field(8, ge=1)
    startup_attempts: int = Field(0, ge=0, description="0 retries forever")
    debounce: float = Field(0.25, ge=0)
    idle_tick: float = Field(5.0, gt=0)
    output: str = Field("-", min_length=1, description="'-' for stdout, else a path")
    signal: str | None = None
    signal_pid: int | None = Field(None, gt=0)
    expected_devices: list[str] | None = None
    log_level: str = "WARNING"

    @field_validator("url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("signal")
    @classmethod
    def _valid_signal(cls, v: str | None) -> str | None:
        if v:
            parse_signal(v)
        return v or None

    @field_validator("expected_devices", mode="before")
    @classmethod
    def _split_devices(cls, v):
        if isinstance(v, str):
            return [d.strip() for d in v.split(",") if d.strip()] or None
        return v

    @field_validator("log_level")
    @classmethod
    def _valid_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level '{v}'")
        return level

    @model_validator(mode="after")
    def _consistent(self) -> "Settings":
        if (self.signal is None) != (self.signal_pid is None):
            raise ValueError("signal and signal_pid must be set together")
        if self.backoff_min > self.backoff_max:
            raise ValueError("backoff_min must not exceed backoff_max")
        return self


def parse_secret(value: str) -> str:
    """Return the file's contents if ``value`` names an existing file, else ``value``."""
    path = Path(value).expanduser()
    try:
        if path.is_file():
            return path.read_text().strip()
    except OSError as exc:
        raise ValueError(f"Cannot read API key file {path}: {exc}") from exc
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build ``Settings`` from environment variables.

    Raises:
        ValueError: On a missing API key or any invalid value.
    """
    env = os.environ if environ is None else environ

    api_key = env.get("SYNCTHING_API_KEY", "").strip()
    if not api_key:
        raise ValueError("SYNCTHING_API_KEY is not set.")

    raw: dict[str, object] = {
        "url": env.get("SYNCTHING_URL") or env.get("SYNCTHING_BASE_URL") or DEFAULT_URL,
        "api_key": parse_secret(api_key),
    }
    for var, field in ENV_FIELDS.items():
        value = env.get(var, "").strip()
        if value:
            raw[field] = value

    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValueError(f"Invalid configuration: {problems}") from exc
