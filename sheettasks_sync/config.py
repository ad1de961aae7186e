"""Settings for the tasks sheet connection, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass

ENV_PREFIX = "SHEETTASKS"

DEFAULT_RANGE = "Tasks!A1:Z1000"
DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 1.0
DEFAULT_TIMEOUT = 30.0


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str | None = None) -> str | None:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return default
    return v.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class Settings:
    sheet_id: str | None = None
    range: str = DEFAULT_RANGE
    api_key: str | None = None
    access_token: str | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base: float = DEFAULT_BACKOFF_BASE
    timeout: float = DEFAULT_TIMEOUT

    def missing(self) -> list[str]:
        """Names of required settings that are not set."""
        problems = []
        if not self.sheet_id:
            problems.append(_k("SHEET_ID"))
        if not (self.api_key or self.access_token):
            problems.append(f"{_k('API_KEY')} or {_k('ACCESS_TOKEN')}")
        return problems


def load_settings(**overrides) -> Settings:
    """Build Settings from SHEETTASKS_* variables; non-None overrides win."""
    settings = Settings(
        sheet_id=_env(_k("SHEET_ID")),
        range=_env(_k("RANGE"), DEFAULT_RANGE),
        api_key=_env(_k("API_KEY")),
        access_token=_env(_k("ACCESS_TOKEN")),
        poll_interval=_env_float(_k("POLL_INTERVAL"), DEFAULT_POLL_INTERVAL),
        max_retries=_env_int(_k("MAX_RETRIES"), DEFAULT_MAX_RETRIES),
        backoff_base=_env_float(_k("BACKOFF_BASE"), DEFAULT_BACKOFF_BASE),
        timeout=_env_float(_k("TIMEOUT"), DEFAULT_TIMEOUT),
    )
    for name, value in overrides.items():
        if value is None:
            continue
        if not hasattr(settings, name):
            raise TypeError(f"Unknown setting '{name}'")
        setattr(settings, name, value)
    return settings
