from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from hatym.domain.states import TOTAL_PAGES


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


@dataclass(frozen=True)
class Settings:
    # Database
    db_path: Path

    # Assignment protocol
    assignment_ttl_minutes: int
    max_pages_per_user: int
    sweep_interval_ms: int

    # Participant side
    api_url: str
    device_state_path: Path

    # Server (used by hatym.main when starting uvicorn programmatically)
    host: str
    port: int
    log_level: str

    @property
    def assignment_ttl_ms(self) -> int:
        return self.assignment_ttl_minutes * 60_000


def load_settings() -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - HATYM_DB_PATH (default: ./var/hatym.db)
      - HATYM_ASSIGNMENT_TTL_MINUTES (default: 30)
      - HATYM_MAX_PAGES_PER_USER (default: 1)
      - HATYM_SWEEP_INTERVAL_MS (default: 60000)
      - HATYM_API_URL (default: http://127.0.0.1:8000)
      - HATYM_DEVICE_STATE_PATH (default: ~/.hatym/device.json)
      - HATYM_HOST (default: 127.0.0.1)
      - HATYM_PORT (default: 8000)
      - HATYM_LOG_LEVEL (default: info)
    """
    db_path = Path(_get_env_str("HATYM_DB_PATH", "./var/hatym.db")).expanduser()

    ttl_minutes = _get_env_int("HATYM_ASSIGNMENT_TTL_MINUTES", 30)
    if ttl_minutes <= 0:
        raise ValueError("HATYM_ASSIGNMENT_TTL_MINUTES must be > 0")

    max_pages = _get_env_int("HATYM_MAX_PAGES_PER_USER", 1)
    if not (1 <= max_pages <= TOTAL_PAGES):
        raise ValueError(f"HATYM_MAX_PAGES_PER_USER must be between 1 and {TOTAL_PAGES}")

    sweep_interval_ms = _get_env_int("HATYM_SWEEP_INTERVAL_MS", 60_000)
    if sweep_interval_ms <= 0:
        raise ValueError("HATYM_SWEEP_INTERVAL_MS must be > 0")

    api_url = _get_env_str("HATYM_API_URL", "http://127.0.0.1:8000").rstrip("/")
    device_state_path = Path(_get_env_str("HATYM_DEVICE_STATE_PATH", "~/.hatym/device.json")).expanduser()

    host = _get_env_str("HATYM_HOST", "127.0.0.1")
    port = _get_env_int("HATYM_PORT", 8000)
    if not (1 <= port <= 65535):
        raise ValueError("HATYM_PORT must be between 1 and 65535")

    log_level = _get_env_str("HATYM_LOG_LEVEL", "info").lower()

    return Settings(
        db_path=db_path,
        assignment_ttl_minutes=ttl_minutes,
        max_pages_per_user=max_pages,
        sweep_interval_ms=sweep_interval_ms,
        api_url=api_url,
        device_state_path=device_state_path,
        host=host,
        port=port,
        log_level=log_level,
    )
