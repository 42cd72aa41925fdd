"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class BackendSettings:
    database_url: str | None
    host: str
    port: int
    log_level: str
    log_json: bool


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> BackendSettings:
    port_raw = os.getenv("COMBATTRACKER_PORT", "8000")
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise ValueError(f"COMBATTRACKER_PORT must be an integer, got {port_raw!r}") from exc

    log_level = os.getenv("COMBATTRACKER_LOG_LEVEL", "INFO").upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(f"COMBATTRACKER_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    return BackendSettings(
        database_url=os.getenv("COMBATTRACKER_DATABASE_URL") or None,
        host=os.getenv("COMBATTRACKER_HOST", "127.0.0.1"),
        port=port,
        log_level=log_level,
        log_json=_parse_bool(os.getenv("COMBATTRACKER_LOG_JSON", "false")),
    )
