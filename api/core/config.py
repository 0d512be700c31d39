"""
Environment-backed settings.

Every setting is read on call so tests can override the environment with
`monkeypatch.setenv`. Invalid numbers fall back to the default.
"""

from __future__ import annotations

import os

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"


def env_str(name: str, default: str) -> str:
    return os.environ.get(name, default).strip() or default


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def cors_origins() -> list[str]:
    raw = env_str("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def log_level() -> str:
    return env_str("LOG_LEVEL", "INFO").upper()


def notification_webhook_url() -> str:
    return os.environ.get("NOTIFICATION_WEBHOOK_URL", "").strip()


def notification_timeout_s() -> float:
    return env_float("NOTIFICATION_TIMEOUT_S", 5.0)


def dashboard_recent_days() -> int:
    days = env_int("DASHBOARD_RECENT_DAYS", 30)
    return days if days > 0 else 30
