from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from mediajobs.models import LANE_DOWNLOAD, LANE_SEPARATION

DEFAULT_CORS_ORIGINS = "http://127.0.0.1:3000,http://localhost:3000"


def _env_int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass(frozen=True)
class Settings:
    store_backend: str
    postgres_dsn: str
    require_truestack: bool
    cron_secret: str
    reminder_webhook_secret: str
    lane_caps: dict[str, int]
    cleanup_retention_hours: int
    reminder_lead_minutes: int
    reminder_window_minutes: int
    reminder_timeout_s: int
    cors_allow_origins: list[str]
    log_level: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            store_backend=env.get("MEDIAJOBS_STORE_BACKEND", "memory").strip().lower() or "memory",
            postgres_dsn=env.get("POSTGRES_DSN", "").strip(),
            require_truestack=_env_bool(env, "MEDIAJOBS_REQUIRE_TRUESTACK", False),
            cron_secret=env.get("CRON_SECRET", "").strip(),
            reminder_webhook_secret=env.get("REMINDER_WEBHOOK_SECRET", "").strip(),
            lane_caps={
                LANE_SEPARATION: _env_int(env, "SEPARATION_CONCURRENCY", 1, minimum=1),
                LANE_DOWNLOAD: _env_int(env, "DOWNLOAD_CONCURRENCY", 1, minimum=1),
            },
            cleanup_retention_hours=_env_int(env, "CLEANUP_RETENTION_HOURS", 24, minimum=1),
            reminder_lead_minutes=_env_int(env, "REMINDER_LEAD_MINUTES", 5),
            reminder_window_minutes=_env_int(env, "REMINDER_WINDOW_MINUTES", 5, minimum=1),
            reminder_timeout_s=_env_int(env, "REMINDER_TIMEOUT_S", 10, minimum=1),
            cors_allow_origins=_split_csv(env.get("CORS_ALLOW_ORIGINS", DEFAULT_CORS_ORIGINS)),
            log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
