from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str
    # Per-match lock expiry for serialized operations.
    lock_ttl_ms: int
    # How often the background clock runner ticks a live match.
    clock_interval_s: float
    log_level: str


def settings_from_env() -> Settings:
    # A local .env never overrides variables already exported in the shell.
    load_dotenv(override=False)
    return Settings(
        redis_url=os.environ.get("KHOKHO_REDIS_URL", "redis://localhost:6379/0"),
        lock_ttl_ms=int(os.environ.get("KHOKHO_LOCK_TTL_MS", "5000")),
        clock_interval_s=float(os.environ.get("KHOKHO_CLOCK_INTERVAL_S", "1.0")),
        log_level=os.environ.get("KHOKHO_LOG_LEVEL", "INFO").upper(),
    )
