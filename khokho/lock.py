from __future__ import annotations

import time
from contextlib import contextmanager

import redis

from khokho.errors import ConcurrencyConflict


@contextmanager
def match_lock(*, r: redis.Redis, match_id: str, ttl_ms: int = 5_000):
    """Per-match lock serializing mutating operations.

    Best-effort: single holder, released by key delete. Expiry covers a crashed holder.
    """

    key = f"lock:match:{match_id}"
    acquired = r.set(key, "1", nx=True, px=ttl_ms)
    if not acquired:
        raise ConcurrencyConflict("Match is busy")
    try:
        yield
    finally:
        r.delete(key)
        # small yield to avoid tight contention in tests
        time.sleep(0)
