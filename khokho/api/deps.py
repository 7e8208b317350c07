from __future__ import annotations

from collections.abc import Callable, Generator

import redis

from khokho.infra.redis_client import create_redis


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


def get_redis_connector() -> Callable[[], redis.Redis]:
    """Client factory for background work that outlives the request."""

    return create_redis
