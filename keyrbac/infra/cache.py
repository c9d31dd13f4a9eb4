from __future__ import annotations

import os
from functools import lru_cache

from redis import Redis

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
KEY_CACHE_PREFIX = os.getenv("KEY_CACHE_PREFIX", "keyrbac:key")


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


def key_by_id_cache_key(key_id: str) -> str:
    return f"{KEY_CACHE_PREFIX}:id:{key_id}"


def key_by_hash_cache_key(key_hash: str) -> str:
    return f"{KEY_CACHE_PREFIX}:hash:{key_hash}"


class RedisKeyCache:
    """Drops cached key records so verifications pick up new bindings."""

    def __init__(self, client: Redis | None = None) -> None:
        self._client = client

    def _redis(self) -> Redis:
        return self._client if self._client is not None else get_redis()

    def invalidate(self, key_id: str, key_hash: str | None = None) -> None:
        names = [key_by_id_cache_key(key_id)]
        if key_hash:
            names.append(key_by_hash_cache_key(key_hash))
        self._redis().delete(*names)
