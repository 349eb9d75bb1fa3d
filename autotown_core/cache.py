from __future__ import annotations

import time
from typing import Protocol

from autotown_core.config import Config
from autotown_core.errors import RecoverableError

try:
    import redis
except ImportError:  # pragma: no cover - optional dependency for redis backend
    redis = None


class StatsCache(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> None: ...


class CacheBackendError(RecoverableError):
    pass


class LocalStatsCache(StatsCache):
    def __init__(self) -> None:
        self._values: dict[str, tuple[str, float | None]] = {}

    def get(self, key: str) -> str | None:
        value = self._values.get(key)
        if value is None:
            return None
        payload, expires_at = value
        if expires_at is not None and expires_at <= time.time():
            self._values.pop(key, None)
            return None
        return payload

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = None
        if ttl_seconds:
            expires_at = time.time() + ttl_seconds
        self._values[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class RedisStatsCache(StatsCache):
    def __init__(self, client) -> None:
        self._client = client

    def get(self, key: str) -> str | None:
        value = self._client.get(key)
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds:
            self._client.set(key, value, ex=ttl_seconds)
        else:
            self._client.set(key, value)

    def delete(self, key: str) -> None:
        self._client.delete(key)


def build_stats_cache(config: Config) -> StatsCache | None:
    if config.cache_backend == "none":
        return None
    if config.cache_backend == "local":
        return LocalStatsCache()
    if redis is None:
        raise CacheBackendError("Redis cache backend requires the redis package")
    client = redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        ssl=config.redis_ssl,
        password=config.redis_password,
        decode_responses=True,
    )
    return RedisStatsCache(client)
