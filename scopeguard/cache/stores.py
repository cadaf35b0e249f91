"""
Key-value backends for compiled security contexts.

Both backends store opaque bytes with a TTL and raise ``CacheDegraded`` when
the backing store cannot be reached.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

import redis

from scopeguard.errors import CacheDegraded

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_by_prefix(self, prefix: str) -> int: ...


class InMemoryCacheStore:
    """
    Process-local store with per-entry TTL.

    Entries expire lazily on read, measured on a monotonic clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_by_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._data if k.startswith(prefix)]
            for k in keys:
                del self._data[k]
            return len(keys)


class RedisCacheStore:
    """Redis-backed store (``SET EX`` for writes, ``SCAN MATCH`` for prefix deletes)."""

    def __init__(self, client: redis.Redis, scan_count: int = 500) -> None:
        self._client = client
        self._scan_count = scan_count

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> RedisCacheStore:
        client = redis.Redis.from_url(url, socket_timeout=socket_timeout, socket_connect_timeout=socket_timeout)
        return cls(client)

    def get(self, key: str) -> bytes | None:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise CacheDegraded(f"redis get failed: {type(exc).__name__}") from exc

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            self._client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as exc:
            raise CacheDegraded(f"redis set failed: {type(exc).__name__}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise CacheDegraded(f"redis delete failed: {type(exc).__name__}") from exc

    def delete_by_prefix(self, prefix: str) -> int:
        try:
            keys = list(self._client.scan_iter(match=f"{prefix}*", count=self._scan_count))
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as exc:
            raise CacheDegraded(f"redis prefix delete failed: {type(exc).__name__}") from exc
        logger.debug("Redis prefix delete prefix=%s count=%d", prefix, len(keys))
        return len(keys)
