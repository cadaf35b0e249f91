from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable

from scopeguard.cache.stores import CacheStore
from scopeguard.context import SecurityContext

logger = logging.getLogger(__name__)

CACHE_PREFIX = "security_context:"


class ContextCache:
    """
    Time-boxed cache of compiled security contexts.

    The cache is an optimization, never a source of truth: entries are
    replaced wholesale and an entry older than ``max_age_seconds`` (measured
    from ``SecurityContext.last_updated``) is a miss even if the store still
    holds it. Store failures surface as ``CacheDegraded``.
    """

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: int = 3600,
        max_age_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._max_age = max_age_seconds
        self._clock = clock

    @staticmethod
    def key_for(user_id: str) -> str:
        return f"{CACHE_PREFIX}{user_id}"

    def get(self, user_id: str) -> SecurityContext | None:
        raw = self._store.get(self.key_for(user_id))
        if raw is None:
            return None

        try:
            context = SecurityContext.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Discarding unreadable cached context user=%s error=%s", user_id, type(exc).__name__)
            self._store.delete(self.key_for(user_id))
            return None

        age = self._clock() - context.last_updated
        if age >= self._max_age:
            logger.debug("Cached context stale user=%s age=%.1fs", user_id, age)
            return None
        return context

    def put(self, user_id: str, context: SecurityContext, ttl_seconds: int | None = None) -> None:
        payload = json.dumps(context.to_dict(), separators=(",", ":")).encode("utf-8")
        self._store.set(self.key_for(user_id), payload, ttl_seconds if ttl_seconds is not None else self._ttl)

    def invalidate(self, user_id: str) -> None:
        self._store.delete(self.key_for(user_id))
        logger.debug("Security context invalidated user=%s", user_id)

    def invalidate_all(self) -> int:
        count = self._store.delete_by_prefix(CACHE_PREFIX)
        logger.info("Invalidated %d security contexts", count)
        return count
