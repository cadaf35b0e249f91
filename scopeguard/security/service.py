from __future__ import annotations

import logging

from scopeguard.cache.context_cache import ContextCache
from scopeguard.context import SecurityContext
from scopeguard.errors import CacheDegraded
from scopeguard.security.compiler import ContextCompiler

logger = logging.getLogger(__name__)


class SecurityContextService:
    """
    Cache-or-compile access to security contexts.

    A degraded cache is bypassed on reads and writes (every request compiles
    fresh). Invalidation failures propagate so writers learn the cache may be
    stale.
    """

    def __init__(self, compiler: ContextCompiler, cache: ContextCache) -> None:
        self._compiler = compiler
        self._cache = cache

    def get(self, user_id: str) -> SecurityContext:
        try:
            cached = self._cache.get(user_id)
        except CacheDegraded as exc:
            logger.warning("Context cache unavailable on read, compiling user=%s error=%s", user_id, exc)
            cached = None

        if cached is not None:
            return cached

        context = self._compiler.compile(user_id)

        try:
            self._cache.put(user_id, context)
        except CacheDegraded as exc:
            logger.warning("Context cache unavailable on write user=%s error=%s", user_id, exc)

        return context

    def invalidate(self, user_id: str) -> None:
        self._cache.invalidate(user_id)

    def invalidate_all(self) -> int:
        return self._cache.invalidate_all()
