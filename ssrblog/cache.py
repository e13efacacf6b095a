import enum
import json
import logging
import time
from typing import Any, Awaitable, Callable

import redis.asyncio as redis

logger = logging.getLogger(__name__)

ARTICLE_NAMESPACE = "articles:*"


class CacheOrigin(str, enum.Enum):
    """Where a read was served from; surfaced as the ``X-Cache`` header."""

    HIT = "HIT"
    MISS = "MISS"
    SKIP = "SKIP"


class CacheManager:
    """
    Read-through cache backed by Redis.

    The cache is advisory.  All public methods are safe to call while Redis
    is down: reads report a miss, writes are skipped, and ``read_through``
    falls back to the loader with a ``SKIP`` origin.  A backend error marks
    the manager unavailable; after ``retry_interval`` seconds the next call
    probes Redis with PING and resumes caching if it answers.

    Invalidations issued during an outage are lost, so entries that
    survived it may predate a write.  Caching therefore only resumes once
    the article namespace has been flushed; if the flush fails the manager
    stays unavailable until the next probe.

    One instance is created by the application lifespan and shared by all
    requests through the ``get_cache`` dependency.
    """

    def __init__(self, url: str, retry_interval: float = 30.0) -> None:
        self.url = url
        self.retry_interval = retry_interval
        self._redis: redis.Redis | None = None
        self._healthy: bool = False
        self._retry_at: float = 0.0
        # Set whenever invalidations may have been missed
        self._stale: bool = False
        self._hits: int = 0
        self._misses: int = 0
        self._skips: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        await self.attach(
            redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        )

    async def attach(self, client) -> None:
        """Use an already constructed client (``connect`` and tests go through here)."""
        self._redis = client
        try:
            await self._redis.ping()
            self._healthy = True
            logger.info("Redis connected: %s", self.url)
        except Exception as exc:
            self._mark_unavailable(exc)

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self._healthy = False

    def _mark_unavailable(self, exc: Exception) -> None:
        if self._healthy:
            logger.warning("Redis unavailable, bypassing cache: %s", exc)
        self._healthy = False
        self._stale = True
        self._retry_at = time.monotonic() + self.retry_interval

    async def _ensure_available(self) -> bool:
        if self._redis is None:
            return False
        if self._healthy:
            return True
        if time.monotonic() < self._retry_at:
            return False
        try:
            await self._redis.ping()
            if self._stale:
                flushed = await self._scan_delete(ARTICLE_NAMESPACE)
                logger.info("Flushed %d article key(s) left over from the outage", flushed)
        except Exception as exc:
            self._retry_at = time.monotonic() + self.retry_interval
            logger.debug("Redis still unavailable: %s", exc)
            return False
        self._stale = False
        self._healthy = True
        logger.info("Redis available again, caching resumed")
        return True

    async def _scan_delete(self, pattern: str) -> int:
        keys: list[str] = []
        async for key in self._redis.scan_iter(match=pattern):
            keys.append(key)
        if keys:
            await self._redis.delete(*keys)
        return len(keys)

    @property
    def available(self) -> bool:
        return self._redis is not None and self._healthy

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Return the cached value for *key*, or None on a miss / error."""
        if not await self._ensure_available():
            return None
        try:
            data = await self._redis.get(key)
        except Exception as exc:
            self._mark_unavailable(exc)
            return None
        return json.loads(data) if data is not None else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """
        Persist *value* under *key* with an optional TTL (seconds).

        A cache write failure never breaks a request.
        """
        if not await self._ensure_available():
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as exc:
            self._mark_unavailable(exc)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching *pattern* using SCAN (avoids blocking KEYS)."""
        if not await self._ensure_available():
            return 0
        try:
            deleted = await self._scan_delete(pattern)
        except Exception as exc:
            logger.error("Cache invalidation failed for pattern=%r: %s", pattern, exc)
            self._mark_unavailable(exc)
            return 0
        logger.debug("Cache invalidated %d key(s) matching %r", deleted, pattern)
        return deleted

    async def count_hit(self, key: str, window: int) -> int | None:
        """
        Add one to the fixed-window counter *key* and return the new value.

        The window starts with the first hit and lasts *window* seconds.
        Returns None while Redis is unavailable.
        """
        if not await self._ensure_available():
            return None
        try:
            await self._redis.set(key, 0, ex=window, nx=True)
            return await self._redis.incr(key)
        except Exception as exc:
            self._mark_unavailable(exc)
            return None

    async def ttl(self, key: str) -> int | None:
        """Seconds until *key* expires, or None if unknown."""
        if not await self._ensure_available():
            return None
        try:
            remaining = await self._redis.ttl(key)
        except Exception as exc:
            self._mark_unavailable(exc)
            return None
        return remaining if remaining > 0 else None

    async def read_through(
        self,
        key: str,
        ttl: int,
        loader: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, CacheOrigin]:
        """
        Serve *key* from Redis, or call *loader* and store its result.

        Loader errors propagate.  ``None`` results (not found) are never
        stored.
        """
        if not await self._ensure_available():
            self._skips += 1
            return await loader(), CacheOrigin.SKIP

        try:
            data = await self._redis.get(key)
        except Exception as exc:
            self._mark_unavailable(exc)
            self._skips += 1
            return await loader(), CacheOrigin.SKIP

        if data is not None:
            self._hits += 1
            return json.loads(data), CacheOrigin.HIT

        self._misses += 1
        value = await loader()
        if value is not None:
            await self.set(key, value, ttl=ttl)
        return value, CacheOrigin.MISS

    # ------------------------------------------------------------------
    # Domain-level invalidation
    # ------------------------------------------------------------------

    async def invalidate_articles(self) -> None:
        """
        Drop every key in the article namespace (lists, details, tag cloud).

        Called after each committed article write.  Coarse on purpose: any
        write can change membership of any listing page.
        """
        await self.delete_pattern(ARTICLE_NAMESPACE)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict:
        """Return a snapshot of hit/miss/skip counters for metrics endpoints."""
        total = self._hits + self._misses
        return {
            "available": self.available,
            "hits": self._hits,
            "misses": self._misses,
            "skips": self._skips,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }
