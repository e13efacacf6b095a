"""
Fixed-window request limiting for the JSON API.

Counters live in Redis under ``ratelimit:`` so all worker processes share
them.  While Redis is unavailable every request is let through.
"""
import logging

from fastapi import Depends, HTTPException, Request, status

from ssrblog.cache import CacheManager
from ssrblog.config import settings
from ssrblog.dependencies import get_cache

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit:api"


def client_key(request: Request) -> str:
    host = request.client.host if request.client else "unknown"
    return f"{KEY_PREFIX}:{host}"


async def api_rate_limit(request: Request, cache: CacheManager = Depends(get_cache)) -> None:
    limit = settings.RATE_LIMIT_MAX_REQUESTS
    if limit <= 0:
        return
    key = client_key(request)
    count = await cache.count_hit(key, settings.RATE_LIMIT_WINDOW)
    if count is None or count <= limit:
        return

    retry_after = await cache.ttl(key) or settings.RATE_LIMIT_WINDOW
    logger.warning("Rate limit exceeded for %s (%d requests)", key, count)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests",
        headers={"Retry-After": str(retry_after)},
    )
