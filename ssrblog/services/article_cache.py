"""
Cached article reads.

Keys are built from the *effective* parameters (after coercion and
clamping) so that ``pageSize=1000`` and ``pageSize=50`` share one entry.
All keys live under the ``articles:`` namespace, which every article write
clears wholesale via ``CacheManager.invalidate_articles``.
"""
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ssrblog.cache import CacheManager, CacheOrigin
from ssrblog.config import settings
from ssrblog.services import article_service

TAG_CLOUD_KEY = "articles:tags"


def list_key(page: int, page_size: int, tag: str, sort: str) -> str:
    return f"articles:list:{page}:{page_size}:{tag}:{sort}"


def detail_key(article_id: int, include_draft: bool) -> str:
    return f"articles:detail:{article_id}:{'all' if include_draft else 'published'}"


async def cached_list_published(
    db: AsyncSession,
    cache: CacheManager,
    page: Any = 1,
    page_size: Any = None,
    tag: str | None = None,
    sort: Any = article_service.DEFAULT_SORT,
) -> tuple[dict, CacheOrigin]:
    page = article_service.coerce_page(page)
    page_size = article_service.coerce_page_size(
        page_size, settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE
    )
    sort = article_service.coerce_sort(sort)
    tag = (tag or "").strip()

    async def load() -> dict:
        return await article_service.list_published(db, page, page_size, tag, sort)

    return await cache.read_through(
        list_key(page, page_size, tag, sort), settings.CACHE_TTL_LIST, load
    )


async def cached_article(
    db: AsyncSession,
    cache: CacheManager,
    article_id: int,
    include_draft: bool = False,
) -> tuple[dict | None, CacheOrigin]:
    async def load() -> dict | None:
        return await article_service.get_by_id(db, article_id, include_draft)

    return await cache.read_through(
        detail_key(article_id, include_draft), settings.CACHE_TTL_DETAIL, load
    )


async def cached_tag_cloud(db: AsyncSession, cache: CacheManager) -> tuple[list[dict], CacheOrigin]:
    async def load() -> list[dict]:
        return await article_service.tag_cloud(db)

    return await cache.read_through(TAG_CLOUD_KEY, settings.CACHE_TTL_TAGS, load)
