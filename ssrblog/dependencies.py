from fastapi import HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ssrblog.cache import CacheManager

# articles.id is a 32-bit INTEGER column
MAX_ARTICLE_ID = 2**31 - 1


class ListingParams:
    """
    Reusable FastAPI dependency for the public listing query string.

    Values are taken as raw strings and coerced by the service layer:
    a broken ``page`` means page 1, an oversized ``pageSize`` is clamped
    and an unknown ``sort`` means ``newest``.  Nothing here rejects a
    request.
    """

    def __init__(
        self,
        page: str | None = Query(None, description="Page number (1-based)."),
        page_size: str | None = Query(
            None,
            alias="pageSize",
            description="Items per page; clamped to the configured maximum.",
        ),
        tag: str | None = Query(None, description="Only articles carrying this tag."),
        sort: str | None = Query(None, description="newest, oldest or popular."),
    ) -> None:
        self.page = page
        self.page_size = page_size
        self.tag = tag
        self.sort = sort


def get_cache(request: Request) -> CacheManager:
    return request.app.state.cache


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def parse_article_id(article_id: str) -> int:
    """Path parameter guard: ids must be positive 32-bit integers, otherwise 400."""
    try:
        value = int(article_id)
    except ValueError:
        value = 0
    if value < 1 or value > MAX_ARTICLE_ID:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid id")
    return value
