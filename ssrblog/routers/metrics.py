from fastapi import APIRouter, Depends
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ssrblog.cache import CacheManager
from ssrblog.database import get_db
from ssrblog.dependencies import get_cache
from ssrblog.models import Article, ArticleStatus, Comment
from ssrblog.schemas import MetricsResponse

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


@router.get("", response_model=MetricsResponse)
async def get_metrics(
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    live = Article.is_deleted.is_(False)
    counts = (
        await db.execute(
            select(
                func.count(case((live & (Article.status == ArticleStatus.PUBLISHED.value), 1))),
                func.count(case((live & (Article.status == ArticleStatus.DRAFT.value), 1))),
                func.count(case((Article.is_deleted.is_(True), 1))),
            )
        )
    ).one()

    total_comments = (
        await db.execute(
            select(func.count()).select_from(Comment).where(Comment.is_deleted.is_(False))
        )
    ).scalar_one()

    return MetricsResponse(
        published_articles=counts[0],
        draft_articles=counts[1],
        deleted_articles=counts[2],
        total_comments=total_comments,
        cache_info=cache.stats,
    )
