"""
Comment service — append-only comments on published articles.

Comments cannot be edited through the API; soft-deleted comments are
filtered out of every read.  Comment writes do not touch the article
cache namespace because comment lists are never cached.
"""
import logging

from sqlalchemy import asc, select
from sqlalchemy.ext.asyncio import AsyncSession

from ssrblog.models import Article, ArticleStatus, Comment
from ssrblog.schemas import CommentCreate

logger = logging.getLogger(__name__)


def _comment_to_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "article_id": comment.article_id,
        "author_name": comment.author_name,
        "content": comment.content,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
    }


async def list_comments(db: AsyncSession, article_id: int) -> list[dict]:
    """Return the live comments of *article_id*, oldest first."""
    q = (
        select(Comment)
        .where(Comment.article_id == article_id, Comment.is_deleted.is_(False))
        .order_by(asc(Comment.created_at), asc(Comment.id))
    )
    result = await db.execute(q)
    return [_comment_to_dict(c) for c in result.scalars().all()]


async def add_comment(
    db: AsyncSession,
    article_id: int,
    data: CommentCreate,
) -> dict | None:
    """
    Append a comment to *article_id*.

    Returns None when the article is not visible to readers (missing,
    draft or deleted), so hidden articles cannot collect comments.
    """
    q = select(Article.id).where(
        Article.id == article_id,
        Article.is_deleted.is_(False),
        Article.status == ArticleStatus.PUBLISHED.value,
    )
    if (await db.execute(q)).scalar_one_or_none() is None:
        return None

    comment = Comment(
        article_id=article_id,
        author_name=data.author_name,
        content=data.content,
    )
    db.add(comment)
    await db.commit()
    await db.refresh(comment)
    logger.info("Comment %s added to article %s", comment.id, article_id)
    return _comment_to_dict(comment)
