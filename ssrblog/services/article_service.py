"""
Article service — query layer for the Article aggregate.

Design notes
------------
- Tags live in a single comma-joined text column.  ``normalize_tags``
  turns the stored form back into a list on every read; a tag containing
  a comma cannot be represented and is split on write.
- Readers only ever see ``published`` rows with ``is_deleted = false``.
  Hidden and missing articles produce the same ``None`` result so callers
  cannot tell them apart.
- Paging parameters are coerced rather than rejected: bad pages become 1,
  bad sizes fall back to the default and everything is clamped.
- Read functions never commit.  Write functions commit before they
  invalidate the cache, so a reader that starts after the write returns
  cannot re-populate the cache with pre-write rows.
- ``increment_views`` runs detached from the request that triggered it and
  uses its own session; it is an atomic ``views = views + 1`` in SQL.
"""
import logging
import re
from typing import Any

from sqlalchemy import Text, asc, desc, false, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ssrblog.cache import CacheManager
from ssrblog.config import settings
from ssrblog.models import Article, ArticleStatus
from ssrblog.schemas import ArticleCreate, ArticleUpdate

logger = logging.getLogger(__name__)

SORT_OPTIONS: frozenset[str] = frozenset({"newest", "oldest", "popular"})
DEFAULT_SORT = "newest"
MAX_PAGE = 2**31 - 1

_MARKDOWN_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_MARKDOWN_STRIP_RE = re.compile(r"[#>*_`~|]+")
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Tag helpers
# ---------------------------------------------------------------------------

def normalize_tags(raw: str | list[str] | None) -> list[str]:
    """
    Return the ordered, de-duplicated tag list for a stored value.

    >>> normalize_tags("a, b,,c ")
    ['a', 'b', 'c']
    """
    if not raw:
        return []
    parts = raw.split(",") if isinstance(raw, str) else [p for item in raw for p in item.split(",")]
    tags: list[str] = []
    for part in parts:
        name = part.strip()
        if name and name not in tags:
            tags.append(name)
    return tags


def join_tags(tags: str | list[str] | None) -> str:
    """Storage form of *tags*: normalized names joined by commas."""
    return ",".join(normalize_tags(tags))


def derive_summary(content: str, limit: int | None = None) -> str:
    """Plain-text excerpt of markdown *content* cut to *limit* characters."""
    limit = limit or settings.SUMMARY_LENGTH
    text = _MARKDOWN_LINK_RE.sub(r"\1", content)
    text = _WHITESPACE_RE.sub(" ", _MARKDOWN_STRIP_RE.sub(" ", text)).strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


# ---------------------------------------------------------------------------
# Parameter coercion
# ---------------------------------------------------------------------------

def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def coerce_page(value: Any) -> int:
    page = _to_int(value)
    if not page or page < 1:
        return 1
    # Keeps the OFFSET inside a signed 64-bit integer for any allowed size
    return min(page, MAX_PAGE)


def coerce_page_size(value: Any, default: int, maximum: int) -> int:
    size = _to_int(value)
    if not size or size < 1:
        size = default
    return min(size, maximum)


def coerce_sort(value: Any) -> str:
    return value if value in SORT_OPTIONS else DEFAULT_SORT


def _order_by(sort: str):
    if sort == "oldest":
        return (asc(Article.created_at), asc(Article.id))
    if sort == "popular":
        return (desc(Article.views), desc(Article.id))
    return (desc(Article.created_at), desc(Article.id))


def _tag_filter(tag: str):
    # Exact membership in the comma-joined column: ",a,b," contains ",a,"
    padded = literal(",").concat(func.replace(Article.tags, ", ", ",", type_=Text)).concat(",")
    return padded.contains(f",{tag},", autoescape=True)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _article_to_dict(article: Article) -> dict:
    """Serialise an Article for listings (no content)."""
    return {
        "id": article.id,
        "title": article.title,
        "summary": article.summary,
        "tags": normalize_tags(article.tags),
        "status": article.status,
        "views": article.views,
        "created_at": article.created_at.isoformat() if article.created_at else None,
        "updated_at": article.updated_at.isoformat() if article.updated_at else None,
    }


def _article_detail_to_dict(article: Article) -> dict:
    data = _article_to_dict(article)
    data["content"] = article.content
    data["author_id"] = article.author_id
    return data


def _visible():
    return (
        Article.is_deleted.is_(False),
        Article.status == ArticleStatus.PUBLISHED.value,
    )


async def _page(db: AsyncSession, conditions, order, page: int, page_size: int) -> dict:
    count_q = select(func.count()).select_from(Article).where(*conditions)
    total: int = (await db.execute(count_q)).scalar_one()

    rows_q = (
        select(Article)
        .where(*conditions)
        .order_by(*order)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    articles = (await db.execute(rows_q)).scalars().all()
    return {
        "articles": [_article_to_dict(a) for a in articles],
        "total": total,
        "page": page,
        "pageSize": page_size,
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def list_published(
    db: AsyncSession,
    page: Any = 1,
    page_size: Any = None,
    tag: str | None = None,
    sort: Any = DEFAULT_SORT,
) -> dict:
    """
    Return one page of published, non-deleted articles.

    ``sort`` is ``newest`` (default), ``oldest`` or ``popular``; ``tag``
    restricts to articles carrying that exact tag.
    """
    page = coerce_page(page)
    page_size = coerce_page_size(page_size, settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    sort = coerce_sort(sort)

    conditions = list(_visible())
    tag = (tag or "").strip()
    if "," in tag:
        # No stored tag can contain the separator
        conditions.append(false())
    elif tag:
        conditions.append(_tag_filter(tag))
    return await _page(db, conditions, _order_by(sort), page, page_size)


async def list_admin(
    db: AsyncSession,
    page: Any = 1,
    page_size: Any = None,
    status: str | None = None,
) -> dict:
    """Admin listing: drafts included, optional status filter, newest first."""
    page = coerce_page(page)
    page_size = coerce_page_size(
        page_size, settings.ADMIN_DEFAULT_PAGE_SIZE, settings.MAX_ADMIN_PAGE_SIZE
    )
    conditions = [Article.is_deleted.is_(False)]
    if status in {s.value for s in ArticleStatus}:
        conditions.append(Article.status == status)
    return await _page(db, conditions, _order_by("newest"), page, page_size)


async def get_by_id(db: AsyncSession, article_id: int, include_draft: bool = False) -> dict | None:
    """
    Return the detail dict for *article_id*, or None.

    Deleted articles are never returned; drafts only with *include_draft*.
    """
    q = select(Article).where(Article.id == article_id, Article.is_deleted.is_(False))
    if not include_draft:
        q = q.where(Article.status == ArticleStatus.PUBLISHED.value)
    article = (await db.execute(q)).scalar_one_or_none()
    if article is None:
        return None
    return _article_detail_to_dict(article)


async def tag_cloud(db: AsyncSession) -> list[dict]:
    """
    Count published articles per tag, most used first.

    Ties keep the order in which tags were first encountered, oldest
    article first.
    """
    q = (
        select(Article.tags)
        .where(*_visible())
        .order_by(asc(Article.created_at), asc(Article.id))
    )
    counts: dict[str, int] = {}
    for raw in (await db.execute(q)).scalars():
        for name in normalize_tags(raw):
            counts[name] = counts.get(name, 0) + 1
    tags = [{"name": name, "count": count} for name, count in counts.items()]
    tags.sort(key=lambda t: t["count"], reverse=True)
    return tags


# ---------------------------------------------------------------------------
# Detached side effect
# ---------------------------------------------------------------------------

async def increment_views(
    session_factory: async_sessionmaker[AsyncSession], article_id: int
) -> bool:
    """
    Atomically add one view to *article_id* in its own transaction.

    Meant to run after the response has been sent; failures are logged
    and reported through the return value, never raised.
    """
    try:
        async with session_factory() as session:
            await session.execute(
                update(Article)
                .where(Article.id == article_id)
                .values(views=Article.views + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
    except Exception:
        logger.exception("View increment failed for article %s", article_id)
        return False
    return True


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def _get_live(db: AsyncSession, article_id: int) -> Article | None:
    q = select(Article).where(Article.id == article_id, Article.is_deleted.is_(False))
    return (await db.execute(q)).scalar_one_or_none()


async def create_article(
    db: AsyncSession,
    cache: CacheManager,
    data: ArticleCreate,
    author_id: int | None = None,
) -> dict:
    """Insert a new article and return its detail dict."""
    article = Article(
        title=data.title,
        summary=data.summary or derive_summary(data.content),
        content=data.content,
        tags=join_tags(data.tags),
        status=data.status,
        author_id=author_id,
    )
    db.add(article)
    await db.commit()
    await db.refresh(article)

    await cache.invalidate_articles()
    logger.info("Article %s created (status=%s)", article.id, article.status)
    return _article_detail_to_dict(article)


async def update_article(
    db: AsyncSession,
    cache: CacheManager,
    article_id: int,
    data: ArticleUpdate,
) -> dict | None:
    """
    Apply the fields present in *data* and return the updated detail dict.

    Omitted and null fields are left untouched.  A summary that was derived
    from the content follows new content; a hand-written one is kept.
    Returns None when the article does not exist or has been deleted.
    """
    article = await _get_live(db, article_id)
    if article is None:
        return None

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if "tags" in changes:
        changes["tags"] = join_tags(changes["tags"])
    if "content" in changes and "summary" not in changes:
        if not article.summary or article.summary == derive_summary(article.content):
            changes["summary"] = derive_summary(changes["content"])
    for field, value in changes.items():
        setattr(article, field, value)

    if changes:
        await db.commit()
        await db.refresh(article)
        await cache.invalidate_articles()
        logger.info("Article %s updated: %s", article_id, ", ".join(sorted(changes)))
    return _article_detail_to_dict(article)


async def delete_article(db: AsyncSession, cache: CacheManager, article_id: int) -> bool:
    """
    Soft-delete *article_id*; the row stays in the table.

    Returns False when the article does not exist or is already deleted.
    """
    article = await _get_live(db, article_id)
    if article is None:
        return False

    article.is_deleted = True
    await db.commit()
    await cache.invalidate_articles()
    logger.info("Article %s deleted", article_id)
    return True
