import hashlib
import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from ssrblog.auth import Principal, get_optional_principal, require_admin
from ssrblog.cache import CacheManager, CacheOrigin
from ssrblog.database import get_db
from ssrblog.dependencies import ListingParams, get_cache, parse_article_id
from ssrblog.schemas import (
    ArticleCreate,
    ArticleListResponse,
    ArticleUpdate,
    CommentCreate,
    CommentListResponse,
    TagCloudResponse,
)
from ssrblog.services import article_cache, article_service, comment_service

router = APIRouter(prefix="/api/articles", tags=["articles"])

CACHE_HEADER = "X-Cache"


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Article not found")


def _matches(if_none_match: str | None, etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [c.strip() for c in if_none_match.split(",")]
    # If-None-Match uses the weak comparison
    return "*" in candidates or etag in [c.removeprefix("W/") for c in candidates]


def conditional_json(request: Request, payload, origin: CacheOrigin) -> Response:
    """
    JSON response for a cached read with a strong ``ETag`` over its body.

    A matching ``If-None-Match`` yields an empty 304, so clients that
    revalidate (``Cache-Control: no-cache``) skip the download.
    """
    body = json.dumps(
        jsonable_encoder(payload), ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")
    etag = f'"{hashlib.sha1(body).hexdigest()}"'
    headers = {CACHE_HEADER: origin.value, "Cache-Control": "no-cache", "ETag": etag}
    if _matches(request.headers.get("if-none-match"), etag):
        return Response(status_code=304, headers=headers)
    return Response(content=body, media_type="application/json", headers=headers)


@router.get("", response_model=ArticleListResponse)
async def list_articles(
    request: Request,
    params: ListingParams = Depends(),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    data, origin = await article_cache.cached_list_published(
        db, cache, params.page, params.page_size, params.tag, params.sort
    )
    return conditional_json(request, data, origin)


@router.get("/admin", response_model=ArticleListResponse)
async def list_articles_admin(
    page: str | None = Query(None),
    page_size: str | None = Query(None, alias="pageSize"),
    status: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    return await article_service.list_admin(db, page, page_size, status)


@router.get("/tags", response_model=TagCloudResponse)
async def tag_cloud(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    tags, origin = await article_cache.cached_tag_cloud(db, cache)
    return conditional_json(request, {"tags": tags}, origin)


@router.get("/{article_id}")
async def get_article(
    request: Request,
    article_id: int = Depends(parse_article_id),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    principal: Principal | None = Depends(get_optional_principal),
):
    include_draft = principal is not None and principal.is_admin
    article, origin = await article_cache.cached_article(db, cache, article_id, include_draft)
    if article is None:
        raise _not_found()
    return conditional_json(request, {"article": article}, origin)


@router.get("/{article_id}/comments", response_model=CommentListResponse)
async def list_comments(
    article_id: int = Depends(parse_article_id),
    db: AsyncSession = Depends(get_db),
):
    return {"comments": await comment_service.list_comments(db, article_id)}


@router.post("/{article_id}/comments", status_code=201)
async def add_comment(
    data: CommentCreate,
    article_id: int = Depends(parse_article_id),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.add_comment(db, article_id, data)
    if comment is None:
        raise _not_found()
    return {"comment": comment}


@router.post("", status_code=201)
async def create_article(
    data: ArticleCreate,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    principal: Principal = Depends(require_admin),
):
    article = await article_service.create_article(db, cache, data, author_id=principal.id)
    return {"id": article["id"], "article": article}


@router.put("/{article_id}")
async def update_article(
    data: ArticleUpdate,
    article_id: int = Depends(parse_article_id),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    _: Principal = Depends(require_admin),
):
    article = await article_service.update_article(db, cache, article_id, data)
    if article is None:
        raise _not_found()
    return {"ok": True, "article": article}


@router.delete("/{article_id}")
async def delete_article(
    article_id: int = Depends(parse_article_id),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    _: Principal = Depends(require_admin),
):
    if not await article_service.delete_article(db, cache, article_id):
        raise _not_found()
    return {"ok": True}
