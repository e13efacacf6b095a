"""
Server-rendered pages.

These handlers never answer 500 for a data failure: whatever goes wrong
while fetching is turned into a degraded render by ``fetch_or_degrade``.
Each fetch opens its own session inside that boundary, so even a failure
to reach the database is rendered as a degraded page.
Only a structurally invalid article id (400) and a hidden or missing
article (404) produce non-200 pages.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ssrblog.auth import Principal, get_optional_principal
from ssrblog.config import settings
from ssrblog.dependencies import ListingParams, get_session_factory, parse_article_id
from ssrblog.rendering import PageResult, fetch_or_degrade, render_page
from ssrblog.services import article_service, comment_service

router = APIRouter(tags=["pages"], include_in_schema=False)


@router.get("/")
async def home_page(
    request: Request,
    params: ListingParams = Depends(),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    sort = article_service.coerce_sort(params.sort)
    tag = (params.tag or "").strip()

    async def fetch() -> dict:
        async with session_factory() as db:
            listing = await article_service.list_published(
                db, params.page, settings.HOME_PAGE_SIZE, tag, sort
            )
            tags = await article_service.tag_cloud(db)
        return {
            "articles": listing["articles"],
            "pagination": {
                "page": listing["page"],
                "pageSize": listing["pageSize"],
                "total": listing["total"],
            },
            "tagCloud": tags,
            "filterTag": tag,
            "sort": sort,
        }

    fallback = {
        "articles": [],
        "pagination": {"page": 1, "pageSize": settings.HOME_PAGE_SIZE, "total": 0},
        "tagCloud": [],
        "filterTag": tag,
        "sort": sort,
    }
    result = await fetch_or_degrade("home", fetch, fallback)
    return render_page(request, result)


@router.get("/article/{article_id}")
async def article_page(
    request: Request,
    background_tasks: BackgroundTasks,
    article_id: int = Depends(parse_article_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    async def fetch() -> dict:
        async with session_factory() as db:
            article = await article_service.get_by_id(db, article_id, include_draft=False)
            if article is None:
                return {"article": None, "comments": [], "articleId": article_id}
            comments = await comment_service.list_comments(db, article_id)
        return {"article": article, "comments": comments, "articleId": article_id}

    fallback = {"article": None, "comments": [], "articleId": article_id}
    result = await fetch_or_degrade("detail", fetch, fallback)

    if not result.degraded and result.data["article"] is None:
        return render_page(
            request,
            PageResult(page="not_found", data={"articleId": article_id}, status_code=404),
        )
    if not result.degraded:
        background_tasks.add_task(article_service.increment_views, session_factory, article_id)
    return render_page(request, result)


@router.get("/admin")
async def admin_page(
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
):
    # The admin console loads everything client-side; only the role is embedded.
    result = PageResult(
        page="admin",
        data={"isAdmin": principal is not None and principal.is_admin},
    )
    return render_page(request, result)


@router.get("/{path:path}")
async def fallback_redirect(path: str):
    # Files (styles.css, client.bundle.js, ...) come from the static server
    # in front of the app; a miss must not turn into the home page.
    if "." in path.rsplit("/", 1)[-1]:
        raise HTTPException(status_code=404, detail="Not found")
    return RedirectResponse(url="/", status_code=302)
