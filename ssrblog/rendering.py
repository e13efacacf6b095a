"""
Server-side rendering with a degraded fallback.

Each page request goes through ``fetch_or_degrade``:

    Fetching --ok--> Ready     (fetched data, degraded=false)
             --err-> Degraded  (placeholder data, degraded=true)

Both end states render the same template exactly once.  A degraded page
is still a 200; it carries ``X-Degraded: 1`` and ``degraded: true`` in the
bootstrap data, which tells the browser bundle to repeat the data fetches
itself.  There is no retry on the server.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from fastapi import Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from markupsafe import Markup

from ssrblog.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

NO_CACHE = "no-cache"
DEGRADED_HEADER = "X-Degraded"


@dataclass
class PageResult:
    page: str
    data: dict = field(default_factory=dict)
    degraded: bool = False
    status_code: int = 200

    @property
    def initial_data(self) -> dict:
        return {"page": self.page, **self.data, "degraded": self.degraded}


def serialize_bootstrap(data: Any) -> str:
    """JSON for an inline ``<script>``; ``<`` is escaped so ``</script>`` cannot end it."""
    return json.dumps(data, ensure_ascii=False, default=str).replace("<", "\\u003c")


async def fetch_or_degrade(
    page: str,
    fetch: Callable[[], Awaitable[dict]],
    fallback: dict,
    timeout: float | None = None,
) -> PageResult:
    """
    Run *fetch* with a time limit and map the outcome to a page state.

    Any exception, including the timeout, yields the degraded state with
    *fallback* as data.  The error is logged, never raised.
    """
    timeout = settings.STORE_TIMEOUT if timeout is None else timeout
    try:
        data = await asyncio.wait_for(fetch(), timeout=timeout)
    except Exception:
        logger.exception("SSR fetch for page %r failed, rendering degraded page", page)
        return PageResult(page=page, data=dict(fallback), degraded=True)
    return PageResult(page=page, data=data)


def _title(result: PageResult) -> str:
    article = result.data.get("article")
    if result.page == "detail" and article:
        return f"{article['title']} - {settings.SITE_TITLE}"
    if result.page == "not_found":
        return f"Not found - {settings.SITE_TITLE}"
    return settings.SITE_TITLE


def render_page(request: Request, result: PageResult) -> HTMLResponse:
    """Render *result* into a full HTML document with the response headers set."""
    headers = {"Cache-Control": NO_CACHE}
    if result.degraded:
        headers[DEGRADED_HEADER] = "1"
    initial_data = result.initial_data
    return templates.TemplateResponse(
        request,
        "page.html",
        {
            "site_title": settings.SITE_TITLE,
            "title": _title(result),
            "data": initial_data,
            "bootstrap": Markup(serialize_bootstrap(initial_data)),
        },
        status_code=result.status_code,
        headers=headers,
    )
