import logging
import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("ssrblog.access")

# ---------------------------------------------------------------------------
# Per-request context variable
# ---------------------------------------------------------------------------

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)


def install_query_counter(engine) -> None:
    """
    Register a ``before_cursor_execute`` listener on *engine* that bumps the
    per-request ``query_count_var`` for every SQL statement.

    Must be called once per engine (``build_engine`` does it for the
    application engine, ``conftest.py`` for the test engine).
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


# ---------------------------------------------------------------------------
# Middleware (pure ASGI, so ContextVar mutations stay visible)
# ---------------------------------------------------------------------------

class AccessLogMiddleware:
    """
    Pure ASGI middleware that writes one access-log line per HTTP request
    and adds two diagnostic response headers:

    - ``X-Response-Time-Ms``: wall-clock time until the response started.
    - ``X-Query-Count``: SQL statements executed while handling the request.

    Degraded server renders (``X-Degraded``) and the cache origin
    (``X-Cache``) are echoed into the log line so they can be monitored
    without parsing bodies.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        start = time.perf_counter()
        status_code = 500
        extra: list[str] = []

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                for name, value in headers:
                    if name.lower() in (b"x-cache", b"x-degraded"):
                        extra.append(f"{name.decode().lower()}={value.decode()}")
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-query-count", str(query_count_var.get()).encode()))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(
                "%s %s %d %.2fms queries=%d %s",
                scope["method"],
                scope["path"],
                status_code,
                duration_ms,
                query_count_var.get(),
                " ".join(extra),
            )
