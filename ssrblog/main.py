import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from ssrblog.cache import CacheManager
from ssrblog.config import settings
from ssrblog.database import build_engine, build_session_factory
from ssrblog.middleware import AccessLogMiddleware
from ssrblog.rate_limit import api_rate_limit
from ssrblog.routers import articles, metrics, pages

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: one engine, one session factory and one cache client per process
    engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.cache = CacheManager(settings.REDIS_URL, settings.CACHE_RETRY_INTERVAL)
    await app.state.cache.connect()  # never raises; the app runs without Redis
    logger.info("Started (%s)", settings.APP_ENV)
    yield
    # Shutdown
    await app.state.cache.disconnect()
    await engine.dispose()


configure_logging()

app = FastAPI(
    title="SSR Blog",
    description="Server-rendered blog with a Redis read-through cache and degraded rendering",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(GZipMiddleware, minimum_size=1024)
app.add_middleware(AccessLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health(request: Request):
    cache: CacheManager = request.app.state.cache
    return {"status": "healthy", "version": "1.0.0", "cache": "up" if cache.available else "down"}


# Routers; pages last because it ends with a catch-all redirect
app.include_router(articles.router, dependencies=[Depends(api_rate_limit)])
app.include_router(metrics.router, dependencies=[Depends(api_rate_limit)])
app.include_router(pages.router)
