"""
Test infrastructure for the SSR blog.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI.
- StaticPool forces all sessions to share one in-memory connection, which
  is required because an in-memory SQLite database is connection-scoped.
- ASGITransport does not run the lifespan, so the fixtures put the test
  session factory and a CacheManager on ``app.state`` themselves.
- Redis is replaced by ``InMemoryRedis``, a small double that speaks the
  part of the ``redis.asyncio`` API the CacheManager uses.  Setting
  ``fail = True`` makes every call raise, which simulates an outage.
- All tables are created fresh before each test and dropped after.
"""
import fnmatch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ssrblog.cache import CacheManager
from ssrblog.config import settings
from ssrblog.database import Base
from ssrblog.main import app
from ssrblog.middleware import install_query_counter

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Redis double
# ---------------------------------------------------------------------------

class InMemoryRedis:
    """Dict-backed stand-in for ``redis.asyncio.Redis`` (decode_responses=True)."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis is down")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value, ex: int | None = None, nx: bool = False) -> bool | None:
        self._check()
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        self.ttls[key] = ex
        return True

    async def incr(self, key: str) -> int:
        self._check()
        value = int(self.store.get(key, "0")) + 1
        self.store[key] = str(value)
        self.ttls.setdefault(key, None)
        return value

    async def ttl(self, key: str) -> int:
        self._check()
        if key not in self.store:
            return -2
        ttl = self.ttls.get(key)
        return -1 if ttl is None else ttl

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    async with async_session_test() as session:
        yield session


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest_asyncio.fixture
async def cache(fake_redis: InMemoryRedis) -> CacheManager:
    """A CacheManager connected to the in-memory Redis double."""
    manager = CacheManager("redis://test", retry_interval=0)
    await manager.attach(fake_redis)
    return manager


@pytest.fixture
def offline_cache() -> CacheManager:
    """A CacheManager that was never connected (Redis not configured/reachable)."""
    return CacheManager("redis://unreachable")


@pytest_asyncio.fixture
async def async_client(cache: CacheManager) -> AsyncClient:
    """httpx.AsyncClient wired to the app, with test DB and cache on app.state."""
    app.state.session_factory = async_session_test
    app.state.cache = cache
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def make_token(role: str = "admin", user_id: int = 1, username: str = "editor") -> str:
    return jwt.encode(
        {"id": user_id, "username": username, "role": role},
        settings.SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def reader_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(role='user', user_id=2, username='reader')}"}
