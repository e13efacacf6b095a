from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ssrblog.middleware import install_query_counter


class Base(DeclarativeBase):
    pass


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create the process-wide engine and register the SQL query counter."""
    engine = create_async_engine(url, echo=echo, pool_pre_ping=True)
    install_query_counter(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request):
    """
    Yield a session from the factory created by the application lifespan.

    Writes commit inside the service layer; anything still pending when the
    handler returns is committed here, and any error rolls back.
    """
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
