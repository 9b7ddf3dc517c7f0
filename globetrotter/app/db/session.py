"""
Database engine and sessions.

PostgreSQL (asyncpg) in deployments; a `sqlite+aiosqlite` URL works for
local runs, in which case the pool sizing options are not applied.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from globetrotter.app.core.config import settings


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    **_engine_options(settings.database_url),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def create_tables() -> None:
    """Create missing tables for every model registered on `Base`."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """
    Request-scoped session.

    Services commit their own units of work; anything left uncommitted when
    a storage error escapes is rolled back here.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except SQLAlchemyError:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """
    Session factory for long-lived connections (WebSockets).

    A socket outlives any single unit of work, so it opens a fresh session
    per frame instead of holding one for its whole lifetime.
    """
    return AsyncSessionLocal
