"""Database session configuration with connection pooling."""

from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings


def _engine_options(url: str) -> dict:
    """Pool settings only apply to server databases; SQLite uses its own pools."""
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,  # Number of connections to maintain
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,  # Additional connections allowed beyond pool_size
        "pool_timeout": 30,  # Seconds to wait before giving up on getting a connection
        "pool_recycle": 3600,  # Recycle connections after 1 hour (prevents stale connections)
    }


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # Decision rows rely on ON DELETE CASCADE from their alert
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, enabling foreign keys on SQLite."""
    options = {"echo": settings.DEBUG, "pool_pre_ping": True, **_engine_options(url), **kwargs}
    new_engine = create_async_engine(url, **options)
    if make_url(url).get_backend_name() == "sqlite":
        event.listen(new_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return new_engine


engine = create_engine(settings.DATABASE_URL)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_models(target: AsyncEngine | None = None) -> None:
    """Create the alerts and decisions tables if they do not exist."""
    from app import models  # noqa: F401
    from app.db.base import Base

    target = target or engine
    url = target.url
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
