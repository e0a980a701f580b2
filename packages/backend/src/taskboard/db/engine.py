"""Async SQLAlchemy engine and session factory.

Learn: The gateway never writes application data except reaction rows:
sessions back read-only membership lookups (every channel authorization)
and the reaction toggle. Postgres via asyncpg in production; any async
URL works (the tests use aiosqlite).

Membership checks run on every subscribe, so the Postgres pool is sized
from settings and pre-pinged; a stale connection would otherwise surface
as a refused subscription.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taskboard.config import settings


def _pool_options(url: str) -> dict:
    # SQLite (tests, local dev) uses its own pool class without sizing knobs
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_pool_options(settings.database_url),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """FastAPI dependency: one session per request.

    Anything left uncommitted when the request fails is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
