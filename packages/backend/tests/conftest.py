"""Test fixtures — in-memory transport, in-memory membership, SQLite sessions.

Learn: Testing pattern for the gateway:

1. The transport is an InMemoryTransport installed as the process-wide
   one, so every publish lands in ``transport.published``.
2. Membership comes from an InMemoryMembershipDirectory swapped in via
   FastAPI's dependency_overrides.
3. SQL-backed pieces (membership queries, reaction toggles) run against a
   throwaway aiosqlite database per test, created from the ORM metadata.

No Redis or Postgres is needed to run the suite.
"""

import os

# Must be set before taskboard.config is imported
os.environ["TASKBOARD_TRANSPORT"] = "memory"
os.environ["TASKBOARD_DATABASE_URL"] = "sqlite+aiosqlite://"

import sys

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from taskboard.auth.jwt import create_access_token
from taskboard.config import settings
from taskboard.db.models import Base
from taskboard.main import app
from taskboard.realtime.transport import InMemoryTransport, set_transport
from taskboard.services.membership import InMemoryMembershipDirectory, get_directory

# In-process app logs must not mix into CLI stdout captured by CliRunner
structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))


@pytest.fixture()
def transport():
    """A fresh in-memory transport, installed as the global one."""
    t = InMemoryTransport()
    set_transport(t)
    yield t
    set_transport(None)


@pytest.fixture()
def directory():
    """Empty membership directory; tests add projects and participants."""
    d = InMemoryMembershipDirectory()
    app.dependency_overrides[get_directory] = lambda: d
    yield d
    app.dependency_overrides.pop(get_directory, None)


@pytest_asyncio.fixture()
async def client(transport, directory):
    """HTTP client over ASGI with the in-memory transport and directory."""
    asgi = ASGITransport(app=app)
    async with AsyncClient(transport=asgi, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    """Build Bearer headers for a user id."""
    def _make(user_id: int) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _make


@pytest.fixture()
def api_key_headers():
    return {"X-Api-Key": settings.broadcast_api_key}


@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    """A fresh SQLite database with the gateway's tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskboard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
