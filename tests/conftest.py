"""
Shared test fixtures.

Each test gets its own file-backed SQLite database (via aiosqlite) so runs
need no Docker / PostgreSQL / Redis, and concurrent sessions really use
separate connections.

SQLite specifics
----------------
* pysqlite's implicit transaction handling is switched off and every
  transaction starts with ``BEGIN IMMEDIATE``: SAVEPOINTs then behave as
  on PostgreSQL, and concurrent writers queue up on the database lock
  instead of failing, which is how row locks serialise them in production.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.infrastructure import models  # noqa: F401  (registers tables)
from src.infrastructure.database import Base
from tests.support import FakeGateway, Seeder, Services


# ── Test DB (SQLite file per test) ────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def services(session_factory, gateway) -> Services:
    return Services(session_factory, gateway)


# ── HTTP client ───────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient over the real app, wired to the test DB and fake gateway."""
    from src.api.app import create_app
    from src.api.dependencies import get_db, get_gateway
    from src.api.middleware import limiter

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_db] = _test_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
