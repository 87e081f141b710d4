import os
from typing import AsyncGenerator

# Test settings must be in place before anything reads get_settings()
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./lockerdrop-test.db"
os.environ["ALLOCATION_BACKOFF_SECONDS"] = "0"
os.environ["HARBOR_CLIENT_ID"] = "test-client"
os.environ["HARBOR_CLIENT_SECRET"] = "test-secret"
os.environ["HARBOR_WEBHOOK_SECRET"] = ""
os.environ["SHOPIFY_API_SECRET"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["SMTP_USERNAME"] = ""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.common.config import get_settings
from libs.common.rate_limit import limiter
from libs.db.base import Base
from libs.db.session import get_async_db
from services.lockers_service import dependencies
from services.lockers_service.app.main import app
from services.lockers_service.services.notifications import NotificationDispatcher
from services.lockers_service.services.rate_quote import ShopEligibilityCache
from tests.fakes import FakeHarbor, Outbox, make_location

# Clear cached settings to reload with the test env vars
get_settings.cache_clear()
settings = get_settings()

# Checkout lookups are rate limited per shop; tests hammer one shop
limiter.enabled = False


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A fresh SQLite database per test.

    pysqlite's own transaction handling is switched off and every transaction
    starts with BEGIN IMMEDIATE, so concurrent sessions serialize on the
    write lock the way row locks serialize them on PostgreSQL.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'lockerdrop.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def harbor():
    return FakeHarbor(locations=[make_location()])


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def dispatcher(outbox):
    return NotificationDispatcher(
        sms_sender=outbox.send_sms, email_sender=outbox.send_email
    )


@pytest.fixture
def eligibility():
    return ShopEligibilityCache(ttl_seconds=60)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    session_factory, harbor, dispatcher, eligibility
) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient bound to the app with the database, provider,
    notification and cache dependencies overridden.
    """

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_db
    app.dependency_overrides[dependencies.get_harbor_client] = lambda: harbor
    app.dependency_overrides[dependencies.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[dependencies.get_eligibility_cache] = lambda: eligibility

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


