"""
Test Configuration — Fixtures for async DB, doubles, and test client.

Each test gets its own SQLite file so code under test can commit and
roll back freely, and so worker tasks can open their own engine on the
same database.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_db, get_storage, get_submitter
from api.main import app
from core.carriers import CarrierDescriptor
from core.config import Settings
from db.session import Base
from integrations.storage import LocalInvoiceStorage
from tests.doubles import FakeRedis, RecordingNotifier, RecordingSubmitter
from workers.runtime import build_reconciliation_store

FEDEX = CarrierDescriptor(code="fedex", id=1, terminal_phrases=("delivered", "returned to sender"))
USPS = CarrierDescriptor(code="usps", id=3, terminal_phrases=("delivered", "delivered, in/at mailbox"))
SOFT_ERROR_CODES = ("-2147219283", "-2147219284")


# ─── Database ───────────────────────────────────────────────────────────────


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'carriersync.db'}"


@pytest.fixture
async def test_engine(db_url):
    engine = create_async_engine(db_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


# ─── Collaborators ──────────────────────────────────────────────────────────


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def submitter():
    return RecordingSubmitter()


@pytest.fixture
def storage(tmp_path):
    return LocalInvoiceStorage(tmp_path / "storage")


@pytest.fixture
def store(test_db, fake_redis, notifier):
    return build_reconciliation_store(test_db, fake_redis, notifier, uom_ttl=86400)


@pytest.fixture
def fedex():
    return FEDEX


@pytest.fixture
def usps():
    return USPS


@pytest.fixture
def test_settings(db_url, tmp_path):
    return Settings(
        app_env="test",
        database_url=db_url,
        storage_root=str(tmp_path / "storage"),
        unit_max_retries=0,
        tracking_provider_api_key="test-key",
    )


@pytest.fixture
def patch_runtime(monkeypatch, test_settings, fake_redis):
    """Point worker tasks at the test database and fake Redis."""
    monkeypatch.setattr("core.config.get_settings", lambda: test_settings)
    monkeypatch.setattr("workers.runtime.open_redis", lambda url: fake_redis)
    return test_settings


@pytest.fixture
async def team(test_db):
    from db.models import Team

    row = Team(id=uuid.uuid4(), name="Ops")
    test_db.add(row)
    await test_db.commit()
    return row


# ─── API client ─────────────────────────────────────────────────────────────


@pytest.fixture
async def client(test_db, storage, submitter):
    """Async test client with DB, storage and submitter overridden."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_submitter] = lambda: submitter

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
