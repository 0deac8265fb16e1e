"""Pytest configuration."""

import os

# Ensure test environment (before anything reads get_settings)
os.environ.setdefault("SLOTLINK_FINGERPRINT_SECRET", "test-secret-key-for-testing")
os.environ.setdefault("SLOTLINK_ADMIN_SETUP_KEY", "test-setup-key")
os.environ.setdefault("SLOTLINK_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SLOTLINK_DEBUG", "true")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.engine import AllocationEngine
from app.main import app
from app.middleware.auth import APIKey, generate_api_key
from app.middleware.rate_limit import reset_rate_limits
from app.models.database import get_db, get_session_maker
from app.models.tables import Base, Organization
from app.stores.memory import MemoryAnalyticsRecorder, MemoryCandidateStore


@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


# ---------------------------------------------------------------------------
# In-memory engine
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    return MemoryCandidateStore()


@pytest.fixture
def recorder():
    return MemoryAnalyticsRecorder()


@pytest.fixture
def engine(store, recorder):
    return AllocationEngine(store=store, recorder=recorder, timeout_seconds=0.5)


# ---------------------------------------------------------------------------
# SQLite-backed database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def sessions():
    db_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    await db_engine.dispose()


@pytest_asyncio.fixture
async def organization(sessions):
    """An org with one secret key. Returns (org_id, raw_key)."""
    raw_key, key_hash = generate_api_key()
    async with sessions() as session:
        org = Organization(name="Acme Groups", slug="acme-groups")
        session.add(org)
        await session.flush()
        session.add(APIKey(organization_id=org.id, key_hash=key_hash, key_prefix=raw_key[:12], name="test"))
        await session.commit()
        return org.id, raw_key


@pytest_asyncio.fixture
async def db_client(sessions):
    """HTTP client wired to the SQLite database (real SQL store behind /resolve)."""
    async def override_get_db():
        async with sessions() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_maker] = lambda: sessions

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin(db_client, organization):
    """(client, headers) for the admin API."""
    _, raw_key = organization
    return db_client, {"X-API-Key": raw_key}
