"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

from cryptography.fernet import Fernet

# Settings are read at import time, so the environment is set first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["MICROSOFT_CLIENT_ID"] = "ms-client-id"
os.environ["MICROSOFT_CLIENT_SECRET"] = "ms-client-secret"
os.environ["GOOGLE_CLIENT_ID"] = ""
os.environ["ENABLE_SCHEDULER"] = "false"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from casenotify.core.auth import create_access_token
from casenotify.core.deps import get_client_factory, get_pending_authorizations
from casenotify.db.session import get_db
from casenotify.main import create_app
from casenotify.models.base import Base
from casenotify.services.fallback_cache import BoundedTTLCache
from casenotify.services.pending_authorizations import PendingAuthorizationStore
from casenotify.services.recipient_resolver import DirectoryMember, InMemoryDirectory

from tests.factories import FakeProviderClient, FakeRedis


# WHY: SQLite keeps tests free of an external database. StaticPool keeps
# one connection so the in-memory database survives across sessions.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh database per test."""
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session for one test, rolled back afterwards.

    Yields:
        AsyncSession: Database session for the test
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fallback_cache() -> BoundedTTLCache:
    return BoundedTTLCache(max_size=32, ttl_seconds=60)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def pending_authorizations(fake_redis: FakeRedis) -> PendingAuthorizationStore:
    """Pending OAuth authorizations on the in-memory Redis."""
    return PendingAuthorizationStore(fake_redis)


@pytest.fixture
def provider_client() -> FakeProviderClient:
    """Fake mail-provider client; pass ``provider_client.factory`` as client_factory."""
    return FakeProviderClient()


@pytest.fixture
def directory() -> InMemoryDirectory:
    """Staff directory for Singapore with two operations members and an admin."""
    return InMemoryDirectory(
        [
            DirectoryMember(
                id="u-ops1",
                email="ops1@hosp.sg",
                name="Ops One",
                role="Admin",
                countries=("Singapore",),
                departments=("Orthopedics",),
            ),
            DirectoryMember(
                id="u-ops2",
                email="ops2@hosp.sg",
                name="Ops Two",
                role="operations",
                countries=("Singapore",),
                departments=("Cardiology",),
            ),
            DirectoryMember(
                id="u-ops3",
                email="ops3@hosp.sg",
                name="Ops Three",
                role="operations",
                countries=("Singapore",),
                departments=("Orthopedics",),
            ),
            DirectoryMember(
                id="u-my",
                email="ops@hosp.my",
                name="Ops Malaysia",
                role="operations",
                countries=("Malaysia",),
                departments=("Orthopedics",),
            ),
        ]
    )


@pytest.fixture
def admin_token() -> str:
    return create_access_token({"sub": "admin-1", "role": "admin"})


@pytest.fixture
def auth_headers(admin_token: str) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    provider_client: FakeProviderClient,
    directory: InMemoryDirectory,
    pending_authorizations: PendingAuthorizationStore,
) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client against a fresh app wired to the test session, the fake
    provider client and the in-memory Redis.
    """
    app = create_app(directory=directory)

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client_factory] = lambda: provider_client.factory
    app.dependency_overrides[get_pending_authorizations] = lambda: pending_authorizations

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
