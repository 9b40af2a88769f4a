"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

# Must be set before the application settings are imported
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.pop("RESEND_API_KEY", None)

from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from proposal_engine.db.session import get_db
from proposal_engine.main import app
from proposal_engine.models import Base
from proposal_engine.services.email import MockEmailProvider
from proposal_engine.services.workflow_engine import ProposalLocks, WorkflowEngine
from tests.factories import FIXED_NOW


# Test database URL
# WHY: SQLite keeps tests free of external services. StaticPool makes every
# session of a test share the one in-memory database.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FixedClock:
    """
    Injectable clock for deterministic timeout and expiry tests.

    Example:
        clock.advance(hours=49)
    """

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
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
    Create a test database session.

    WHY: Same session options as production (expire_on_commit=False,
    autoflush=False) so DAO flush behaviour is exercised as deployed.
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def engine_factory(db_session, clock):
    """
    Build WorkflowEngine instances over the test session.

    WHY: Tests override policy flags per case without touching settings.
    """

    def build(**overrides) -> WorkflowEngine:
        overrides.setdefault("clock", clock)
        overrides.setdefault("locks", ProposalLocks())
        return WorkflowEngine(db_session, **overrides)

    return build


@pytest.fixture
def workflow_engine(engine_factory) -> WorkflowEngine:
    return engine_factory()


@pytest.fixture(autouse=True)
def clear_mock_emails():
    """Reset the mock provider's outbox around every test."""
    MockEmailProvider.clear_sent_emails()
    yield
    MockEmailProvider.clear_sent_emails()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient over ASGITransport exercises the full FastAPI stack
    (middleware, dependencies, exception handlers) without a server.
    """

    async def override_get_db():
        """Override database dependency with the test session."""
        yield db_session
        await db_session.commit()

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def org_headers() -> dict:
    """Tenant header used by API tests."""
    return {"X-Org-ID": "1"}
