"""Integration test fixtures with a real database.

Each test gets a fresh in-memory SQLite database through aiosqlite. A
StaticPool keeps the single connection alive for the engine's lifetime
so every session sees the same schema and rows.
"""

from collections.abc import AsyncGenerator
from typing import Callable
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from commission_engine.api.app import create_app
from commission_engine.api.dependencies import ServiceContainer, build_sql_services
from commission_engine.config import get_settings
from commission_engine.database import create_all, make_session_factory
from commission_engine.stores import SqlCommissionStore, SqlComplianceStore

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create the test database engine and schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(test_engine)


@pytest.fixture
def sql_commission_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> SqlCommissionStore:
    return SqlCommissionStore(session_factory)


@pytest.fixture
def sql_compliance_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> SqlComplianceStore:
    return SqlComplianceStore(session_factory)


@pytest.fixture
def services(session_factory: async_sessionmaker[AsyncSession]) -> ServiceContainer:
    """SQL-backed services wired the way the application wires them."""
    return build_sql_services(session_factory, get_settings())


@pytest_asyncio.fixture
async def client(services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app(services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def headers() -> Callable[..., dict[str, str]]:
    """Factory for actor identity headers."""

    def _make(role: str, actor_id: UUID | None = None) -> dict[str, str]:
        return {"X-Actor-Id": str(actor_id or uuid4()), "X-Actor-Role": role}

    return _make
