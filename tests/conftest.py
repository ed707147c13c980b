"""
Pytest configuration and fixtures
"""

from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from catalog_sync.activity import ActivityLogger
from catalog_sync.clients import MarketplaceClient, SupplierClient
from catalog_sync.executor import RequestExecutor, RetryPolicy
from catalog_sync.reconciler import Reconciler, ReconcilerOptions
from catalog_sync.store import ReconciledProductStore
from models.base import Base
from tests.fakes import ALLOWED_REGIONS, MARKETPLACE_URL, SELLER_ID, SUPPLIER_URL, FakeRemote


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite engine with all tables created"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'catalog_sync_test.db'}",
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory) -> ReconciledProductStore:
    return ReconciledProductStore(session_factory)


@pytest.fixture
def activity(session_factory) -> ActivityLogger:
    return ActivityLogger(session_factory, job_id=None)


# ============================================================================
# Remote services
# ============================================================================

@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def reconciler_options() -> ReconcilerOptions:
    return ReconcilerOptions(
        allowed_regions=ALLOWED_REGIONS,
        category_id="MLC159270",
        currency_id="CLP",
    )


@pytest_asyncio.fixture(scope="function")
async def http_client(remote):
    async with httpx.AsyncClient(transport=remote.transport) as client:
        yield client


@pytest.fixture
def executor(http_client) -> RequestExecutor:
    return RequestExecutor(http_client, RetryPolicy(max_attempts=1), service_name="test")


@pytest.fixture
def marketplace(executor) -> MarketplaceClient:
    return MarketplaceClient(executor, MARKETPLACE_URL, "test-token", SELLER_ID)


@pytest.fixture
def supplier(executor) -> SupplierClient:
    return SupplierClient(executor, SUPPLIER_URL, "supplier-key")


@pytest.fixture
def rate_provider():
    async def provide() -> float:
        return 1000.0
    return provide


@pytest.fixture
def reconciler(supplier, marketplace, store, rate_provider, reconciler_options) -> Reconciler:
    return Reconciler(supplier, marketplace, store, rate_provider, reconciler_options)
