"""
Pytest fixtures for stores, services and the HTTP client.

Core tests run against the in-process store, which interleaves tasks at
every store call the way network round trips would. SQL adapter tests use a
throwaway SQLite file per test. Redis is off for the whole suite.
"""

import os

os.environ["REDIS_ENABLED"] = "false"
os.environ["STORE_BACKEND"] = "memory"
os.environ["ENVIRONMENT"] = "test"

from typing import AsyncGenerator

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine

from raffle.main import app
from raffle.core.config import get_settings
from raffle.db.base import Base
from raffle.db.session import get_session_factory
from raffle.infrastructure.memory_store import InMemoryStoreClient
from raffle.infrastructure.sql_store import SqlStoreClient
from raffle.services.strategy_factory import Services, build_services, get_services

EVENT_ID = "event-1"
VENDOR = "vendor@example.com"
OTHER_VENDOR = "other@example.com"


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[InMemoryStoreClient, None]:
    """In-process store with both sold-count procedures installed."""
    client = InMemoryStoreClient()
    yield client
    await client.close()


@pytest_asyncio.fixture
async def store_without_procedures() -> AsyncGenerator[InMemoryStoreClient, None]:
    """In-process store where every procedure call reports 'does not exist'."""
    client = InMemoryStoreClient(procedures=())
    yield client
    await client.close()


@pytest_asyncio.fixture
async def services(store: InMemoryStoreClient) -> Services:
    return build_services(store, get_settings())


@pytest_asyncio.fixture
async def fallback_services(store_without_procedures: InMemoryStoreClient) -> Services:
    return build_services(store_without_procedures, get_settings())


@pytest_asyncio.fixture
async def sql_store(tmp_path) -> AsyncGenerator[SqlStoreClient, None]:
    """SQL adapter over a fresh SQLite database file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'raffle.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    client = SqlStoreClient(get_session_factory(engine))
    yield client

    await client.close()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_services(sql_store: SqlStoreClient) -> Services:
    return build_services(sql_store, get_settings())


@pytest_asyncio.fixture
async def limit_07(services: Services):
    """Number "07" capped at 2 units."""
    return await services.limits.upsert(EVENT_ID, "07", 2)


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose routes use the test service container."""

    async def override_get_services():
        return services

    app.dependency_overrides[get_services] = override_get_services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def vendor_headers() -> dict:
    return {"X-Vendor-Email": VENDOR}
