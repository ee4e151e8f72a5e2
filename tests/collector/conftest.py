"""Pytest fixtures for SiteBeacon collector tests."""

import os
from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool

# Require TEST_DATABASE_URL for integration tests
_test_db_url = os.environ.get("TEST_DATABASE_URL")
if not _test_db_url:
    # Fall back to DATABASE_URL for simpler setups
    _test_db_url = os.environ.get("DATABASE_URL")
if _test_db_url:
    os.environ["DATABASE_URL"] = _test_db_url

ADMIN_KEY = "test-admin-key"
os.environ["ADMIN_KEY"] = ADMIN_KEY

from sitebeacon.collector.database import ensure_schema  # noqa: E402
from sitebeacon.collector.geo import CountryResolver  # noqa: E402
from sitebeacon.collector.main import app  # noqa: E402


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests when no database is configured."""
    if _test_db_url:
        return
    skip = pytest.mark.skip(reason="TEST_DATABASE_URL not set")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


async def _clean(conn: AsyncConnection) -> None:
    await ensure_schema(conn)
    await conn.execute("DELETE FROM visits")
    await conn.execute("DELETE FROM rate_limits")
    await conn.commit()


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio backend for anyio."""
    return "asyncio"


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Headers carrying the admin secret."""
    return {"x-admin-key": ADMIN_KEY}


@pytest_asyncio.fixture
async def pool() -> AsyncIterator[AsyncConnectionPool[Any]]:
    """Create a connection pool for tests."""
    from sitebeacon.collector.config import settings

    pool = AsyncConnectionPool(settings.database_url, open=False, min_size=1, max_size=5)
    await pool.open(wait=True, timeout=10)

    yield pool

    await pool.close()


@pytest_asyncio.fixture
async def conn(pool: AsyncConnectionPool[Any]) -> AsyncIterator[AsyncConnection]:
    """Get a connection from the pool and clean up test data."""
    async with pool.connection() as conn:
        # Clean up before test
        await _clean(conn)

        yield conn


@pytest_asyncio.fixture
async def client(pool: AsyncConnectionPool[Any]) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client backed by the test database."""
    app.state.pool = pool
    app.state.geoip = CountryResolver()

    # Clean up before tests
    async with pool.connection() as conn:
        await _clean(conn)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest_asyncio.fixture
async def offline_client() -> AsyncIterator[AsyncClient]:
    """HTTP client for paths that must answer before touching storage."""
    app.state.pool = None
    app.state.geoip = CountryResolver()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def sample_visit() -> dict:
    """Sample plain visit beacon."""
    return {
        "site": "a",
        "page": "/x",
        "referrer": "https://search.example.com/",
        "metadata": {"deviceType": "mobile", "language": "en-US", "timezone": "Europe/Berlin"},
    }


@pytest.fixture
def sample_messages() -> list[dict]:
    """Sample conversation transcript."""
    return [
        {"role": "assistant", "content": "Hi, how can I help?"},
        {"role": "user", "content": "What does the premium plan include?"},
        {"role": "assistant", "content": "Unlimited sites and exports."},
    ]
