"""
Shared test fixtures.

The environment is configured before any hitstats module is imported so
that settings, the engine and the rate limiter pick it up.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="hitstats-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REGISTRY_ENABLED"] = "false"

import pytest
import pytest_asyncio
from sqlmodel import SQLModel

from hitstats.db import models  # noqa: F401
from hitstats.db.session import async_session_maker, engine
from hitstats.services.hit_service import stats_cache


@pytest_asyncio.fixture
async def database():
    """Fresh schema for the requesting test."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine


@pytest.fixture(autouse=True)
def clear_stats_cache():
    stats_cache.clear()
    yield
    stats_cache.clear()


@pytest_asyncio.fixture
async def session(database):
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def session_maker(database):
    return async_session_maker
