"""Pytest configuration for all tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from nocobase.core.config import Settings
from nocobase.infrastructure.persistence.database import Database


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at a private in-memory SQLite database."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        environment="testing",
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Create a test database.

    Every test gets its own engine, so tables and registries never leak
    between tests.
    """
    database = Database(settings=settings)
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture
def database(settings: Settings) -> Database:
    """Database used for schema definition only; no engine is created."""
    return Database(settings=settings)
