"""
Pytest configuration and fixtures for secure storage tests.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Optional

import asyncpg
import pytest
from dotenv import load_dotenv

from secure_storage import (
    InMemoryKeyValueStore,
    PostgresKeyValueStore,
    SecureStore,
    SecureStoreConfig,
)


class FakeClock:
    """Manually advanced clock for rotation tests."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FlakyStore(InMemoryKeyValueStore):
    """In-memory store whose namespaced reads and writes fail a set number of times."""

    def __init__(self, failures: int = 0, read_failures: int = 0) -> None:
        super().__init__()
        self.failures = failures
        self.read_failures = read_failures
        self.set_calls = 0
        self.get_calls = 0

    async def get(self, key: str) -> Optional[str]:
        if key.startswith("secure_"):
            self.get_calls += 1
            if self.read_failures > 0:
                self.read_failures -= 1
                raise OSError("disk busy")
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        if key.startswith("secure_"):
            self.set_calls += 1
            if self.failures > 0:
                self.failures -= 1
                raise OSError("disk busy")
        await super().set(key, value)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config() -> SecureStoreConfig:
    """Default policy with no delay between retries."""
    return SecureStoreConfig(retry_delay=0, platform_id="test-device")


@pytest.fixture
async def memory_store() -> InMemoryKeyValueStore:
    """Create an in-memory byte store for testing."""
    return InMemoryKeyValueStore()


@pytest.fixture
async def secure_store(
    memory_store: InMemoryKeyValueStore, config: SecureStoreConfig, clock: FakeClock
) -> SecureStore:
    return await SecureStore.open(memory_store, config, clock=clock)


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a PostgreSQL connection pool for testing."""
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set, skipping PostgreSQL tests")

    pool = await asyncpg.create_pool(database_url)
    if pool is None:
        pytest.skip("Failed to create PostgreSQL connection pool")

    yield pool

    await pool.close()


@pytest.fixture
async def postgres_store(pg_pool: asyncpg.Pool) -> PostgresKeyValueStore:
    """Create a PostgreSQL byte store on a fresh table."""
    store = PostgresKeyValueStore(pg_pool, table="secure_kv_test")
    await store.ensure_schema()
    await pg_pool.execute("TRUNCATE TABLE secure_kv_test")
    return store
