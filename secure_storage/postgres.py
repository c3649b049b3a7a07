"""
PostgreSQL-backed key-value store.

This module provides:
- PostgresKeyValueStore: KeyValueStore on an asyncpg pool

Schema (created by `ensure_schema`):

    CREATE TABLE secure_kv (
        key        TEXT PRIMARY KEY,
        value      TEXT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )

Values are the secure store's wire tokens; the database never sees plaintext.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

import asyncpg

from .errors import StorageError
from .storage import KeyValueStore

DEFAULT_TABLE = "secure_kv"


class PostgresKeyValueStore(KeyValueStore):
    """
    PostgreSQL storage backend for secure records.

    Driver errors are wrapped in StorageError.
    """

    def __init__(self, pool: asyncpg.Pool, table: str = DEFAULT_TABLE) -> None:
        """
        Initialize PostgreSQL storage.

        Args:
            pool: asyncpg connection pool
            table: Table name (must be a plain SQL identifier)
        """
        if not table.replace("_", "").isalnum():
            raise StorageError(f"Invalid table name: {table!r}")
        self._pool = pool
        self._table = table

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    async def ensure_schema(self) -> None:
        """Create the backing table if it does not exist."""
        query = f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                key        TEXT PRIMARY KEY,
                value      TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """
        try:
            await self._pool.execute(query)
        except Exception as e:
            raise StorageError(f"Failed to create {self._table} table: {e}")

    async def get(self, key: str) -> Optional[str]:
        query = f"SELECT value FROM {self._table} WHERE key = $1"
        try:
            return await self._pool.fetchval(query, key)
        except Exception as e:
            raise StorageError(f"Failed to get {key}: {e}")

    async def set(self, key: str, value: str) -> None:
        try:
            await self._pool.execute(self._upsert_query(), key, value)
        except Exception as e:
            raise StorageError(f"Failed to set {key}: {e}")

    async def remove(self, key: str) -> None:
        query = f"DELETE FROM {self._table} WHERE key = $1"
        try:
            await self._pool.execute(query, key)
        except Exception as e:
            raise StorageError(f"Failed to remove {key}: {e}")

    async def list_keys(self) -> List[str]:
        query = f"SELECT key FROM {self._table} ORDER BY key"
        try:
            rows = await self._pool.fetch(query)
            return [row["key"] for row in rows]
        except Exception as e:
            raise StorageError(f"Failed to list keys: {e}")

    async def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        requested = list(keys)
        query = f"SELECT key, value FROM {self._table} WHERE key = ANY($1::TEXT[])"
        try:
            rows = await self._pool.fetch(query, requested)
        except Exception as e:
            raise StorageError(f"Failed to get {len(requested)} keys: {e}")
        found = {row["key"]: row["value"] for row in rows}
        return [(key, found.get(key)) for key in requested]

    async def multi_set(self, entries: Iterable[Tuple[str, str]]) -> None:
        """Upsert all entries in one transaction."""
        batch = list(entries)
        if not batch:
            return
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(self._upsert_query(), batch)
        except Exception as e:
            raise StorageError(f"Failed to set {len(batch)} keys: {e}")

    def _upsert_query(self) -> str:
        return f"""
            INSERT INTO {self._table} (key, value, updated_at)
            VALUES ($1, $2, now())
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
        """
