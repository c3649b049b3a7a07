"""
Secure Storage Benchmark CLI.

Usage:
    secure-storage-benchmark

Or run directly:
    python -m secure_storage.benchmark

Uses PostgreSQL when DATABASE_URL is set (environment or .env file),
the in-memory store otherwise.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time

import asyncpg
from dotenv import load_dotenv

from secure_storage.config import SecureStoreConfig
from secure_storage.postgres import PostgresKeyValueStore
from secure_storage.secure_store import SecureStore
from secure_storage.storage import InMemoryKeyValueStore

DEFAULT_RECORDS = 200


def _rate(count: int, seconds: float) -> str:
    return f"{count / seconds:.2f}" if seconds > 0 else "inf"


async def run_benchmark() -> None:
    """Run the secure storage benchmark."""
    print("=== Secure Storage Benchmark ===\n")

    load_dotenv()
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "WARNING"))

    pool = None
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        pool = await asyncpg.create_pool(database_url)
        backend = PostgresKeyValueStore(pool)
        await backend.ensure_schema()
        print("[STARTUP] Using PostgreSQL backend")
    else:
        backend = InMemoryKeyValueStore()
        print("[STARTUP] DATABASE_URL not set, using in-memory backend")

    try:
        user_input = input(f"Enter number of records (default: {DEFAULT_RECORDS}): ").strip()
        count = int(user_input) if user_input else DEFAULT_RECORDS
    except (ValueError, EOFError):
        count = DEFAULT_RECORDS

    config = SecureStoreConfig.from_env()
    store = await SecureStore.open(backend, config)
    await store.clear()

    start = time.perf_counter()
    for i in range(count):
        await store.set_item(f"bench_{i}", {"id": i, "token": f"token-{i}"})
    write_time = time.perf_counter() - start

    start = time.perf_counter()
    for i in range(count):
        await store.get_item(f"bench_{i}")
    read_time = time.perf_counter() - start

    start = time.perf_counter()
    await store.force_key_rotation()
    rotation_time = time.perf_counter() - start

    start = time.perf_counter()
    report = await store.verify_integrity()
    verify_time = time.perf_counter() - start

    print(f"\nRecords:          {count}")
    print(f"Writes:           {_rate(count, write_time)} ops/sec")
    print(f"Reads:            {_rate(count, read_time)} ops/sec")
    print(f"Key rotation:     {rotation_time * 1000:.3f}ms ({_rate(count, rotation_time)} records/sec)")
    print(f"Integrity scan:   {verify_time * 1000:.3f}ms ({report.valid_keys} valid, {report.corrupted_keys} corrupted)")

    stats = await store.get_security_stats()
    print("\nSecurity Statistics:")
    for name, value in stats.to_dict().items():
        print(f"  - {name}: {value}")

    await store.clear()
    if pool is not None:
        await pool.close()


def main() -> None:
    """CLI entry point for secure-storage-benchmark command."""
    asyncio.run(run_benchmark())


if __name__ == "__main__":
    main()
