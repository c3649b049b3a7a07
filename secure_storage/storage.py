"""
Key-value byte store abstractions.

This module provides:
- KeyValueStore: Abstract async interface the secure store persists into
- InMemoryKeyValueStore: asyncio-safe in-memory implementation for tests and tooling

Values are opaque strings; the secure store only ever writes wire tokens and
its rotation bookkeeping entry.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple


class KeyValueStore(ABC):
    """
    Abstract persistent key-value store.

    All methods are async to support both in-memory and database backends.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get a value, or None if absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Insert or overwrite a value."""
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove a key (no-op if absent)."""
        ...

    @abstractmethod
    async def list_keys(self) -> List[str]:
        """List every key in the store."""
        ...

    async def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        """Get several values, preserving the requested order."""
        return [(key, await self.get(key)) for key in keys]

    async def multi_set(self, entries: Iterable[Tuple[str, str]]) -> None:
        """Write several values."""
        for key, value in entries:
            await self.set(key, value)


class InMemoryKeyValueStore(KeyValueStore):
    """
    In-memory store for testing.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._data[key] = value

    async def remove(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def list_keys(self) -> List[str]:
        async with self._lock:
            return list(self._data.keys())

    async def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        async with self._lock:
            return [(key, self._data.get(key)) for key in keys]

    async def multi_set(self, entries: Iterable[Tuple[str, str]]) -> None:
        # Single lock acquisition so the batch lands atomically
        async with self._lock:
            self._data.update(entries)

    def snapshot(self) -> Dict[str, str]:
        """Copy of the raw contents (for inspection in tests and tooling)."""
        return dict(self._data)
