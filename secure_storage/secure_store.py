"""
Secure key-value store facade.

This module provides:
- SecureStore: Typed get/set/remove/clear API over an untrusted byte store

Every public operation runs through the retry executor and checks the
rotation policy before touching data. A record that fails its checksum or
cannot be decrypted is deleted and reported as absent, so `get_item`
returning None covers both "never set" and "corrupted and purged".

Same-key operations are not serialized: a `set_item` racing a `get_item` on
the same key may observe either value. Callers needing ordering must
serialize themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import SecureStoreConfig
from .crypto import AES_256_KEY_SIZE, CipherCodec
from .diagnostics import IntegrityReport, SecurityStats, StoreDiagnostics
from .errors import (
    DecryptionError,
    IntegrityError,
    InvalidKeyError,
    InvalidValueError,
    StorageError,
)
from .key_manager import Clock, KeyManager, utc_now
from .retry import RetryExecutor
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class SecureStore:
    """
    Encrypted, self-healing key-value store.

    Construct with `SecureStore.open` and pass the instance to whatever needs
    it; there is no module-level default instance.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key_manager: KeyManager,
        config: SecureStoreConfig,
        executor: Optional[RetryExecutor] = None,
    ) -> None:
        """
        Initialize the facade from already constructed collaborators.

        Args:
            store: Underlying byte store
            key_manager: Key owner for this store
            config: Store configuration
            executor: Retry executor (built from config if omitted)
        """
        self._store = store
        self._keys = key_manager
        self._config = config
        self._executor = executor or RetryExecutor(config.max_retries, config.retry_delay)
        self._diagnostics = StoreDiagnostics(store, key_manager, config)

    @classmethod
    async def open(
        cls,
        store: KeyValueStore,
        config: Optional[SecureStoreConfig] = None,
        *,
        clock: Clock = utc_now,
        on_fallback: Optional[Callable[[], None]] = None,
    ) -> SecureStore:
        """
        Derive the key, load the rotation timestamp and return a ready store.

        Args:
            store: Underlying byte store
            config: Store configuration (defaults apply if omitted)
            clock: Time source for the rotation policy
            on_fallback: Called if key derivation falls back to the fixed seed

        Returns:
            SecureStore instance
        """
        config = config or SecureStoreConfig()
        key_manager = await KeyManager.new(store, config, clock=clock, on_fallback=on_fallback)
        secure_store = cls(store, key_manager, config)
        if not secure_store.validate_security_config():
            logger.warning(
                "Invalid secure storage configuration: %s",
                "; ".join(secure_store.security_config_problems()),
            )
        return secure_store

    @property
    def config(self) -> SecureStoreConfig:
        return self._config

    @property
    def key_manager(self) -> KeyManager:
        return self._keys

    # ------------------------------------------------------------------
    # Single-record operations
    # ------------------------------------------------------------------

    async def set_item(self, key: str, value: Any) -> bool:
        """
        Encrypt and store a JSON-serializable value.

        Raises:
            InvalidKeyError: If key is empty or not a string
            InvalidValueError: If value is None
            EncryptionError: If encryption keeps failing after retries
            StorageError: If the byte store keeps failing after retries
        """
        name = self._namespaced(key)
        if value is None:
            raise InvalidValueError(f"Cannot store None under {key!r}")

        async def operation() -> bool:
            await self._keys.rotate_if_due()
            token = CipherCodec.encrypt(value, self._keys.current_key())
            await self._write(name, token)
            return True

        return await self._executor.execute(operation)

    async def get_item(self, key: str) -> Any:
        """
        Read and decrypt a value.

        Returns:
            The stored value, or None if absent or corrupted (corrupted entries are deleted)
        """
        name = self._namespaced(key)

        async def operation() -> Any:
            await self._keys.rotate_if_due()
            raw = await self._read(name)
            if raw is None:
                return None
            try:
                return CipherCodec.decrypt(raw, self._keys.current_key())
            except (IntegrityError, DecryptionError) as e:
                logger.warning("Corrupted secure record %s, removing: %s", name, e)
                await self._delete(name)
                return None

        return await self._executor.execute(operation)

    async def remove_item(self, key: str) -> bool:
        name = self._namespaced(key)

        async def operation() -> bool:
            await self._keys.rotate_if_due()
            await self._delete(name)
            return True

        return await self._executor.execute(operation)

    async def has_item(self, key: str) -> bool:
        name = self._namespaced(key)

        async def operation() -> bool:
            await self._keys.rotate_if_due()
            return await self._read(name) is not None

        return await self._executor.execute(operation)

    async def clear(self) -> bool:
        """Remove every record in the namespace; other byte-store keys are untouched."""

        async def operation() -> bool:
            await self._keys.rotate_if_due()
            for name in await self._namespace_keys():
                await self._delete(name)
            return True

        return await self._executor.execute(operation)

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    async def get_multiple(self, keys: Iterable[str]) -> Dict[str, Any]:
        """
        Read several values; a corrupted entry yields None without failing the batch.

        Returns:
            Mapping of each requested key to its value (or None)
        """
        if isinstance(keys, (str, bytes)) or not isinstance(keys, Iterable):
            raise InvalidValueError("keys must be an iterable of strings")
        requested = list(keys)
        names = [self._namespaced(k) for k in requested]

        async def operation() -> Dict[str, Any]:
            await self._keys.rotate_if_due()
            raw_by_name = dict(await self._read_many(names))
            key = self._keys.current_key()
            result: Dict[str, Any] = {}
            for original, name in zip(requested, names):
                raw = raw_by_name.get(name)
                if raw is None:
                    result[original] = None
                    continue
                try:
                    result[original] = CipherCodec.decrypt(raw, key)
                except (IntegrityError, DecryptionError) as e:
                    logger.warning("Corrupted secure record %s in batch read: %s", name, e)
                    result[original] = None
            return result

        return await self._executor.execute(operation)

    async def set_multiple(self, entries: Mapping | Iterable[Tuple[str, Any]]) -> bool:
        """
        Encrypt and store several values in one write.

        All entries are validated and encrypted before anything is written,
        so a bad entry leaves the store untouched.

        Args:
            entries: Mapping or iterable of (key, value) pairs

        Raises:
            InvalidKeyError: If any key is invalid
            InvalidValueError: If entries is malformed or any value is None
        """
        pairs = self._validated_pairs(entries)

        async def operation() -> bool:
            await self._keys.rotate_if_due()
            key = self._keys.current_key()
            encrypted = [(name, CipherCodec.encrypt(value, key)) for name, value in pairs]
            await self._write_many(encrypted)
            return True

        return await self._executor.execute(operation)

    # ------------------------------------------------------------------
    # Key rotation and diagnostics
    # ------------------------------------------------------------------

    async def force_key_rotation(self) -> bool:
        """
        Rotate the key now and migrate existing records.

        Returns:
            True if a rotation ran, False if one was already in progress

        Raises:
            KeyRotationError: If rotation bookkeeping cannot be persisted
        """
        result = await self._executor.execute(self._keys.rotate)
        return result is not None

    async def verify_integrity(self) -> IntegrityReport:
        return await self._diagnostics.verify_integrity()

    async def clean_corrupted_data(self) -> int:
        return await self._diagnostics.clean_corrupted_data()

    async def ensure_integrity(self) -> IntegrityReport:
        return await self._diagnostics.ensure_integrity()

    async def get_security_stats(self) -> SecurityStats:
        return await self._diagnostics.get_security_stats()

    def security_config_problems(self) -> List[str]:
        problems = self._config.validate()
        if len(self._keys.current_key()) != AES_256_KEY_SIZE:
            problems.append(f"active key must be {AES_256_KEY_SIZE} bytes")
        return problems

    def validate_security_config(self) -> bool:
        return not self.security_config_problems()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _namespaced(self, key: Any) -> str:
        if not isinstance(key, str) or not key:
            raise InvalidKeyError(f"Invalid storage key: {key!r}")
        prefix = self._config.namespace_prefix
        return key if key.startswith(prefix) else f"{prefix}{key}"

    def _validated_pairs(self, entries: Any) -> List[Tuple[str, Any]]:
        if isinstance(entries, Mapping):
            items = list(entries.items())
        elif isinstance(entries, (list, tuple)):
            items = list(entries)
        else:
            raise InvalidValueError("entries must be a mapping or a list of (key, value) pairs")

        pairs = []
        for item in items:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                raise InvalidValueError(f"Malformed entry: {item!r}")
            key, value = item
            name = self._namespaced(key)
            if value is None:
                raise InvalidValueError(f"Cannot store None under {key!r}")
            pairs.append((name, value))
        return pairs

    async def _read(self, name: str) -> Optional[str]:
        try:
            return await self._store.get(name)
        except Exception as e:
            raise StorageError(f"Failed to read secure data: {e}")

    async def _read_many(self, names: List[str]) -> List[Tuple[str, Optional[str]]]:
        try:
            return await self._store.multi_get(names)
        except Exception as e:
            raise StorageError(f"Failed to read secure data: {e}")

    async def _write(self, name: str, token: str) -> None:
        try:
            await self._store.set(name, token)
        except Exception as e:
            raise StorageError(f"Failed to save secure data: {e}")

    async def _write_many(self, entries: List[Tuple[str, str]]) -> None:
        try:
            await self._store.multi_set(entries)
        except Exception as e:
            raise StorageError(f"Failed to save secure data: {e}")

    async def _delete(self, name: str) -> None:
        try:
            await self._store.remove(name)
        except Exception as e:
            raise StorageError(f"Failed to remove secure data: {e}")

    async def _namespace_keys(self) -> List[str]:
        try:
            keys = await self._store.list_keys()
        except Exception as e:
            raise StorageError(f"Failed to list secure data: {e}")
        return [k for k in keys if k.startswith(self._config.namespace_prefix)]
