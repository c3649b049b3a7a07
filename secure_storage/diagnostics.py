"""
Integrity scans and statistics over the secure namespace.

Scans read the byte store directly and never go through the facade's retry
or rotation path: a failing entry is counted (or deleted), never retried.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from .config import SecureStoreConfig
from .crypto import CipherCodec
from .errors import DecryptionError, IntegrityError, StorageError
from .key_manager import KEY_DERIVATION_NAME, KeyManager
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

ENCRYPTION_ALGORITHM = "AES-256-CBC"
CHECKSUM_ALGORITHM = "SHA-256"


@dataclass
class CorruptedEntry:
    """A namespaced entry that failed verification."""

    key: str
    kind: str  # "integrity", "decryption" or "storage"
    message: str


@dataclass
class IntegrityReport:
    """Result of a full-namespace verification."""

    total_keys: int = 0
    valid_keys: int = 0
    corrupted_keys: int = 0
    errors: List[CorruptedEntry] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return self.corrupted_keys == 0


@dataclass
class SecurityStats:
    """Observability snapshot of the secure store."""

    total_secure_keys: int
    valid_keys: int
    corrupted_keys: int
    last_key_rotation: str
    next_key_rotation: str
    needs_rotation: bool
    encryption_algorithm: str
    key_derivation: str
    iterations: int
    checksum_algorithm: str
    fallback_key_active: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class StoreDiagnostics:
    """Verification, cleanup and statistics for namespaced records."""

    def __init__(
        self,
        store: KeyValueStore,
        key_manager: KeyManager,
        config: SecureStoreConfig,
    ) -> None:
        self._store = store
        self._keys = key_manager
        self._config = config

    async def verify_integrity(self) -> IntegrityReport:
        """
        Attempt to decode every namespaced record without modifying anything.

        Returns:
            IntegrityReport with per-entry failures

        Raises:
            StorageError: If the namespace cannot be listed
        """
        keys = await self._namespace_keys()
        key = self._keys.current_key()
        report = IntegrityReport(total_keys=len(keys))

        for name in keys:
            try:
                raw = await self._store.get(name)
            except Exception as e:
                report.corrupted_keys += 1
                report.errors.append(CorruptedEntry(name, "storage", str(e)))
                continue
            if raw is None:
                continue
            try:
                CipherCodec.decrypt(raw, key)
                report.valid_keys += 1
            except IntegrityError as e:
                report.corrupted_keys += 1
                report.errors.append(CorruptedEntry(name, "integrity", str(e)))
            except DecryptionError as e:
                report.corrupted_keys += 1
                report.errors.append(CorruptedEntry(name, "decryption", str(e)))

        return report

    async def clean_corrupted_data(self) -> int:
        """
        Delete every namespaced record that fails to decode.

        Entries that cannot be read are logged and left alone.

        Returns:
            Number of records removed
        """
        keys = await self._namespace_keys()
        key = self._keys.current_key()
        cleaned = 0

        for name in keys:
            try:
                raw = await self._store.get(name)
            except Exception as e:
                logger.warning("Skipping unreadable record %s during cleanup: %s", name, e)
                continue
            if raw is None:
                continue
            try:
                CipherCodec.decrypt(raw, key)
            except (IntegrityError, DecryptionError):
                try:
                    await self._store.remove(name)
                except Exception as e:
                    raise StorageError(f"Failed to remove secure data: {e}")
                cleaned += 1

        if cleaned:
            logger.info("Removed %d corrupted secure records", cleaned)
        return cleaned

    async def ensure_integrity(self) -> IntegrityReport:
        """Verify the namespace and clean it up if anything is corrupted."""
        report = await self.verify_integrity()
        if report.corrupted_keys > 0:
            logger.warning("Corrupted secure records detected: %d", report.corrupted_keys)
            await self.clean_corrupted_data()
        return report

    async def get_security_stats(self) -> SecurityStats:
        report = await self.verify_integrity()
        return SecurityStats(
            total_secure_keys=report.total_keys,
            valid_keys=report.valid_keys,
            corrupted_keys=report.corrupted_keys,
            last_key_rotation=self._keys.last_rotation.isoformat(),
            next_key_rotation=self._keys.policy.next_rotation(
                self._keys.last_rotation
            ).isoformat(),
            needs_rotation=self._keys.needs_rotation(),
            encryption_algorithm=ENCRYPTION_ALGORITHM,
            key_derivation=KEY_DERIVATION_NAME,
            iterations=self._config.kdf_iterations,
            checksum_algorithm=CHECKSUM_ALGORITHM,
            fallback_key_active=self._keys.using_fallback_key,
        )

    async def _namespace_keys(self) -> List[str]:
        try:
            keys = await self._store.list_keys()
        except Exception as e:
            raise StorageError(f"Failed to list secure data: {e}")
        prefix = self._config.namespace_prefix
        return [k for k in keys if k.startswith(prefix)]
