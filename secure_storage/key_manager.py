"""
Key derivation and rotation for the secure store.

This module provides:
- derive_key: Device seed -> SHA-256 -> PBKDF2 key derivation with fixed-seed fallback
- RotationPolicy: Pure, time-injectable rotation schedule
- KeyManager: Owns the active key, persists the rotation timestamp, migrates records
- RotationResult: Outcome of a completed rotation

Rotation flow:
1. Derive a new key
2. Persist the new rotation timestamp (failure leaves the old key active)
3. Swap the active key
4. Re-encrypt every namespaced record; records the old key cannot read are deleted
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import SecureStoreConfig
from .crypto import AES_256_KEY_SIZE, CipherCodec, KeyMaterial
from .errors import DecryptionError, IntegrityError, KeyRotationError, StorageError
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SALT_SIZE: int = 16
FALLBACK_SEED: str = "secure-storage-device-fallback"
KEY_DERIVATION_NAME: str = "PBKDF2-HMAC-SHA256"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _from_millis(raw: str) -> datetime:
    return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)


def _stretch(secret: bytes, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=AES_256_KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret)


def derive_key(platform_id: str, iterations: int, now: Optional[datetime] = None) -> KeyMaterial:
    """
    Derive a fresh 256-bit key from device material and randomness.

    The seed combines the platform identifier, a millisecond timestamp and
    random entropy; its SHA-256 hex digest is stretched with PBKDF2 under a
    fresh random salt. If any step fails the key falls back to SHA-256 of a
    fixed seed, flagged through `KeyMaterial.is_fallback`.

    Args:
        platform_id: Device/platform identifier
        iterations: PBKDF2 iteration count
        now: Timestamp mixed into the seed (defaults to current UTC time)

    Returns:
        KeyMaterial (32 bytes)
    """
    try:
        moment = now if now is not None else utc_now()
        seed = f"{platform_id}-{_to_millis(moment)}-{secrets.token_hex(16)}"
        hashed = hashlib.sha256(seed.encode("utf-8")).hexdigest()
        salt = secrets.token_bytes(SALT_SIZE)
        return KeyMaterial(_stretch(hashed.encode("ascii"), salt, iterations))
    except Exception as e:
        logger.warning(
            "Key derivation failed (%s); using fixed fallback seed, encryption strength is degraded",
            type(e).__name__,
        )
        return KeyMaterial(
            hashlib.sha256(FALLBACK_SEED.encode("utf-8")).digest(), fallback=True
        )


@dataclass(frozen=True)
class RotationPolicy:
    """Rotation schedule; `needs_rotation` is a pure function of its inputs."""

    interval: timedelta

    def needs_rotation(self, last_rotation: datetime, now: datetime) -> bool:
        return now - last_rotation > self.interval

    def next_rotation(self, last_rotation: datetime) -> datetime:
        return last_rotation + self.interval


@dataclass
class RotationResult:
    """Key rotation result."""

    rotated_at: datetime
    migrated: int
    purged: int

    def __str__(self) -> str:
        return f"rotated at {self.rotated_at.isoformat()}, {self.migrated} migrated, {self.purged} purged"


class KeyManager:
    """
    Owner of the active encryption key.

    The key is never handed to code outside this package; the facade reads it
    once per operation through `current_key()`.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: SecureStoreConfig,
        last_rotation: datetime,
        clock: Clock = utc_now,
        on_fallback: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Initialize KeyManager with an already loaded rotation timestamp.

        Prefer `KeyManager.new`, which loads the timestamp from the store.

        Args:
            store: Byte store holding records and the rotation timestamp
            config: Store configuration
            last_rotation: Timestamp of the most recent key derivation
            clock: Zero-argument callable returning the current aware datetime
            on_fallback: Called whenever a fallback key becomes active
        """
        self._store = store
        self._config = config
        self._policy = RotationPolicy(config.rotation_interval)
        self._clock = clock
        self._on_fallback = on_fallback
        self._last_rotation = last_rotation
        self._key: Optional[KeyMaterial] = None
        self._rotation_lock = asyncio.Lock()

    @classmethod
    async def new(
        cls,
        store: KeyValueStore,
        config: SecureStoreConfig,
        clock: Clock = utc_now,
        on_fallback: Optional[Callable[[], None]] = None,
    ) -> KeyManager:
        """
        Create a KeyManager, loading (or initializing) the persisted rotation timestamp.

        Args:
            store: Byte store
            config: Store configuration
            clock: Time source
            on_fallback: Fallback-key observer

        Returns:
            KeyManager with its key already derived
        """
        last_rotation = await cls._load_last_rotation(store, config, clock)
        manager = cls(store, config, last_rotation, clock=clock, on_fallback=on_fallback)
        manager.current_key()
        return manager

    @staticmethod
    async def _load_last_rotation(
        store: KeyValueStore, config: SecureStoreConfig, clock: Clock
    ) -> datetime:
        try:
            raw = await store.get(config.rotation_marker_key)
        except Exception as e:
            raise StorageError(f"Failed to read secure data: {e}")

        if raw is not None:
            try:
                return _from_millis(raw)
            except (ValueError, OverflowError, OSError):
                logger.warning("Ignoring unreadable key rotation timestamp %r", raw)

        now = clock()
        try:
            await store.set(config.rotation_marker_key, str(_to_millis(now)))
        except Exception as e:
            raise StorageError(f"Failed to save secure data: {e}")
        return now

    @property
    def policy(self) -> RotationPolicy:
        return self._policy

    @property
    def last_rotation(self) -> datetime:
        return self._last_rotation

    @property
    def rotation_in_progress(self) -> bool:
        return self._rotation_lock.locked()

    @property
    def using_fallback_key(self) -> bool:
        return self._key is not None and self._key.is_fallback

    def current_key(self) -> KeyMaterial:
        """Return the active key, deriving it on first use."""
        if self._key is None:
            self._key = self._derive()
        return self._key

    def needs_rotation(self, now: Optional[datetime] = None) -> bool:
        return self._policy.needs_rotation(
            self._last_rotation, now if now is not None else self._clock()
        )

    async def rotate_if_due(self) -> Optional[RotationResult]:
        """
        Rotate when the policy says so; rotation failures are logged, not raised.

        Returns:
            RotationResult if a rotation ran, None otherwise
        """
        if not self.needs_rotation():
            return None
        try:
            return await self.rotate()
        except KeyRotationError as e:
            logger.warning("Scheduled key rotation failed, keeping current key: %s", e)
            return None

    async def rotate(self) -> Optional[RotationResult]:
        """
        Derive a new key and migrate every namespaced record to it.

        Returns:
            RotationResult, or None if another rotation is already running

        Raises:
            KeyRotationError: If the rotation timestamp cannot be persisted or
                the namespace cannot be listed (both leave the current key active)
        """
        if self._rotation_lock.locked():
            logger.debug("Key rotation already in progress, skipping")
            return None

        async with self._rotation_lock:
            old_key = self.current_key()
            now = self._clock()
            new_key = self._derive(now)
            keys = await self._namespace_keys()

            try:
                await self._store.set(self._config.rotation_marker_key, str(_to_millis(now)))
            except Exception as e:
                raise KeyRotationError(f"Failed to persist key rotation timestamp: {e}")

            self._key = new_key
            self._last_rotation = now

            migrated, purged = await self._migrate(keys, old_key, new_key)

        result = RotationResult(rotated_at=now, migrated=migrated, purged=purged)
        logger.info("Encryption key rotated: %s", result)
        return result

    async def _namespace_keys(self) -> List[str]:
        prefix = self._config.namespace_prefix
        try:
            return [k for k in await self._store.list_keys() if k.startswith(prefix)]
        except Exception as e:
            raise KeyRotationError(f"Failed to list records for migration: {e}")

    async def _migrate(
        self, keys: List[str], old_key: KeyMaterial, new_key: KeyMaterial
    ) -> Tuple[int, int]:
        """Re-encrypt namespaced records under the new key; delete unreadable ones."""
        migrated = 0
        purged = 0
        for key in keys:
            try:
                raw = await self._store.get(key)
                if raw is None:
                    continue
                value = CipherCodec.decrypt(raw, old_key)
                await self._store.set(key, CipherCodec.encrypt(value, new_key))
                migrated += 1
            except (IntegrityError, DecryptionError) as e:
                logger.warning("Dropping record %s during key migration: %s", key, e)
                await self._remove_quietly(key)
                purged += 1
            except Exception as e:
                logger.warning("Could not migrate record %s: %s", key, e)
                await self._remove_quietly(key)
                purged += 1

        return migrated, purged

    async def _remove_quietly(self, key: str) -> None:
        try:
            await self._store.remove(key)
        except Exception as e:
            logger.error("Failed to delete unmigratable record %s: %s", key, e)

    def _derive(self, now: Optional[datetime] = None) -> KeyMaterial:
        key = derive_key(
            self._config.platform_id,
            self._config.kdf_iterations,
            now if now is not None else self._clock(),
        )
        if key.is_fallback and self._on_fallback is not None:
            self._on_fallback()
        return key
