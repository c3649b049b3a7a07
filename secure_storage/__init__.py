"""
Secure Storage Library

Encrypted key-value storage for sensitive client data (session tokens, user
identifiers, cached profiles) on top of any async key-value byte store.

Quick Start
-----------
```python
import asyncio
from secure_storage import InMemoryKeyValueStore, SecureStore

async def main():
    store = await SecureStore.open(InMemoryKeyValueStore())

    await store.set_item("secure_token", {"id": 42})
    token = await store.get_item("secure_token")  # {"id": 42}

    report = await store.verify_integrity()
    print(report.valid_keys, report.corrupted_keys)

asyncio.run(main())
```

Key Features
------------
- **AES-256-CBC**: PKCS7 padding, fresh 128-bit IV on every write
- **Integrity Checksums**: SHA-256 over IV and ciphertext, verified before decrypting
- **Key Rotation**: PBKDF2-derived keys rotated on a fixed interval, records migrated
- **Self-Healing**: Corrupted records are purged and read back as absent
- **Bounded Retries**: Transient serialization and I/O failures retried with a fixed delay
- **PostgreSQL Storage**: asyncpg-backed persistent byte store
"""

__version__ = "0.1.0"

# =============================================================================
# Config Exports
# =============================================================================

from .config import SecureStoreConfig

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    IV_SIZE,
    AesCbcCipher,
    CipherCodec,
    KeyMaterial,
    SecureToken,
)

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    ConfigError,
    CryptoError,
    DecryptionError,
    EncryptionError,
    IntegrityError,
    InvalidKeyError,
    InvalidValueError,
    KeyRotationError,
    SecureStorageError,
    StorageError,
)

# =============================================================================
# Storage Exports
# =============================================================================

from .storage import InMemoryKeyValueStore, KeyValueStore
from .postgres import PostgresKeyValueStore

# =============================================================================
# Key Management, Retry and Facade Exports
# =============================================================================

from .key_manager import KeyManager, RotationPolicy, RotationResult, derive_key
from .retry import RetryExecutor, is_retryable
from .diagnostics import CorruptedEntry, IntegrityReport, SecurityStats, StoreDiagnostics
from .secure_store import SecureStore

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Config
    "SecureStoreConfig",
    # Crypto
    "AES_256_KEY_SIZE",
    "IV_SIZE",
    "AesCbcCipher",
    "CipherCodec",
    "KeyMaterial",
    "SecureToken",
    # Errors
    "SecureStorageError",
    "InvalidKeyError",
    "InvalidValueError",
    "CryptoError",
    "EncryptionError",
    "DecryptionError",
    "IntegrityError",
    "StorageError",
    "KeyRotationError",
    "ConfigError",
    # Storage
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "PostgresKeyValueStore",
    # Key management
    "KeyManager",
    "RotationPolicy",
    "RotationResult",
    "derive_key",
    # Retry
    "RetryExecutor",
    "is_retryable",
    # Diagnostics
    "StoreDiagnostics",
    "IntegrityReport",
    "CorruptedEntry",
    "SecurityStats",
    # Facade
    "SecureStore",
]
