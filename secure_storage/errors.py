"""
Exception classes for secure storage operations.

Misuse errors (`InvalidKeyError`, `InvalidValueError`) always reach the caller.
`IntegrityError` and `DecryptionError` mark a corrupted record; the facade
purges the record instead of raising them.
"""

from __future__ import annotations


class SecureStorageError(Exception):
    """Base exception for all secure storage operations."""

    pass


class InvalidKeyError(SecureStorageError):
    """Storage key is empty or not a string."""

    pass


class InvalidValueError(SecureStorageError):
    """Value cannot be stored (None or malformed batch)."""

    pass


class CryptoError(SecureStorageError):
    """Cryptographic operation failed."""

    pass


class EncryptionError(CryptoError):
    """Value could not be encrypted (missing key, unserializable value, cipher failure)."""

    pass


class IntegrityError(CryptoError):
    """Stored token is malformed or its checksum does not match."""

    pass


class DecryptionError(CryptoError):
    """Checksum matched but the payload could not be decrypted or parsed."""

    pass


class StorageError(SecureStorageError):
    """Underlying key-value store failed."""

    pass


class KeyRotationError(SecureStorageError):
    """Key rotation could not be completed."""

    pass


class ConfigError(SecureStorageError):
    """Configuration error."""

    pass
