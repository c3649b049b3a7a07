"""
Cryptographic primitives for the secure store.

This module provides:
- KeyMaterial: 256-bit key wrapper with redacted repr and best-effort zeroization
- AesCbcCipher: AES-256-CBC with PKCS7 padding
- SecureToken: Parsed form of the "{iv}:{ciphertext}:{checksum}" wire token
- CipherCodec: JSON value <-> wire token, with checksum-before-decrypt
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from typing import Any, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import CryptoError, DecryptionError, EncryptionError, IntegrityError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits
IV_SIZE: int = 16  # 128 bits (AES block size)
BLOCK_SIZE_BITS: int = 128
TOKEN_SEPARATOR: str = ":"


class KeyMaterial:
    """
    Symmetric key held by the key manager.

    Uses bytearray internally so the bytes can be overwritten on deletion.
    Python's garbage collector gives no timing guarantee, so zeroization is
    best-effort only.
    """

    __slots__ = ("_bytes", "_fallback")

    def __init__(self, key_bytes: bytes | bytearray, fallback: bool = False) -> None:
        """
        Wrap raw key bytes.

        Args:
            key_bytes: Raw key material (32 bytes for AES-256)
            fallback: True when produced by the deterministic fallback seed
        """
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise CryptoError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)
        self._fallback = fallback

    @classmethod
    def generate(cls) -> KeyMaterial:
        """Generate a random 32-byte key."""
        return cls(secrets.token_bytes(AES_256_KEY_SIZE))

    @property
    def is_fallback(self) -> bool:
        """Whether this key came from the fixed fallback seed."""
        return self._fallback

    def as_bytes(self) -> bytes:
        return bytes(self._bytes)

    def __len__(self) -> int:
        return len(self._bytes)

    def __repr__(self) -> str:
        return "KeyMaterial([REDACTED])"

    def __del__(self) -> None:
        if hasattr(self, "_bytes"):
            for i in range(len(self._bytes)):
                self._bytes[i] = 0


class AesCbcCipher:
    """AES-256-CBC with PKCS7 padding over raw bytes."""

    @staticmethod
    def encrypt(key: KeyMaterial, iv: bytes, plaintext: bytes) -> bytes:
        if len(key) != AES_256_KEY_SIZE:
            raise EncryptionError(
                f"Encryption failed: invalid key size, expected {AES_256_KEY_SIZE}, got {len(key)}"
            )
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key.as_bytes()), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    @staticmethod
    def decrypt(key: KeyMaterial, iv: bytes, ciphertext: bytes) -> bytes:
        if len(key) != AES_256_KEY_SIZE:
            raise DecryptionError(
                f"Decryption failed: invalid key size, expected {AES_256_KEY_SIZE}, got {len(key)}"
            )
        if len(iv) != IV_SIZE:
            raise DecryptionError(
                f"Decryption failed: invalid IV size, expected {IV_SIZE}, got {len(iv)}"
            )
        decryptor = Cipher(algorithms.AES(key.as_bytes()), modes.CBC(iv)).decryptor()
        try:
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            # Wrong key and truncated blocks both surface here
            raise DecryptionError("Decryption failed: bad padding or block size")


def compute_checksum(iv: str, ciphertext: str) -> str:
    """SHA-256 hex digest over "{iv}:{ciphertext}"."""
    data = f"{iv}{TOKEN_SEPARATOR}{ciphertext}".encode("utf-8", "surrogatepass")
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class SecureToken:
    """
    Serialized secure record: hex IV, base64 ciphertext and hex checksum.

    The checksum covers the IV as well as the ciphertext, so tampering with
    either is caught before any decryption is attempted.
    """

    iv: str
    ciphertext: str
    checksum: str

    def to_wire(self) -> str:
        return TOKEN_SEPARATOR.join((self.iv, self.ciphertext, self.checksum))

    @classmethod
    def from_wire(cls, raw: Any) -> SecureToken:
        """
        Parse and verify a wire token.

        Raises:
            IntegrityError: If the token is not three segments or the checksum differs
        """
        if not isinstance(raw, str) or not raw:
            raise IntegrityError("Invalid token: expected a non-empty string")

        parts = raw.split(TOKEN_SEPARATOR)
        if len(parts) != 3:
            raise IntegrityError(
                f"Invalid token format: expected 3 segments, got {len(parts)}"
            )

        iv, ciphertext, checksum = parts
        expected = compute_checksum(iv, ciphertext)
        received = checksum.encode("utf-8", "surrogatepass")
        if not hmac.compare_digest(expected.encode("ascii"), received):
            raise IntegrityError("Checksum mismatch: data corrupted or modified")

        return cls(iv=iv, ciphertext=ciphertext, checksum=checksum)


class CipherCodec:
    """
    Encrypts JSON-serializable values into wire tokens and back.

    Pure functions of (value or token, key); the caller captures the key once
    per operation so a concurrent rotation cannot swap it mid-call.
    """

    @staticmethod
    def encrypt(value: Any, key: Optional[KeyMaterial]) -> str:
        """
        Encrypt a value under a fresh random IV.

        Args:
            value: Any JSON-serializable value (empty strings/lists/dicts allowed)
            key: Active key material

        Returns:
            Wire token "{iv}:{ciphertext}:{checksum}"

        Raises:
            EncryptionError: If value is None, key is missing or encryption fails
        """
        if value is None:
            raise EncryptionError("Encryption failed: value must not be None")
        if key is None:
            raise EncryptionError("Encryption failed: key material unavailable")

        try:
            payload = json.dumps(value).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Encryption failed: value is not JSON-serializable ({e})")

        iv = secrets.token_bytes(IV_SIZE)
        try:
            ciphertext = AesCbcCipher.encrypt(key, iv, payload)
        except EncryptionError:
            raise
        except Exception as e:
            raise EncryptionError(f"Encryption failed: {e}")

        iv_hex = iv.hex()
        ciphertext_b64 = base64.standard_b64encode(ciphertext).decode("ascii")
        return SecureToken(
            iv=iv_hex,
            ciphertext=ciphertext_b64,
            checksum=compute_checksum(iv_hex, ciphertext_b64),
        ).to_wire()

    @staticmethod
    def decrypt(raw: Any, key: Optional[KeyMaterial]) -> Any:
        """
        Verify and decrypt a wire token.

        Args:
            raw: Wire token read from the byte store
            key: Key material the token is expected to be encrypted under

        Returns:
            The original JSON value

        Raises:
            IntegrityError: If the token shape or checksum is wrong
            DecryptionError: If the checksum passes but decryption or JSON parsing fails
        """
        token = SecureToken.from_wire(raw)

        if key is None:
            raise DecryptionError("Decryption failed: key material unavailable")

        try:
            iv = bytes.fromhex(token.iv)
            ciphertext = base64.b64decode(token.ciphertext, validate=True)
        except (ValueError, binascii.Error):
            raise DecryptionError("Decryption failed: malformed IV or ciphertext encoding")

        payload = AesCbcCipher.decrypt(key, iv, ciphertext)
        if not payload:
            raise DecryptionError("Decryption failed: empty payload")

        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise DecryptionError("Decryption failed: payload is not valid JSON")
