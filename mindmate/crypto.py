"""
Encryption-at-rest wrapping for mindmate.

Every content-bearing write passes through ``Cipher.wrap`` before it is
persisted. Journal content arriving from the device is already encrypted
on the client; the server wraps that ciphertext again with its own key
(double wrapping) so a database dump alone reveals nothing.

Stored format (part of the storage contract)::

    hex(nonce):hex(tag):hex(ciphertext)

AES-256-GCM with a random 128-bit nonce per call and a 128-bit tag.
"""

import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import IntegrityError, StartupConfigError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # bytes (AES-256)
NONCE_LENGTH = 16  # bytes
TAG_LENGTH = 16  # bytes


def generate_key() -> str:
    """Generate a fresh server key as a 64-character hex string."""
    return secrets.token_hex(KEY_LENGTH)


class Cipher:
    """Authenticated symmetric wrap/unwrap of opaque byte strings.

    The key is checked once at construction; a wrong length is a
    StartupConfigError, never a per-call error.

    Args:
        key: Raw 32-byte key.
    """

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise StartupConfigError(
                f"Server encryption key must be exactly {KEY_LENGTH} bytes "
                f"({KEY_LENGTH * 2} hex characters)"
            )
        self._aead = AESGCM(bytes(key))

    @classmethod
    def from_hex(cls, key_hex: str) -> "Cipher":
        """Build a Cipher from the 64-character hex key in process configuration."""
        if not isinstance(key_hex, str) or len(key_hex) != KEY_LENGTH * 2:
            raise StartupConfigError(
                f"SERVER_ENCRYPTION_KEY must be a {KEY_LENGTH * 2}-char hex string ({KEY_LENGTH} bytes)"
            )
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as e:
            raise StartupConfigError("SERVER_ENCRYPTION_KEY is not valid hex") from e
        return cls(key)

    def wrap(self, plaintext: bytes) -> str:
        """Encrypt and authenticate ``plaintext``.

        Returns:
            ``nonce:tag:ciphertext`` with each field hex encoded.
        """
        nonce = secrets.token_bytes(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, bytes(plaintext), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def unwrap(self, wrapped: str) -> bytes:
        """Verify and decrypt a value produced by ``wrap``.

        Raises:
            IntegrityError: If the value is malformed or fails authentication.
                No partially decrypted data is ever returned.
        """
        if not isinstance(wrapped, str):
            raise IntegrityError("Malformed ciphertext format")

        parts = wrapped.split(":")
        if len(parts) != 3:
            raise IntegrityError("Malformed ciphertext format")

        nonce_hex, tag_hex, ciphertext_hex = parts
        try:
            nonce = bytes.fromhex(nonce_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as e:
            raise IntegrityError("Malformed ciphertext format") from e

        if len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
            raise IntegrityError("Malformed ciphertext format")

        try:
            return self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            logger.warning("Ciphertext failed authentication")
            raise IntegrityError("Integrity check failed") from e

    def wrap_text(self, text: str) -> str:
        """Wrap a UTF-8 string (e.g. client-side ciphertext)."""
        return self.wrap(text.encode("utf-8"))

    def unwrap_text(self, wrapped: str) -> str:
        """Unwrap to a UTF-8 string."""
        plaintext = self.unwrap(wrapped)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IntegrityError("Unwrapped content is not valid UTF-8") from e
