"""AES-256-GCM envelope for document bodies at rest.

Each document is sealed with a fresh 16-byte IV drawn from the OS CSPRNG.
The 16-byte GCM tag is stored separately from the ciphertext so the
documents table can keep (content, iv, auth_tag) as three columns.
"""

import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_LENGTH = 32  # 256 bits
IV_LENGTH = 16  # 128 bits
AUTH_TAG_LENGTH = 16  # 128 bits
PDF_MAGIC = b"%PDF"


class CryptoError(Exception):
    """Base class for envelope failures."""


class CryptoAuthError(CryptoError):
    """The authentication tag did not verify (wrong key or tampered data)."""


class CryptoShapeError(CryptoError):
    """IV or tag has the wrong length."""


class Envelope:
    """Seals and opens document bodies under one process-wide key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes long")
        self._aead = AESGCM(key)

    def seal(self, plaintext: bytes) -> tuple[bytes, bytes, bytes]:
        """Encrypt a document body.

        Returns:
            (ciphertext, iv, auth_tag)
        """
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = self._aead.encrypt(iv, bytes(plaintext), None)
        return sealed[:-AUTH_TAG_LENGTH], iv, sealed[-AUTH_TAG_LENGTH:]

    def open(self, ciphertext: bytes, iv: bytes, auth_tag: bytes) -> bytes:
        """Decrypt and authenticate a document body.

        Raises:
            CryptoShapeError: If iv or auth_tag has the wrong length.
            CryptoAuthError: If the tag does not verify.
        """
        if iv is None or len(iv) != IV_LENGTH:
            raise CryptoShapeError(f"Invalid IV length. Expected {IV_LENGTH} bytes")
        if auth_tag is None or len(auth_tag) != AUTH_TAG_LENGTH:
            raise CryptoShapeError(f"Invalid auth tag length. Expected {AUTH_TAG_LENGTH} bytes")
        try:
            return self._aead.decrypt(bytes(iv), bytes(ciphertext) + bytes(auth_tag), None)
        except InvalidTag:
            raise CryptoAuthError("Invalid authentication tag or corrupted data")


def is_valid_pdf(data: bytes) -> bool:
    """True if the buffer starts with the %PDF header."""
    return bytes(data[:4]) == PDF_MAGIC
