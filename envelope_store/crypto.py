"""
Cryptographic primitives for field-level envelope encryption.

This module provides:
- base64url_encode / base64url_decode: unpadded URL-safe Base64
- random_key / random_nonce: secure random material for AES-256-GCM
- AesGcmCipher: AES-256-GCM seal/open with caller-supplied nonces
- KeyPair: X25519 client identity keys
- box_seal / box_open: public-key wrapping of access keys
"""

from __future__ import annotations

import base64
import binascii
import re
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import CryptoError, DecryptionError, FormatError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits
NONCE_SIZE: int = 12  # 96 bits (standard for AES-GCM)
TAG_SIZE: int = 16  # 128 bits (authentication tag)
X25519_KEY_SIZE: int = 32

BOX_INFO: bytes = b"envelope-store access key v1"

_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


def base64url_encode(data: bytes) -> str:
    """Encode bytes as URL-safe Base64 without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def base64url_decode(raw: str) -> bytes:
    """
    Decode unpadded URL-safe Base64.

    Args:
        raw: Encoded string (padding optional)

    Returns:
        Decoded bytes

    Raises:
        FormatError: If the input is not valid URL-safe Base64
    """
    stripped = raw.rstrip("=")
    if not _BASE64URL_RE.match(stripped) or len(stripped) % 4 == 1:
        raise FormatError("Invalid base64url input")

    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Base64 decode error: {e}")


def random_key() -> bytes:
    """Generate a random AES-256-GCM key."""
    return secrets.token_bytes(AES_256_KEY_SIZE)


def random_nonce() -> bytes:
    """Generate a random AES-256-GCM nonce."""
    return secrets.token_bytes(NONCE_SIZE)


class AesGcmCipher:
    """
    AES-256-GCM authenticated encryption.

    The nonce travels separately from the ciphertext in the record wire
    format, so both operations take it explicitly. Ciphertext includes the
    16-byte authentication tag.
    """

    @staticmethod
    def seal(key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        """
        Encrypt plaintext with AES-256-GCM.

        Raises:
            CryptoError: If key or nonce size is invalid
        """
        _check_sizes(key, nonce)
        return AESGCM(key).encrypt(nonce, plaintext, None)

    @staticmethod
    def open(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
        """
        Decrypt and authenticate ciphertext.

        Raises:
            CryptoError: If key or nonce size is invalid
            DecryptionError: If authentication fails
        """
        _check_sizes(key, nonce)
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag:
            # Generic error to prevent oracle attacks
            raise DecryptionError("Decryption failed")


def _check_sizes(key: bytes, nonce: bytes) -> None:
    if len(key) != AES_256_KEY_SIZE:
        raise CryptoError(
            f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}"
        )
    if len(nonce) != NONCE_SIZE:
        raise CryptoError(
            f"Invalid nonce size: expected {NONCE_SIZE}, got {len(nonce)}"
        )


@dataclass(frozen=True)
class KeyPair:
    """X25519 identity keypair, both halves base64url encoded."""

    public_key: str
    private_key: str

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key!r}, private_key=[REDACTED])"

    @classmethod
    def generate(cls) -> KeyPair:
        """Generate a fresh X25519 keypair."""
        private = X25519PrivateKey.generate()
        private_raw = private.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        public_raw = private.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        return cls(
            public_key=base64url_encode(public_raw),
            private_key=base64url_encode(private_raw),
        )


def _box_key(public_key: str, private_key: str) -> bytes:
    """Derive the symmetric box key shared by two X25519 parties."""
    try:
        public = X25519PublicKey.from_public_bytes(base64url_decode(public_key))
        private = X25519PrivateKey.from_private_bytes(base64url_decode(private_key))
    except ValueError as e:
        raise CryptoError(f"Invalid X25519 key: {e}")

    shared = private.exchange(public)
    return HKDF(
        algorithm=hashes.SHA256(),
        length=AES_256_KEY_SIZE,
        salt=None,
        info=BOX_INFO,
    ).derive(shared)


def box_seal(
    plaintext: bytes, nonce: bytes, recipient_public_key: str, sender_private_key: str
) -> bytes:
    """Encrypt plaintext so only the recipient's private key can open it."""
    key = _box_key(recipient_public_key, sender_private_key)
    return AesGcmCipher.seal(key, nonce, plaintext)


def box_open(
    ciphertext: bytes, nonce: bytes, sender_public_key: str, recipient_private_key: str
) -> bytes:
    """
    Open a box sealed by ``box_seal``.

    Raises:
        DecryptionError: If the box was not sealed for this keypair or was altered
    """
    key = _box_key(sender_public_key, recipient_private_key)
    return AesGcmCipher.open(key, nonce, ciphertext)
