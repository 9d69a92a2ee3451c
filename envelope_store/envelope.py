"""
Field-level envelope encryption.

Each field is sealed under its own random data key; the data key is sealed
under the record's access key. A field's wire value is

    base64url(wrapped_dk) "." base64url(dk_nonce) "." base64url(field_ct) "." base64url(field_nonce)

so any reader holding the access key can recover every field, and a leaked
data key exposes exactly one field.
"""

from __future__ import annotations

from typing import Dict

from .crypto import (
    NONCE_SIZE,
    AesGcmCipher,
    base64url_decode,
    base64url_encode,
    random_key,
    random_nonce,
)
from .errors import FormatError
from .types import FieldValue, Record

WIRE_SEGMENTS: int = 4


def encrypt_field(value: FieldValue, access_key: bytes) -> str:
    """
    Encrypt one field value under a fresh data key.

    Args:
        value: Plaintext bytes (``str`` is encoded as UTF-8)
        access_key: 32-byte access key used to wrap the data key

    Returns:
        4-segment wire string
    """
    plaintext = value.encode("utf-8") if isinstance(value, str) else value

    dk = random_key()
    ef_nonce = random_nonce()
    ef = AesGcmCipher.seal(dk, ef_nonce, plaintext)

    edk_nonce = random_nonce()
    edk = AesGcmCipher.seal(access_key, edk_nonce, dk)

    return ".".join(
        (
            base64url_encode(edk),
            base64url_encode(edk_nonce),
            base64url_encode(ef),
            base64url_encode(ef_nonce),
        )
    )


def decrypt_field(wire: str, access_key: bytes) -> bytes:
    """
    Decrypt one wire value.

    Raises:
        FormatError: If the value is not 4 valid base64url segments
        DecryptionError: If either layer fails authentication
    """
    if not isinstance(wire, str):
        raise FormatError("Invalid ciphertext passed to decryption routine.")

    segments = wire.split(".")
    if len(segments) != WIRE_SEGMENTS:
        raise FormatError(
            f"Invalid ciphertext passed to decryption routine: "
            f"expected {WIRE_SEGMENTS} segments, got {len(segments)}"
        )

    edk, edk_nonce, ef, ef_nonce = (base64url_decode(s) for s in segments)
    if len(edk_nonce) != NONCE_SIZE or len(ef_nonce) != NONCE_SIZE:
        raise FormatError("Invalid nonce length in ciphertext")

    dk = AesGcmCipher.open(access_key, edk_nonce, edk)
    return AesGcmCipher.open(dk, ef_nonce, ef)


def encrypt_record(record: Record, access_key: bytes) -> Record:
    """Return a ciphertext copy of a plaintext record. Field order is kept."""
    data: Dict[str, FieldValue] = {
        name: encrypt_field(value, access_key) for name, value in record.data.items()
    }
    return record.with_data(data)


def decrypt_record(record: Record, access_key: bytes) -> Record:
    """
    Return a plaintext copy of a ciphertext record. Field order is kept.

    Fails as a whole on the first bad field; no partial record is returned.
    """
    data: Dict[str, FieldValue] = {
        name: decrypt_field(value, access_key) for name, value in record.data.items()
    }
    return record.with_data(data)
