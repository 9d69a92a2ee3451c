"""
Exception classes for envelope store operations.

Every exception carries an ``ErrorKind`` tag so callers can branch on the
failure class without depending on the concrete exception type.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure classes surfaced by the library."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORMAT = "format"
    DECRYPTION = "decryption"
    TRANSPORT = "transport"
    CRYPTO = "crypto"
    CONFIG = "config"

    def __str__(self) -> str:
        return self.value


class EnvelopeStoreError(Exception):
    """Base exception for all envelope store operations."""

    kind: ErrorKind = ErrorKind.TRANSPORT


class NotFoundError(EnvelopeStoreError):
    """A record, client or access key does not exist (or is not visible)."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, resource: Optional[str] = None) -> None:
        super().__init__(message)
        self.resource = resource


class ConflictError(EnvelopeStoreError):
    """Record version is stale, or a create-only write found an existing entry."""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, resource: Optional[str] = None) -> None:
        super().__init__(message)
        self.resource = resource


class FormatError(EnvelopeStoreError):
    """Malformed wire ciphertext or interchange structure."""

    kind = ErrorKind.FORMAT


class DecryptionError(EnvelopeStoreError):
    """Authentication tag check failed (wrong key, tampering or corruption)."""

    kind = ErrorKind.DECRYPTION


class CryptoError(EnvelopeStoreError):
    """Invalid input to a cryptographic primitive (key size and the like)."""

    kind = ErrorKind.CRYPTO


class ConfigError(EnvelopeStoreError):
    """Configuration error."""

    kind = ErrorKind.CONFIG


class TransportError(EnvelopeStoreError):
    """Storage Service failure that cannot be recovered locally."""

    kind = ErrorKind.TRANSPORT


class ServiceError(TransportError):
    """
    Raw failure reported by a Storage Service implementation.

    ``status`` follows HTTP conventions (404 missing, 409 version conflict,
    410 gone, 403 forbidden, 500 backend failure).
    """

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(f"[{status}] {message}" if message else f"[{status}]")
        self.status = status


def translate_service_error(
    err: ServiceError, resource: str, message: Optional[str] = None
) -> EnvelopeStoreError:
    """
    Map a service status onto the error taxonomy.

    Args:
        err: Error raised by the Storage Service
        resource: Name of the resource being accessed ("record", "client", ...)
        message: Optional message replacing the service's own

    Returns:
        NotFoundError, ConflictError or TransportError
    """
    text = message or str(err)
    if err.status in (404, 410):
        return NotFoundError(text, resource)
    if err.status == 409:
        return ConflictError(text, resource)
    return TransportError(text)
