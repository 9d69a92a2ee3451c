"""
Envelope Store

Client-side field-level encryption for a remote record store. Records are
encrypted before they leave the process and decrypted only by holders of the
right access key; the Storage Service never sees plaintext.

Overview
--------
- **Data keys** are random per-field keys that encrypt one field value
- **Access keys** wrap data keys and are scoped to (writer, subject, type)
- **Sharing** re-wraps the same access key for a reader's X25519 public key,
  so existing ciphertext becomes readable without re-encryption

Quick Start
-----------
```python
import asyncio
from envelope_store import Client, ClientInfo, Config, InMemoryBackend

async def main():
    backend = InMemoryBackend()
    config = Config.generate("alice-client")
    backend.register_client(ClientInfo(config.client_id, config.public_key))

    client = Client(config, backend.connect(config.client_id))

    # Write and read back an encrypted record
    record = await client.write("contact", {"name": "alice"}, plain={"tag": "x"})
    same = await client.read(record.meta.record_id)
    assert same.text("name") == "alice"

    # Let another client read every "contact" record
    bob = Config.generate("bob-client")
    backend.register_client(ClientInfo(bob.client_id, bob.public_key))
    await client.share("contact", "bob-client")

    reader = Client(bob, backend.connect(bob.client_id))
    shared = await reader.read(record.meta.record_id)
    assert shared.text("name") == "alice"

asyncio.run(main())
```

Modules
-------
- `crypto`: base64url codec, AES-256-GCM and X25519 primitives
- `types`: Meta, Record and the other interchange types
- `envelope`: per-field envelope encryption and the wire format
- `access_keys`: fetch-or-create of access keys
- `sharing`: share / revoke
- `client`: Client façade
- `query`: paged query results
- `storage`: StorageService interface and in-memory backend
- `postgres`: PostgreSQL StorageService backend
- `config`: client configuration
- `errors`: error taxonomy
"""

__version__ = "0.1.0"

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    AesGcmCipher,
    KeyPair,
    base64url_decode,
    base64url_encode,
    box_open,
    box_seal,
    random_key,
    random_nonce,
)

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    ConfigError,
    ConflictError,
    CryptoError,
    DecryptionError,
    EnvelopeStoreError,
    ErrorKind,
    FormatError,
    NotFoundError,
    ServiceError,
    TransportError,
)

# =============================================================================
# Type Exports
# =============================================================================

from .types import (
    DEFAULT_QUERY_COUNT,
    ClientInfo,
    EncryptedAccessKey,
    Meta,
    Policy,
    Query,
    QueryPage,
    Record,
)

# =============================================================================
# Core Exports
# =============================================================================

from .config import Config
from .envelope import decrypt_field, decrypt_record, encrypt_field, encrypt_record
from .access_keys import AccessKeyResolver
from .sharing import SharingController
from .query import QueryResult
from .client import ALL_WRITERS, Client

# =============================================================================
# Storage Exports
# =============================================================================

from .storage import InMemoryBackend, InMemoryStorageService, StorageService
from .postgres import PostgresStorageService, create_schema, register_client

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AES_256_KEY_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "AesGcmCipher",
    "KeyPair",
    "base64url_encode",
    "base64url_decode",
    "box_seal",
    "box_open",
    "random_key",
    "random_nonce",
    # Errors
    "EnvelopeStoreError",
    "ErrorKind",
    "NotFoundError",
    "ConflictError",
    "FormatError",
    "DecryptionError",
    "CryptoError",
    "ConfigError",
    "TransportError",
    "ServiceError",
    # Types
    "DEFAULT_QUERY_COUNT",
    "Meta",
    "Record",
    "ClientInfo",
    "EncryptedAccessKey",
    "Policy",
    "Query",
    "QueryPage",
    # Core
    "Config",
    "encrypt_field",
    "decrypt_field",
    "encrypt_record",
    "decrypt_record",
    "AccessKeyResolver",
    "SharingController",
    "QueryResult",
    "ALL_WRITERS",
    "Client",
    # Storage
    "StorageService",
    "InMemoryBackend",
    "InMemoryStorageService",
    "PostgresStorageService",
    "create_schema",
    "register_client",
]
