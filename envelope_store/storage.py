"""
Storage Service abstractions.

This module provides:
- StorageService: Abstract async interface to the remote record store
- InMemoryBackend: Server state shared by in-memory connections, for testing
- InMemoryStorageService: StorageService bound to one authenticated client

The service only ever sees ciphertext records and wrapped access keys.
Failures are raised as ServiceError with HTTP-style status codes; the
client translates them into the library's error taxonomy.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple
from uuid import uuid4

from .errors import ServiceError
from .types import ClientInfo, EncryptedAccessKey, Meta, Policy, Query, QueryPage, Record

logger = logging.getLogger(__name__)

# (writer_id, user_id, reader_id, type)
Scope = Tuple[str, str, str, str]


class StorageService(ABC):
    """
    Abstract interface to the Storage Service.

    Each instance acts on behalf of one authenticated client. All methods
    are async to support both in-memory and networked backends.
    """

    @abstractmethod
    async def get_record(self, record_id: str) -> Record:
        """Get a ciphertext record by ID."""
        ...

    @abstractmethod
    async def create_record(self, record: Record) -> Record:
        """Store a new ciphertext record and return the server's copy."""
        ...

    @abstractmethod
    async def update_record(self, record_id: str, version: str, record: Record) -> Record:
        """Replace a record if ``version`` is still current (409 otherwise)."""
        ...

    @abstractmethod
    async def delete_record(self, record_id: str) -> None:
        """Delete a record."""
        ...

    @abstractmethod
    async def list_records(self, query: Query) -> QueryPage:
        """Get one page of records matching ``query``."""
        ...

    @abstractmethod
    async def get_client_info(self, client_id_or_email: str) -> ClientInfo:
        """Look up a client by ID or discoverable email address."""
        ...

    @abstractmethod
    async def get_access_key(
        self, writer_id: str, user_id: str, reader_id: str, type: str
    ) -> EncryptedAccessKey:
        """Get the access key wrapped for ``reader_id`` under a scope."""
        ...

    @abstractmethod
    async def put_access_key(
        self,
        writer_id: str,
        user_id: str,
        reader_id: str,
        type: str,
        eak: EncryptedAccessKey,
        overwrite: bool = True,
    ) -> None:
        """
        Store an access key wrapped for ``reader_id`` under a scope.

        With ``overwrite=False`` the call only creates: it fails with 409
        if the scope already holds a key for that reader.
        """
        ...

    @abstractmethod
    async def delete_access_key(
        self, writer_id: str, user_id: str, reader_id: str, type: str
    ) -> None:
        """Delete the access key wrapped for ``reader_id`` under a scope."""
        ...

    @abstractmethod
    async def put_policy(
        self, writer_id: str, user_id: str, reader_id: str, type: str, policy: Policy
    ) -> None:
        """Write an allow/deny read policy for ``reader_id``."""
        ...


@dataclass
class _StoredRecord:
    """Internal record row (ciphertext only)."""

    index: int
    record: Record


def matches_query(record: Record, query: Query) -> bool:
    """Apply the record/type/plain filters of a query to one record."""
    meta = record.meta
    if query.record_ids and meta.record_id not in query.record_ids:
        return False
    if query.content_types and meta.type not in query.content_types:
        return False
    if query.plain:
        plain = meta.plain or {}
        if any(plain.get(k) != v for k, v in query.plain.items()):
            return False
    return True


class InMemoryBackend:
    """
    Thread-safe in-memory server state for testing.

    Uses asyncio.Lock for safe concurrent access. Connections obtained from
    ``connect`` share this state and act as different clients.
    """

    def __init__(self) -> None:
        self._records: Dict[str, _StoredRecord] = {}
        self._deleted: Set[str] = set()
        self._clients: Dict[str, ClientInfo] = {}
        self._access_keys: Dict[Scope, EncryptedAccessKey] = {}
        self._policies: Dict[Scope, Policy] = {}
        self._index = 0
        self._lock = asyncio.Lock()

    def register_client(self, info: ClientInfo) -> ClientInfo:
        """Add a client to the directory."""
        self._clients[info.client_id] = info
        return info

    def connect(self, client_id: str) -> InMemoryStorageService:
        """Open a service handle authenticated as ``client_id``."""
        return InMemoryStorageService(self, client_id)

    def policy(self, writer_id: str, user_id: str, reader_id: str, type: str) -> Optional[Policy]:
        """Current policy for a scope, if any."""
        return self._policies.get((writer_id, user_id, reader_id, type))

    def can_read(self, caller: str, meta: Meta) -> bool:
        if caller in (meta.writer_id, meta.user_id):
            return True
        scope = (meta.writer_id, meta.user_id, caller, meta.type)
        return self._policies.get(scope) is Policy.ALLOW

    def _next_index(self) -> int:
        self._index += 1
        return self._index


class InMemoryStorageService(StorageService):
    """StorageService over an InMemoryBackend, acting as one client."""

    def __init__(self, backend: InMemoryBackend, client_id: str) -> None:
        self._backend = backend
        self._client_id = client_id

    @property
    def client_id(self) -> str:
        """Authenticated client ID."""
        return self._client_id

    async def get_record(self, record_id: str) -> Record:
        logger.debug("get_record %s as %s", record_id, self._client_id)
        b = self._backend
        async with b._lock:
            if record_id in b._deleted:
                raise ServiceError(410, f"Record {record_id} is gone")
            stored = b._records.get(record_id)
            if stored is None or not b.can_read(self._client_id, stored.record.meta):
                raise ServiceError(404, f"Record {record_id} not found")
            return stored.record.with_data(stored.record.data)

    async def create_record(self, record: Record) -> Record:
        meta = record.meta
        if meta.writer_id != self._client_id:
            raise ServiceError(403, "Records can only be written by their writer")

        now = datetime.now(timezone.utc)
        stored = Record(
            meta=meta.assigned(str(uuid4()), str(uuid4()), now, now),
            data=dict(record.data),
        )
        b = self._backend
        async with b._lock:
            b._records[stored.meta.record_id] = _StoredRecord(b._next_index(), stored)
        logger.debug("create_record %s as %s", stored.meta.record_id, self._client_id)
        return stored.with_data(stored.data)

    async def update_record(self, record_id: str, version: str, record: Record) -> Record:
        logger.debug("update_record %s@%s as %s", record_id, version, self._client_id)
        b = self._backend
        async with b._lock:
            if record_id in b._deleted:
                raise ServiceError(410, f"Record {record_id} is gone")
            stored = b._records.get(record_id)
            if stored is None:
                raise ServiceError(404, f"Record {record_id} not found")
            current = stored.record.meta
            if current.writer_id != self._client_id:
                raise ServiceError(403, "Records can only be updated by their writer")
            if current.version != version:
                raise ServiceError(409, f"Version {version} of {record_id} is stale")

            meta = Meta(
                writer_id=current.writer_id,
                user_id=current.user_id,
                type=current.type,
                plain=dict(record.meta.plain) if record.meta.plain is not None else None,
                record_id=record_id,
                created=current.created,
                last_modified=datetime.now(timezone.utc),
                version=str(uuid4()),
            )
            updated = Record(meta=meta, data=dict(record.data))
            b._records[record_id] = _StoredRecord(b._next_index(), updated)
            return updated.with_data(updated.data)

    async def delete_record(self, record_id: str) -> None:
        logger.debug("delete_record %s as %s", record_id, self._client_id)
        b = self._backend
        async with b._lock:
            if record_id in b._deleted:
                raise ServiceError(410, f"Record {record_id} is gone")
            stored = b._records.get(record_id)
            if stored is None:
                raise ServiceError(404, f"Record {record_id} not found")
            if stored.record.meta.writer_id != self._client_id:
                raise ServiceError(403, "Records can only be deleted by their writer")
            del b._records[record_id]
            b._deleted.add(record_id)

    async def list_records(self, query: Query) -> QueryPage:
        logger.debug("list_records after %d as %s", query.after_index, self._client_id)
        if query.include_all_writers:
            writers: Optional[List[str]] = None
        elif query.writer_ids:
            writers = list(query.writer_ids)
        else:
            writers = [self._client_id]

        page: List[Record] = []
        last_index = query.after_index
        b = self._backend
        async with b._lock:
            for row in sorted(b._records.values(), key=lambda r: r.index):
                if row.index <= query.after_index:
                    continue
                meta = row.record.meta
                if writers is not None and meta.writer_id not in writers:
                    continue
                if not b.can_read(self._client_id, meta):
                    continue
                if not matches_query(row.record, query):
                    continue
                page.append(row.record.with_data(row.record.data if query.include_data else {}))
                last_index = row.index
                if len(page) >= query.page_size:
                    break

        return QueryPage(records=page, last_index=last_index)

    async def get_client_info(self, client_id_or_email: str) -> ClientInfo:
        b = self._backend
        info = b._clients.get(client_id_or_email)
        if info is None:
            info = next(
                (c for c in b._clients.values() if c.email == client_id_or_email), None
            )
        if info is None:
            raise ServiceError(404, f"Client {client_id_or_email} not found")
        return info

    async def get_access_key(
        self, writer_id: str, user_id: str, reader_id: str, type: str
    ) -> EncryptedAccessKey:
        logger.debug(
            "get_access_key (%s, %s, %s, %s)", writer_id, user_id, reader_id, type
        )
        if reader_id != self._client_id:
            raise ServiceError(403, "Access keys can only be fetched by their reader")
        b = self._backend
        async with b._lock:
            if reader_id not in (writer_id, user_id):
                if b._policies.get((writer_id, user_id, reader_id, type)) is not Policy.ALLOW:
                    raise ServiceError(403, "Reader is not authorized for this type")
            eak = b._access_keys.get((writer_id, user_id, reader_id, type))
        if eak is None:
            raise ServiceError(404, "Access key not found")
        return eak

    async def put_access_key(
        self,
        writer_id: str,
        user_id: str,
        reader_id: str,
        type: str,
        eak: EncryptedAccessKey,
        overwrite: bool = True,
    ) -> None:
        logger.debug(
            "put_access_key (%s, %s, %s, %s)", writer_id, user_id, reader_id, type
        )
        if self._client_id not in (writer_id, user_id):
            raise ServiceError(403, "Only the writer or subject may publish access keys")
        scope = (writer_id, user_id, reader_id, type)
        b = self._backend
        async with b._lock:
            if not overwrite and scope in b._access_keys:
                raise ServiceError(409, "Access key already exists")
            b._access_keys[scope] = eak

    async def delete_access_key(
        self, writer_id: str, user_id: str, reader_id: str, type: str
    ) -> None:
        if self._client_id not in (writer_id, user_id):
            raise ServiceError(403, "Only the writer or subject may delete access keys")
        b = self._backend
        async with b._lock:
            if b._access_keys.pop((writer_id, user_id, reader_id, type), None) is None:
                raise ServiceError(404, "Access key not found")

    async def put_policy(
        self, writer_id: str, user_id: str, reader_id: str, type: str, policy: Policy
    ) -> None:
        logger.debug(
            "put_policy %s (%s, %s, %s, %s)", policy, writer_id, user_id, reader_id, type
        )
        if self._client_id not in (writer_id, user_id):
            raise ServiceError(403, "Only the writer or subject may set policy")
        b = self._backend
        async with b._lock:
            b._policies[(writer_id, user_id, reader_id, type)] = policy
