"""
Client façade for the envelope store.

Client orchestrates record operations against a StorageService: records are
encrypted before they are handed to the service and decrypted after they come
back, using access keys resolved per (writer, subject, type) scope.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from .access_keys import AccessKeyResolver
from .config import Config
from .envelope import decrypt_record, encrypt_record
from .errors import ServiceError, translate_service_error
from .query import QueryResult
from .sharing import SharingController
from .storage import StorageService
from .types import DEFAULT_QUERY_COUNT, ClientInfo, FieldValue, Meta, Query, Record

logger = logging.getLogger(__name__)

ALL_WRITERS = "all"

Selector = Optional[Union[str, List[str]]]


def _as_list(value: Selector) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class Client:
    """
    Core client used to read, write and share encrypted records.

    Args:
        config: Client identity and key material
        service: Storage Service acting as that client
    """

    def __init__(self, config: Config, service: StorageService) -> None:
        self._config = config
        self._service = service
        self._access_keys = AccessKeyResolver(config, service)
        self._sharing = SharingController(config, service, self._access_keys)

    @property
    def config(self) -> Config:
        """Read-only client configuration."""
        return self._config

    @property
    def service(self) -> StorageService:
        """Storage Service through which calls are made."""
        return self._service

    @property
    def access_keys(self) -> AccessKeyResolver:
        return self._access_keys

    async def client_info(self, client_id: str) -> ClientInfo:
        """
        Retrieve information about a client by ID or discoverable email.

        Raises:
            NotFoundError: If no client is found
        """
        try:
            return await self._service.get_client_info(client_id)
        except ServiceError as e:
            raise translate_service_error(
                e, "client", "Could not retrieve info from the server."
            )

    async def client_key(self, client_id: str) -> str:
        """Retrieve the X25519 public key of a known client."""
        if client_id == self._config.client_id:
            return self._config.public_key
        return (await self.client_info(client_id)).public_key

    async def read_raw(self, record_id: str) -> Record:
        """
        Read a record without decrypting it.

        Raises:
            NotFoundError: If the record is missing, deleted or not readable
        """
        try:
            return await self._service.get_record(record_id)
        except ServiceError as e:
            raise translate_service_error(
                e, "record", f"Could not retrieve record {record_id} from the server."
            )

    async def read(self, record_id: str) -> Record:
        """Read a record and decrypt it."""
        return await self.decrypt_record(await self.read_raw(record_id))

    async def write(
        self,
        type: str,
        data: Dict[str, FieldValue],
        plain: Optional[Dict[str, str]] = None,
    ) -> Record:
        """
        Create a new record.

        Args:
            type: Content type with which to associate the record
            data: Field name to plaintext value, encrypted field by field
            plain: Optional string map stored unencrypted with the meta

        Returns:
            The server's copy of the record, decrypted
        """
        writer = self._config.client_id
        record = Record(meta=Meta.new(writer, writer, type, plain), data=dict(data))

        encrypted = await self.encrypt_record(record)
        try:
            stored = await self._service.create_record(encrypted)
        except ServiceError as e:
            raise translate_service_error(e, "record", f"Error while writing record data: {e}")

        logger.debug("Wrote record %s of type %s", stored.meta.record_id, type)
        return await self.decrypt_record(stored)

    async def update(self, record: Record) -> Record:
        """
        Update an existing record with optimistic concurrency.

        The record's ``meta.version`` must be the latest version held by the
        server.

        Returns:
            The updated record, decrypted, carrying its new version

        Raises:
            ConflictError: If the version is stale
            NotFoundError: If the record no longer exists
        """
        record_id = record.meta.record_id
        version = record.meta.version
        if record_id is None or version is None:
            raise ValueError("Only records that have been written can be updated")

        encrypted = await self.encrypt_record(record)
        try:
            stored = await self._service.update_record(record_id, version, encrypted)
        except ServiceError as e:
            if e.status == 409:
                raise translate_service_error(e, "record", f"Conflict updating record ID {record_id}")
            raise translate_service_error(e, "record", f"Error while updating record {record_id}: {e}")

        logger.debug("Updated record %s to version %s", record_id, stored.meta.version)
        return await self.decrypt_record(stored)

    async def delete(self, record_id: str) -> None:
        """Delete a record. Deleting a missing record is not an error."""
        try:
            await self._service.delete_record(record_id)
        except ServiceError as e:
            if e.status in (404, 410):
                # Never existed, or already gone
                return
            raise translate_service_error(e, "record", f"Error while deleting record data: {e}")

    def query(
        self,
        data: bool = True,
        raw: bool = False,
        writer: Selector = None,
        record: Selector = None,
        type: Selector = None,
        plain: Optional[Dict[str, str]] = None,
        page_size: int = DEFAULT_QUERY_COUNT,
    ) -> QueryResult:
        """
        Query records according to a set of selection criteria.

        The default is every record written by the current client. Pass a
        writer ID or list of IDs as ``writer`` to select other writers, or
        ``"all"`` for every writer that has shared with this client.

        Args:
            data: Include field data in results
            raw: Skip decryption of field data
            writer: Writer ID, list of writer IDs, or "all"
            record: Record ID or list of record IDs
            type: Record type or list of types
            plain: Plaintext meta that must match exactly
            page_size: Number of records fetched per request
        """
        all_writers = writer == ALL_WRITERS
        query = Query(
            include_data=data,
            writer_ids=[] if all_writers else _as_list(writer),
            record_ids=_as_list(record),
            content_types=_as_list(type),
            plain=dict(plain) if plain is not None else None,
            page_size=page_size,
            include_all_writers=all_writers,
        )
        return QueryResult(self, query, raw)

    async def share(self, type: str, reader_id: str) -> None:
        """Grant another client read access to records of a type."""
        await self._sharing.share(type, reader_id)

    async def revoke(self, type: str, reader_id: str, delete_key: bool = False) -> None:
        """Revoke another client's read access to records of a type."""
        await self._sharing.revoke(type, reader_id, delete_key=delete_key)

    async def encrypt_record(self, record: Record) -> Record:
        """Encrypt a plaintext record, creating its access key if needed."""
        meta = record.meta
        ak = await self._access_keys.resolve(
            meta.writer_id, meta.user_id, self._config.client_id, meta.type
        )
        return encrypt_record(record, ak)

    async def decrypt_record(self, record: Record) -> Record:
        """Fetch the access key for a record's type and decrypt it."""
        meta = record.meta
        ak = await self._access_keys.fetch(
            meta.writer_id, meta.user_id, self._config.client_id, meta.type
        )
        return self.decrypt_record_with_key(record, ak)

    @staticmethod
    def decrypt_record_with_key(record: Record, access_key: bytes) -> Record:
        """Decrypt a record with an already known access key."""
        return decrypt_record(record, access_key)
