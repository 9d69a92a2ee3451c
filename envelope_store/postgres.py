"""
PostgreSQL-backed Storage Service.

This module provides:
- SCHEMA: DDL for the service tables
- create_schema: install the tables on a pool
- register_client: add a client to the directory table
- PostgresStorageService: StorageService bound to one client over asyncpg

The database only ever holds ciphertext records, wrapped access keys,
directory entries and policies. Semantics match InMemoryStorageService.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional
from uuid import uuid4

import asyncpg

from .errors import ServiceError
from .storage import StorageService
from .types import ClientInfo, EncryptedAccessKey, Meta, Policy, Query, QueryPage, Record

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE SEQUENCE IF NOT EXISTS record_index_seq;

CREATE TABLE IF NOT EXISTS clients (
    client_id   TEXT PRIMARY KEY,
    email       TEXT UNIQUE,
    public_key  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS records (
    record_id      TEXT PRIMARY KEY,
    idx            BIGINT NOT NULL DEFAULT nextval('record_index_seq'),
    writer_id      TEXT NOT NULL,
    user_id        TEXT NOT NULL,
    type           TEXT NOT NULL,
    plain          JSON,
    data           JSON NOT NULL,
    created        TIMESTAMPTZ NOT NULL,
    last_modified  TIMESTAMPTZ NOT NULL,
    version        TEXT NOT NULL,
    deleted        BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE INDEX IF NOT EXISTS records_idx ON records (idx);
CREATE INDEX IF NOT EXISTS records_writer_type ON records (writer_id, type);

CREATE TABLE IF NOT EXISTS access_keys (
    writer_id              TEXT NOT NULL,
    user_id                TEXT NOT NULL,
    reader_id              TEXT NOT NULL,
    type                   TEXT NOT NULL,
    eak                    TEXT NOT NULL,
    authorizer_id          TEXT NOT NULL,
    authorizer_public_key  TEXT NOT NULL,
    PRIMARY KEY (writer_id, user_id, reader_id, type)
);

CREATE TABLE IF NOT EXISTS policies (
    writer_id  TEXT NOT NULL,
    user_id    TEXT NOT NULL,
    reader_id  TEXT NOT NULL,
    type       TEXT NOT NULL,
    policy     TEXT NOT NULL,
    PRIMARY KEY (writer_id, user_id, reader_id, type)
);
"""

# Readability of record row "r" for the client bound to parameter $1
_READABLE = """
    (r.writer_id = $1 OR r.user_id = $1 OR EXISTS (
        SELECT 1 FROM policies p
        WHERE p.writer_id = r.writer_id AND p.user_id = r.user_id
          AND p.reader_id = $1 AND p.type = r.type AND p.policy = 'allow'))
"""

_RECORD_COLUMNS = """
    r.record_id, r.idx, r.writer_id, r.user_id, r.type, r.plain, r.data,
    r.created, r.last_modified, r.version, r.deleted
"""


async def create_schema(pool: asyncpg.Pool) -> None:
    """Create the service tables if they do not exist."""
    try:
        await pool.execute(SCHEMA)
    except asyncpg.PostgresError as e:
        raise ServiceError(500, f"Failed to create schema: {e}")


async def register_client(pool: asyncpg.Pool, info: ClientInfo) -> ClientInfo:
    """Add or replace a client directory entry."""
    query = """
        INSERT INTO clients (client_id, email, public_key) VALUES ($1, $2, $3)
        ON CONFLICT (client_id) DO UPDATE
        SET email = EXCLUDED.email, public_key = EXCLUDED.public_key
    """
    try:
        await pool.execute(query, info.client_id, info.email, info.public_key)
    except asyncpg.PostgresError as e:
        raise ServiceError(500, f"Failed to register client: {e}")
    return info


class PostgresStorageService(StorageService):
    """
    PostgreSQL Storage Service acting as one client.

    Args:
        pool: asyncpg connection pool
        client_id: Authenticated client ID
    """

    def __init__(self, pool: asyncpg.Pool, client_id: str) -> None:
        self._pool = pool
        self._client_id = client_id

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    @property
    def client_id(self) -> str:
        return self._client_id

    async def get_record(self, record_id: str) -> Record:
        logger.debug("get_record %s as %s", record_id, self._client_id)
        query = f"""
            SELECT {_RECORD_COLUMNS}, {_READABLE} AS readable
            FROM records r WHERE r.record_id = $2
        """
        try:
            row = await self._pool.fetchrow(query, self._client_id, record_id)
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to get record: {e}")

        if row is None or (not row["deleted"] and not row["readable"]):
            raise ServiceError(404, f"Record {record_id} not found")
        if row["deleted"]:
            raise ServiceError(410, f"Record {record_id} is gone")
        return self._row_to_record(row)

    async def create_record(self, record: Record) -> Record:
        meta = record.meta
        if meta.writer_id != self._client_id:
            raise ServiceError(403, "Records can only be written by their writer")

        now = datetime.now(timezone.utc)
        query = f"""
            INSERT INTO records AS r (record_id, writer_id, user_id, type, plain, data,
                                      created, last_modified, version)
            VALUES ($1, $2, $3, $4, $5::json, $6::json, $7, $7, $8)
            RETURNING {_RECORD_COLUMNS}
        """
        try:
            row = await self._pool.fetchrow(
                query,
                str(uuid4()),
                meta.writer_id,
                meta.user_id,
                meta.type,
                _dumps(meta.plain),
                json.dumps(record.data),
                now,
                str(uuid4()),
            )
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to store record: {e}")

        logger.debug("create_record %s as %s", row["record_id"], self._client_id)
        return self._row_to_record(row)

    async def update_record(self, record_id: str, version: str, record: Record) -> Record:
        logger.debug("update_record %s@%s as %s", record_id, version, self._client_id)
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    current = await conn.fetchrow(
                        "SELECT writer_id, version, deleted FROM records "
                        "WHERE record_id = $1 FOR UPDATE",
                        record_id,
                    )
                    if current is None:
                        raise ServiceError(404, f"Record {record_id} not found")
                    if current["deleted"]:
                        raise ServiceError(410, f"Record {record_id} is gone")
                    if current["writer_id"] != self._client_id:
                        raise ServiceError(403, "Records can only be updated by their writer")
                    if current["version"] != version:
                        raise ServiceError(409, f"Version {version} of {record_id} is stale")

                    row = await conn.fetchrow(
                        f"""
                        UPDATE records AS r
                        SET plain = $2::json, data = $3::json, last_modified = $4,
                            version = $5, idx = nextval('record_index_seq')
                        WHERE r.record_id = $1
                        RETURNING {_RECORD_COLUMNS}
                        """,
                        record_id,
                        _dumps(record.meta.plain),
                        json.dumps(record.data),
                        datetime.now(timezone.utc),
                        str(uuid4()),
                    )
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to update record: {e}")

        return self._row_to_record(row)

    async def delete_record(self, record_id: str) -> None:
        logger.debug("delete_record %s as %s", record_id, self._client_id)
        try:
            row = await self._pool.fetchrow(
                "SELECT writer_id, deleted FROM records WHERE record_id = $1", record_id
            )
            if row is None:
                raise ServiceError(404, f"Record {record_id} not found")
            if row["deleted"]:
                raise ServiceError(410, f"Record {record_id} is gone")
            if row["writer_id"] != self._client_id:
                raise ServiceError(403, "Records can only be deleted by their writer")
            # Tombstone keeps the ID answering 410; ciphertext is dropped
            await self._pool.execute(
                "UPDATE records SET deleted = TRUE, data = '{}'::json WHERE record_id = $1",
                record_id,
            )
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to delete record: {e}")

    async def list_records(self, query: Query) -> QueryPage:
        logger.debug("list_records after %d as %s", query.after_index, self._client_id)
        params: List[Any] = [self._client_id, query.after_index]
        conditions = ["NOT r.deleted", "r.idx > $2", _READABLE]

        def param(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if not query.include_all_writers:
            writers = list(query.writer_ids) or [self._client_id]
            conditions.append(f"r.writer_id = ANY({param(writers)}::text[])")
        if query.record_ids:
            conditions.append(f"r.record_id = ANY({param(list(query.record_ids))}::text[])")
        if query.content_types:
            conditions.append(f"r.type = ANY({param(list(query.content_types))}::text[])")
        if query.plain:
            conditions.append(f"r.plain::jsonb @> {param(json.dumps(query.plain))}::jsonb")

        where = " AND ".join(conditions)
        limit = param(query.page_size)
        sql = f"""
            SELECT {_RECORD_COLUMNS} FROM records r
            WHERE {where}
            ORDER BY r.idx
            LIMIT {limit}
        """
        try:
            rows = await self._pool.fetch(sql, *params)
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to list records: {e}")

        records = [self._row_to_record(row, query.include_data) for row in rows]
        last_index = rows[-1]["idx"] if rows else query.after_index
        return QueryPage(records=records, last_index=last_index)

    async def get_client_info(self, client_id_or_email: str) -> ClientInfo:
        try:
            row = await self._pool.fetchrow(
                "SELECT client_id, email, public_key FROM clients "
                "WHERE client_id = $1 OR email = $1",
                client_id_or_email,
            )
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to get client info: {e}")
        if row is None:
            raise ServiceError(404, f"Client {client_id_or_email} not found")
        return ClientInfo(
            client_id=row["client_id"], public_key=row["public_key"], email=row["email"]
        )

    async def get_access_key(
        self, writer_id: str, user_id: str, reader_id: str, type: str
    ) -> EncryptedAccessKey:
        logger.debug(
            "get_access_key (%s, %s, %s, %s)", writer_id, user_id, reader_id, type
        )
        if reader_id != self._client_id:
            raise ServiceError(403, "Access keys can only be fetched by their reader")

        scope = (writer_id, user_id, reader_id, type)
        try:
            if reader_id not in (writer_id, user_id):
                policy = await self._pool.fetchval(
                    "SELECT policy FROM policies WHERE writer_id = $1 AND user_id = $2 "
                    "AND reader_id = $3 AND type = $4",
                    *scope,
                )
                if policy != Policy.ALLOW.value:
                    raise ServiceError(403, "Reader is not authorized for this type")

            row = await self._pool.fetchrow(
                "SELECT eak, authorizer_id, authorizer_public_key FROM access_keys "
                "WHERE writer_id = $1 AND user_id = $2 AND reader_id = $3 AND type = $4",
                *scope,
            )
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to get access key: {e}")

        if row is None:
            raise ServiceError(404, "Access key not found")
        return EncryptedAccessKey(
            eak=row["eak"],
            authorizer_id=row["authorizer_id"],
            authorizer_public_key=row["authorizer_public_key"],
        )

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

        if overwrite:
            on_conflict = """DO UPDATE
            SET eak = EXCLUDED.eak,
                authorizer_id = EXCLUDED.authorizer_id,
                authorizer_public_key = EXCLUDED.authorizer_public_key"""
        else:
            on_conflict = "DO NOTHING"
        query = f"""
            INSERT INTO access_keys (writer_id, user_id, reader_id, type,
                                     eak, authorizer_id, authorizer_public_key)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (writer_id, user_id, reader_id, type) {on_conflict}
        """
        try:
            status = await self._pool.execute(
                query,
                writer_id,
                user_id,
                reader_id,
                type,
                eak.eak,
                eak.authorizer_id,
                eak.authorizer_public_key,
            )
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to store access key: {e}")
        # Status tag is "INSERT 0 <rows>"
        if status.endswith(" 0"):
            raise ServiceError(409, "Access key already exists")

    async def delete_access_key(
        self, writer_id: str, user_id: str, reader_id: str, type: str
    ) -> None:
        if self._client_id not in (writer_id, user_id):
            raise ServiceError(403, "Only the writer or subject may delete access keys")
        try:
            deleted = await self._pool.fetchval(
                "DELETE FROM access_keys WHERE writer_id = $1 AND user_id = $2 "
                "AND reader_id = $3 AND type = $4 RETURNING reader_id",
                writer_id,
                user_id,
                reader_id,
                type,
            )
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to delete access key: {e}")
        if deleted is None:
            raise ServiceError(404, "Access key not found")

    async def put_policy(
        self, writer_id: str, user_id: str, reader_id: str, type: str, policy: Policy
    ) -> None:
        logger.debug(
            "put_policy %s (%s, %s, %s, %s)", policy, writer_id, user_id, reader_id, type
        )
        if self._client_id not in (writer_id, user_id):
            raise ServiceError(403, "Only the writer or subject may set policy")

        query = """
            INSERT INTO policies (writer_id, user_id, reader_id, type, policy)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (writer_id, user_id, reader_id, type) DO UPDATE
            SET policy = EXCLUDED.policy
        """
        try:
            await self._pool.execute(query, writer_id, user_id, reader_id, type, policy.value)
        except asyncpg.PostgresError as e:
            raise ServiceError(500, f"Failed to write policy: {e}")

    @staticmethod
    def _row_to_record(row: asyncpg.Record, include_data: bool = True) -> Record:
        """Convert database row to Record."""
        meta = Meta(
            writer_id=row["writer_id"],
            user_id=row["user_id"],
            type=row["type"],
            plain=json.loads(row["plain"]) if row["plain"] is not None else None,
            record_id=row["record_id"],
            created=row["created"],
            last_modified=row["last_modified"],
            version=row["version"],
        )
        data = json.loads(row["data"]) if include_data else {}
        return Record(meta=meta, data=data)


def _dumps(value: Optional[Any]) -> Optional[str]:
    return json.dumps(value) if value is not None else None
