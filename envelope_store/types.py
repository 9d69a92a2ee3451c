"""
Value types exchanged with the Storage Service.

This module provides:
- Meta: record provenance and server-assigned identity
- Record: Meta plus an ordered field map (plaintext bytes or wire ciphertext)
- ClientInfo: directory entry for a client
- EncryptedAccessKey: access key wrapped for one reader
- Policy: authorization policy action
- Query / QueryPage: record listing filter and one page of its results
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import FormatError

FieldValue = Union[bytes, str]

DEFAULT_QUERY_COUNT: int = 100


def _format_date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        # fromisoformat only accepts a trailing "Z" from 3.11 on
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError) as e:
        raise FormatError(f"Invalid ISO-8601 timestamp in Meta: {value!r} ({e})")


def _require(data: Any, keys: List[str], structure: str) -> None:
    if not isinstance(data, dict):
        raise FormatError(f"Invalid {structure}: expected an object")
    missing = [k for k in keys if k not in data]
    if missing:
        raise FormatError(f"Invalid {structure}: missing {', '.join(missing)}")


def _loads(raw: str, structure: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise FormatError(f"Error decoding {structure} JSON: {e}")


@dataclass(frozen=True)
class Meta:
    """
    Meta information attributed to a specific record.

    ``record_id``, ``created``, ``last_modified`` and ``version`` are
    assigned by the server and stay ``None`` until the record is written.
    """

    writer_id: str
    user_id: str
    type: str
    plain: Optional[Dict[str, str]] = None
    record_id: Optional[str] = None
    created: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    version: Optional[str] = None

    @classmethod
    def new(
        cls,
        writer_id: str,
        user_id: str,
        type: str,
        plain: Optional[Dict[str, str]] = None,
    ) -> Meta:
        """Create Meta for a record that has not been written yet."""
        return cls(
            writer_id=writer_id,
            user_id=user_id,
            type=type,
            plain=dict(plain) if plain is not None else None,
        )

    def assigned(
        self,
        record_id: str,
        version: str,
        created: datetime,
        last_modified: datetime,
    ) -> Meta:
        """
        Return a copy carrying server-assigned fields.

        Raises:
            ValueError: If a different record ID was already assigned
        """
        if self.record_id is not None and self.record_id != record_id:
            raise ValueError(
                f"Record ID already assigned: {self.record_id} (got {record_id})"
            )
        return replace(
            self,
            record_id=record_id,
            version=version,
            created=created,
            last_modified=last_modified,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the Meta interchange structure."""
        return {
            "record_id": self.record_id,
            "writer_id": self.writer_id,
            "user_id": self.user_id,
            "type": self.type,
            "plain": dict(self.plain) if self.plain is not None else None,
            "created": _format_date(self.created),
            "last_modified": _format_date(self.last_modified),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Meta:
        """
        Rebuild Meta from its interchange structure.

        Raises:
            FormatError: If required keys are missing or timestamps are invalid
        """
        _require(data, ["writer_id", "user_id", "type"], "Meta")
        plain = data.get("plain")
        return cls(
            writer_id=data["writer_id"],
            user_id=data["user_id"],
            type=data["type"],
            plain=dict(plain) if plain is not None else None,
            record_id=data.get("record_id"),
            created=_parse_date(data.get("created")),
            last_modified=_parse_date(data.get("last_modified")),
            version=data.get("version"),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> Meta:
        return cls.from_dict(_loads(raw, "Meta"))


@dataclass(frozen=True)
class Record:
    """
    A record: Meta plus an ordered map of field name to value.

    Plaintext records hold ``bytes`` (or ``str``, encoded as UTF-8 on
    encryption); ciphertext records hold 4-segment wire strings.
    """

    meta: Meta
    data: Dict[str, FieldValue] = field(default_factory=dict)

    def get(self, name: str) -> bytes:
        """Return a field value as bytes."""
        value = self.data[name]
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    def text(self, name: str) -> str:
        """Return a field value decoded as UTF-8."""
        value = self.data[name]
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def with_data(self, data: Dict[str, FieldValue]) -> Record:
        """Return a copy of this record holding a new field map."""
        return Record(meta=self.meta, data=dict(data))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to ``{"meta": ..., "data": ...}``."""
        return {"meta": self.meta.to_dict(), "data": dict(self.data)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Record:
        """
        Rebuild a Record from its interchange structure.

        Raises:
            FormatError: If ``meta`` or ``data`` is missing
        """
        _require(data, ["meta", "data"], "Record")
        fields = data["data"]
        if fields is None:
            fields = {}
        if not isinstance(fields, dict):
            raise FormatError("Invalid Record: data must be an object")
        return cls(meta=Meta.from_dict(data["meta"]), data=dict(fields))

    def to_json(self) -> str:
        """
        Serialize to JSON.

        Raises:
            FormatError: If the record still holds plaintext bytes
        """
        try:
            return json.dumps(self.to_dict())
        except TypeError as e:
            raise FormatError(f"Record data is not serializable, encrypt it first: {e}")

    @classmethod
    def from_json(cls, raw: str) -> Record:
        return cls.from_dict(_loads(raw, "Record"))


@dataclass(frozen=True)
class ClientInfo:
    """Directory entry for a client."""

    client_id: str
    public_key: str
    email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ClientInfo:
        _require(data, ["client_id", "public_key"], "ClientInfo")
        return cls(
            client_id=data["client_id"],
            public_key=data["public_key"],
            email=data.get("email"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "public_key": self.public_key,
            "email": self.email,
        }


@dataclass(frozen=True)
class EncryptedAccessKey:
    """
    An access key sealed for a single reader.

    ``eak`` is ``base64url(ciphertext) "." base64url(nonce)``; the reader
    opens it with their private key and ``authorizer_public_key``.
    """

    eak: str
    authorizer_id: str
    authorizer_public_key: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EncryptedAccessKey:
        _require(
            data, ["eak", "authorizer_id", "authorizer_public_key"], "EncryptedAccessKey"
        )
        return cls(
            eak=data["eak"],
            authorizer_id=data["authorizer_id"],
            authorizer_public_key=data["authorizer_public_key"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eak": self.eak,
            "authorizer_id": self.authorizer_id,
            "authorizer_public_key": self.authorizer_public_key,
        }


class Policy(Enum):
    """Authorization policy action for a (writer, user, reader, type) scope."""

    ALLOW = "allow"
    DENY = "deny"

    def __str__(self) -> str:
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        """Policy document as stored by the service."""
        return {self.value: [{"read": {}}]}


@dataclass(frozen=True)
class Query:
    """Record selection criteria for ``list_records``."""

    include_data: bool = True
    writer_ids: List[str] = field(default_factory=list)
    record_ids: List[str] = field(default_factory=list)
    content_types: List[str] = field(default_factory=list)
    plain: Optional[Dict[str, str]] = None
    after_index: int = 0
    page_size: int = DEFAULT_QUERY_COUNT
    include_all_writers: bool = False

    def next_page(self, after_index: int) -> Query:
        """Return a copy of this query starting after ``after_index``."""
        return replace(self, after_index=after_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.page_size,
            "include_data": self.include_data,
            "writer_ids": list(self.writer_ids),
            "record_ids": list(self.record_ids),
            "content_types": list(self.content_types),
            "plain": dict(self.plain) if self.plain is not None else None,
            "after_index": self.after_index,
            "include_all_writers": self.include_all_writers,
        }


@dataclass(frozen=True)
class QueryPage:
    """One page of ``list_records`` results."""

    records: List[Record]
    last_index: int
