"""
Tests for Meta and Record serialization.
"""

from __future__ import annotations

import json
from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from envelope_store import FormatError, Meta, Record


def written_meta() -> Meta:
    created = datetime(2024, 5, 1, 12, 30, 15, tzinfo=timezone.utc)
    return Meta.new("w1", "u1", "contact", {"b": "2", "a": "1"}).assigned(
        "rec-1", "v-1", created, created
    )


class TestMeta:
    def test_new_has_no_server_fields(self) -> None:
        meta = Meta.new("w1", "u1", "contact")
        assert meta.record_id is None
        assert meta.version is None
        assert meta.created is None
        assert meta.last_modified is None
        assert meta.plain is None

    def test_to_dict_null_timestamps(self) -> None:
        data = Meta.new("w1", "u1", "contact").to_dict()
        assert data == {
            "record_id": None,
            "writer_id": "w1",
            "user_id": "u1",
            "type": "contact",
            "plain": None,
            "created": None,
            "last_modified": None,
            "version": None,
        }

    def test_round_trip(self) -> None:
        meta = written_meta()
        assert Meta.from_json(meta.to_json()) == meta

    def test_plain_order_preserved(self) -> None:
        decoded = Meta.from_json(written_meta().to_json())
        assert list(decoded.plain) == ["b", "a"]

    def test_timestamps_are_iso8601(self) -> None:
        data = written_meta().to_dict()
        assert data["created"] == "2024-05-01T12:30:15+00:00"

    def test_accepts_zulu_timestamps(self) -> None:
        data = written_meta().to_dict()
        data["created"] = "2024-05-01T12:30:15Z"
        assert Meta.from_dict(data).created == datetime(
            2024, 5, 1, 12, 30, 15, tzinfo=timezone.utc
        )

    def test_missing_required_key(self) -> None:
        data = written_meta().to_dict()
        del data["writer_id"]
        with pytest.raises(FormatError, match="Meta"):
            Meta.from_dict(data)

    def test_invalid_json(self) -> None:
        with pytest.raises(FormatError, match="Meta"):
            Meta.from_json("{not json")

    def test_is_immutable(self) -> None:
        meta = written_meta()
        with pytest.raises(FrozenInstanceError):
            meta.record_id = "other"  # type: ignore[misc]

    def test_record_id_assigned_once(self) -> None:
        meta = written_meta()
        now = datetime.now(timezone.utc)
        assert meta.assigned("rec-1", "v-2", now, now).version == "v-2"
        with pytest.raises(ValueError):
            meta.assigned("rec-2", "v-2", now, now)


class TestRecord:
    def test_round_trip(self) -> None:
        record = Record(written_meta(), {"z": "a.b.c.d", "a": "e.f.g.h"})
        decoded = Record.from_json(record.to_json())
        assert decoded == record
        assert list(decoded.data) == ["z", "a"]

    def test_missing_meta(self) -> None:
        with pytest.raises(FormatError, match="Record"):
            Record.from_dict({"data": {}})

    def test_missing_data(self) -> None:
        with pytest.raises(FormatError, match="Record"):
            Record.from_dict({"meta": written_meta().to_dict()})

    def test_plaintext_record_is_not_serializable(self) -> None:
        with pytest.raises(FormatError):
            Record(written_meta(), {"name": b"alice"}).to_json()

    def test_accessors(self) -> None:
        record = Record(written_meta(), {"name": b"alice", "city": "Oslo"})
        assert record.get("name") == b"alice"
        assert record.text("name") == "alice"
        assert record.get("city") == b"Oslo"
        assert record.text("city") == "Oslo"

    def test_with_data_copies(self) -> None:
        fields = {"name": b"alice"}
        record = Record(written_meta(), {}).with_data(fields)
        fields["name"] = b"mallory"
        assert record.get("name") == b"alice"

    def test_to_dict_shape(self) -> None:
        record = Record(written_meta(), {"name": "a.b.c.d"})
        data = json.loads(record.to_json())
        assert set(data) == {"meta", "data"}
        assert data["meta"]["record_id"] == "rec-1"
