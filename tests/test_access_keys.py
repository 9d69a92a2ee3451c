"""
Tests for access-key fetch-or-create.
"""

from __future__ import annotations

import asyncio

import pytest

from envelope_store import (
    AccessKeyResolver,
    Client,
    ClientInfo,
    ConflictError,
    Config,
    EncryptedAccessKey,
    NotFoundError,
    ServiceError,
    TransportError,
    base64url_encode,
)
from envelope_store.storage import InMemoryStorageService


async def test_resolve_creates_key_once(alice: Client) -> None:
    resolver = alice.access_keys
    first = await resolver.resolve("alice", "alice", "alice", "contact")
    second = await resolver.resolve("alice", "alice", "alice", "contact")
    assert len(first) == 32
    assert first == second


async def test_keys_are_scoped_by_type(alice: Client) -> None:
    resolver = alice.access_keys
    contact = await resolver.resolve("alice", "alice", "alice", "contact")
    note = await resolver.resolve("alice", "alice", "alice", "note")
    assert contact != note


async def test_fetch_missing_key(alice: Client) -> None:
    with pytest.raises(NotFoundError):
        await alice.access_keys.fetch("alice", "alice", "alice", "never-written")


async def test_published_key_is_wrapped(alice: Client, backend) -> None:
    ak = await alice.access_keys.resolve("alice", "alice", "alice", "contact")
    eak = await backend.connect("alice").get_access_key("alice", "alice", "alice", "contact")
    assert eak.authorizer_id == "alice"
    assert eak.authorizer_public_key == alice.config.public_key
    assert len(eak.eak.split(".")) == 2
    assert base64url_encode(ak) not in eak.eak


async def test_only_reader_can_unwrap(alice: Client) -> None:
    with pytest.raises(ValueError):
        await alice.access_keys.fetch("alice", "alice", "bob", "contact")


async def test_publish_for_unknown_reader(alice: Client) -> None:
    ak = await alice.access_keys.resolve("alice", "alice", "alice", "contact")
    with pytest.raises(NotFoundError):
        await alice.access_keys.publish("alice", "alice", "nobody", "contact", ak)


class FailingService(InMemoryStorageService):
    """Service whose access-key lookups fail with a server error."""

    async def get_access_key(self, writer_id, user_id, reader_id, type) -> EncryptedAccessKey:
        raise ServiceError(500, "backend down")


async def test_other_failures_are_not_masked(backend) -> None:
    config = Config.generate("carol")
    client = Client(config, FailingService(backend, "carol"))
    backend.register_client(ClientInfo("carol", config.public_key))
    with pytest.raises(TransportError):
        await client.access_keys.resolve("carol", "carol", "carol", "contact")
    # Nothing was created on the failing path
    assert not [k for k in backend._access_keys if k[0] == "carol"]


async def test_resolver_standalone(backend) -> None:
    config = Config.generate("dave")
    backend.register_client(ClientInfo("dave", config.public_key))
    resolver = AccessKeyResolver(config, backend.connect("dave"))
    ak = await resolver.resolve("dave", "dave", "dave", "contact")
    assert await resolver.fetch("dave", "dave", "dave", "contact") == ak


class YieldingService(InMemoryStorageService):
    """Service that hands control back to the loop around key lookups."""

    async def get_access_key(self, writer_id, user_id, reader_id, type) -> EncryptedAccessKey:
        await asyncio.sleep(0)
        return await super().get_access_key(writer_id, user_id, reader_id, type)

    async def put_access_key(
        self, writer_id, user_id, reader_id, type, eak, overwrite=True
    ) -> None:
        await asyncio.sleep(0)
        await super().put_access_key(writer_id, user_id, reader_id, type, eak, overwrite)


def yielding_client(backend, client_id: str) -> Client:
    config = Config.generate(client_id)
    backend.register_client(ClientInfo(client_id, config.public_key))
    return Client(config, YieldingService(backend, client_id))


async def test_concurrent_resolve_agrees_on_one_key(backend) -> None:
    client = yielding_client(backend, "erin")
    keys = await asyncio.gather(
        *(client.access_keys.resolve("erin", "erin", "erin", "contact") for _ in range(3))
    )
    assert keys[0] == keys[1] == keys[2]
    assert await client.access_keys.fetch("erin", "erin", "erin", "contact") == keys[0]


async def test_concurrent_first_writes_stay_readable(backend) -> None:
    client = yielding_client(backend, "erin")
    one, two = await asyncio.gather(
        client.write("contact", {"name": "one"}),
        client.write("contact", {"name": "two"}),
    )
    assert (await client.read(one.meta.record_id)).text("name") == "one"
    assert (await client.read(two.meta.record_id)).text("name") == "two"


async def test_create_only_publish_keeps_existing_key(alice: Client) -> None:
    ak = await alice.access_keys.resolve("alice", "alice", "alice", "contact")
    with pytest.raises(ConflictError):
        await alice.access_keys.publish(
            "alice", "alice", "alice", "contact", bytes(32), overwrite=False
        )
    assert await alice.access_keys.fetch("alice", "alice", "alice", "contact") == ak
