"""
Integration tests for the PostgreSQL Storage Service.

Skipped unless DATABASE_URL is set (environment or .env at the project root).
"""

from __future__ import annotations

import asyncio

import pytest

from envelope_store import (
    ConflictError,
    EncryptedAccessKey,
    NotFoundError,
    Policy,
    PostgresStorageService,
    ServiceError,
)


async def test_write_read_update_delete(make_pg_client) -> None:
    alice = await make_pg_client("alice", "alice@example.com")

    written = await alice.write("contact", {"name": "alice", "city": "Oslo"}, plain={"g": "1"})
    read = await alice.read(written.meta.record_id)
    assert read.text("name") == "alice"
    assert list(read.data) == ["name", "city"]
    assert read.meta.plain == {"g": "1"}
    assert read.meta.version == written.meta.version

    updated = await alice.update(read.with_data({"name": b"alice smith"}))
    assert updated.meta.version != written.meta.version
    with pytest.raises(ConflictError):
        await alice.update(read)

    await alice.delete(written.meta.record_id)
    await alice.delete(written.meta.record_id)
    with pytest.raises(NotFoundError):
        await alice.read(written.meta.record_id)


async def test_share_revoke(make_pg_client, pg_pool) -> None:
    alice = await make_pg_client("alice", "alice@example.com")
    bob = await make_pg_client("bob", "bob@example.com")

    written = await alice.write("contact", {"name": "alice"})
    with pytest.raises(NotFoundError):
        await bob.read(written.meta.record_id)

    await alice.share("contact", "bob@example.com")
    assert (await bob.read(written.meta.record_id)).text("name") == "alice"

    await alice.revoke("contact", "bob", delete_key=True)
    policy = await pg_pool.fetchval(
        "SELECT policy FROM policies WHERE reader_id = 'bob' AND type = 'contact'"
    )
    assert policy == Policy.DENY.value
    with pytest.raises(NotFoundError):
        await bob.read(written.meta.record_id)


async def test_query_paging_and_filters(make_pg_client) -> None:
    alice = await make_pg_client("alice")
    bob = await make_pg_client("bob")

    for i in range(5):
        await alice.write("contact", {"n": str(i)}, plain={"even": str(i % 2 == 0)})
    await bob.write("contact", {"n": "bob"})
    await bob.share("contact", "alice")

    result = alice.query(page_size=2)
    assert [len(p.records) async for p in result.pages()] == [2, 2, 1]
    assert [r.text("n") for r in await result.all()] == ["0", "1", "2", "3", "4"]

    evens = await alice.query(plain={"even": "True"}).all()
    assert [r.text("n") for r in evens] == ["0", "2", "4"]

    everyone = await alice.query(writer="all").all()
    assert sorted(r.text("n") for r in everyone) == ["0", "1", "2", "3", "4", "bob"]


async def test_create_only_access_key(make_pg_client, pg_pool) -> None:
    alice = await make_pg_client("alice")
    service = PostgresStorageService(pg_pool, "alice")
    first = EncryptedAccessKey("x.y", "alice", alice.config.public_key)
    await service.put_access_key("alice", "alice", "alice", "contact", first, overwrite=False)

    with pytest.raises(ServiceError) as info:
        await service.put_access_key(
            "alice", "alice", "alice", "contact",
            EncryptedAccessKey("z.z", "alice", alice.config.public_key),
            overwrite=False,
        )
    assert info.value.status == 409
    assert await service.get_access_key("alice", "alice", "alice", "contact") == first


async def test_concurrent_first_writes_share_one_key(make_pg_client) -> None:
    alice = await make_pg_client("alice")
    one, two = await asyncio.gather(
        alice.write("contact", {"name": "one"}),
        alice.write("contact", {"name": "two"}),
    )
    assert (await alice.read(one.meta.record_id)).text("name") == "one"
    assert (await alice.read(two.meta.record_id)).text("name") == "two"
