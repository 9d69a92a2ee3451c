"""
Tests for record queries and paging.
"""

from __future__ import annotations

from envelope_store import Client, Query


async def test_default_query_returns_own_records(alice: Client, bob: Client) -> None:
    await alice.write("contact", {"name": "a1"})
    await alice.write("note", {"body": "a2"})
    await bob.write("contact", {"name": "b1"})

    records = await alice.query().all()
    assert sorted(r.meta.writer_id for r in records) == ["alice", "alice"]
    assert {r.meta.type for r in records} == {"contact", "note"}


async def test_paging_visits_every_record_once(alice: Client) -> None:
    written = [await alice.write("contact", {"n": str(i)}) for i in range(7)]

    result = alice.query(page_size=3)
    pages = [page async for page in result.pages()]
    assert [len(p.records) for p in pages] == [3, 3, 1]

    records = await result.all()
    assert [r.meta.record_id for r in records] == [w.meta.record_id for w in written]
    assert [r.text("n") for r in records] == [str(i) for i in range(7)]


async def test_filter_by_type_record_and_plain(alice: Client) -> None:
    first = await alice.write("contact", {"name": "a"}, plain={"group": "work"})
    await alice.write("contact", {"name": "b"}, plain={"group": "home"})
    await alice.write("note", {"body": "c"}, plain={"group": "work"})

    by_type = await alice.query(type="note").all()
    assert [r.text("body") for r in by_type] == ["c"]

    by_plain = await alice.query(type=["contact"], plain={"group": "work"}).all()
    assert [r.text("name") for r in by_plain] == ["a"]

    by_id = await alice.query(record=first.meta.record_id).all()
    assert [r.meta.record_id for r in by_id] == [first.meta.record_id]


async def test_raw_and_metadata_only(alice: Client) -> None:
    await alice.write("contact", {"name": "a"})

    raw = await alice.query(raw=True).all()
    assert len(raw[0].data["name"].split(".")) == 4

    meta_only = await alice.query(data=False).all()
    assert meta_only[0].data == {}
    assert meta_only[0].meta.type == "contact"


async def test_all_writers_includes_shared(alice: Client, bob: Client, make_client) -> None:
    carol = make_client("carol")
    await bob.write("contact", {"name": "from bob"})
    await carol.write("contact", {"name": "from carol"})
    await alice.write("contact", {"name": "mine"})
    await bob.share("contact", "alice")

    names = sorted(r.text("name") for r in await alice.query(writer="all").all())
    assert names == ["from bob", "mine"]

    only_bob = await alice.query(writer="bob").all()
    assert [r.text("name") for r in only_bob] == ["from bob"]

    # Writers who never shared stay invisible even when named
    assert await alice.query(writer=["carol"]).all() == []


async def test_query_filter_structure(alice: Client) -> None:
    result = alice.query(writer="all", type="contact", page_size=10)
    assert result.query == Query(
        writer_ids=[], content_types=["contact"], page_size=10, include_all_writers=True
    )
    assert result.query.to_dict()["count"] == 10
