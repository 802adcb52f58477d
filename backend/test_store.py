from __future__ import annotations

import asyncio

import pytest

from conftest import sample_payload
from ecomap.ir.errors import MapValidationError, NotFound
from ecomap.store.map_store import MapStore, next_timestamp, parse_timestamp


def run_with_store(make_store, scenario):
    async def runner():
        store = make_store()
        await store.init(retries=1, delay=0)
        try:
            return await scenario(store)
        finally:
            await store.close()

    return asyncio.run(runner())


def test_next_timestamp_strictly_increases():
    future = "2999-01-01T00:00:00.000000Z"
    assert next_timestamp(future) == "2999-01-01T00:00:00.000001Z"
    assert parse_timestamp(next_timestamp()) > parse_timestamp("2000-01-01T00:00:00.000000Z")


def test_save_generates_id_and_stamps(make_store):
    async def scenario(store: MapStore):
        return await store.save(sample_payload())

    saved = run_with_store(make_store, scenario)
    assert saved.id
    assert saved.created_at == saved.updated_at


def test_resave_keeps_created_at(make_store):
    async def scenario(store: MapStore):
        first = await store.save(sample_payload(id="m1"))
        second = await store.save({**first.to_document(), "name": "X", "createdAt": "1999-01-01T00:00:00.000000Z"})
        return first, second

    first, second = run_with_store(make_store, scenario)
    assert second.name == "X"
    assert second.created_at == first.created_at
    assert parse_timestamp(second.updated_at) > parse_timestamp(first.updated_at)


def test_invalid_map_is_never_written(make_store):
    async def scenario(store: MapStore):
        bad = sample_payload(id="bad")
        bad["edges"].append({"id": "e3", "source": "cga", "target": "ghost"})
        with pytest.raises(MapValidationError):
            await store.save(bad)
        return await store.get("bad")

    assert run_with_store(make_store, scenario) is None


def test_update_merges_and_bumps(make_store):
    async def scenario(store: MapStore):
        saved = await store.save(sample_payload(id="m1"))
        updated = await store.update("m1", {"name": "Renamed"})
        return saved, updated

    saved, updated = run_with_store(make_store, scenario)
    assert updated.name == "Renamed"
    assert updated.nodes == saved.nodes
    assert updated.edges == saved.edges
    assert updated.created_at == saved.created_at
    assert parse_timestamp(updated.updated_at) > parse_timestamp(saved.updated_at)


def test_update_cannot_introduce_dangling_edge(make_store):
    async def scenario(store: MapStore):
        saved = await store.save(sample_payload(id="m1"))
        with pytest.raises(MapValidationError):
            await store.update("m1", {"nodes": [n.model_dump() for n in saved.nodes if n.id != "cga"]})
        return saved, await store.get("m1")

    saved, after = run_with_store(make_store, scenario)
    assert after == saved


def test_update_rejects_identity_fields(make_store):
    async def scenario(store: MapStore):
        await store.save(sample_payload(id="m1"))
        with pytest.raises(MapValidationError) as exc:
            await store.update("m1", {"createdAt": "x", "colour": "red"})
        return {i.code for i in exc.value.issues}

    assert run_with_store(make_store, scenario) == {"IMMUTABLE_FIELD", "UNKNOWN_FIELD"}


def test_delete_then_update_is_not_found(make_store):
    async def scenario(store: MapStore):
        await store.save(sample_payload(id="m1"))
        assert await store.delete("m1") is True
        assert await store.delete("m1") is False
        with pytest.raises(NotFound):
            await store.update("m1", {"name": "Y"})

    run_with_store(make_store, scenario)


def test_list_is_ordered_by_recency(make_store):
    async def scenario(store: MapStore):
        await store.save(sample_payload(id="a", name="A"))
        await store.save(sample_payload(id="b", name="B"))
        await store.update("a", {"name": "A2"})
        return [m.id for m in await store.list_maps()]

    assert run_with_store(make_store, scenario) == ["a", "b"]


def test_subscription_delivers_full_snapshots(make_store):
    async def scenario(store: MapStore):
        snapshots = []
        subscription = await store.subscribe(snapshots.append)
        saved = await store.save(sample_payload(id="m1"))
        await store.save(sample_payload(id="m2"))

        subscription.unsubscribe()
        subscription.unsubscribe()
        await store.delete("m1")
        return snapshots, saved

    snapshots, saved = run_with_store(make_store, scenario)
    assert snapshots[0] == []
    assert snapshots[1] == [saved]
    assert [m.id for m in snapshots[2]] == ["m2", "m1"]
    assert len(snapshots) == 3


def test_async_listener_and_broken_listener(make_store):
    async def scenario(store: MapStore):
        received = []

        async def listener(snapshot):
            received.append(len(snapshot))

        def broken(snapshot):
            raise RuntimeError("listener bug")

        await store.subscribe(broken)
        await store.subscribe(listener)
        await store.save(sample_payload(id="m1"))
        return received

    assert run_with_store(make_store, scenario) == [0, 1]


def test_unconfigured_store_fails_soft():
    async def scenario():
        store = MapStore(database_url="")
        snapshots = []
        assert store.available is False
        assert await store.init() is False
        assert await store.save(sample_payload()) is None
        assert await store.update("m1", {"name": "Y"}) is None
        assert await store.delete("m1") is False
        assert await store.get("m1") is None
        assert await store.list_maps() == []
        await store.subscribe(snapshots.append)
        await store.close()
        return snapshots

    assert asyncio.run(scenario()) == [[]]


def test_unconfigured_store_still_validates():
    bad = sample_payload()
    bad["nodes"][0]["type"] = "ministry"

    with pytest.raises(MapValidationError):
        asyncio.run(MapStore(database_url="").save(bad))


def test_overlapping_writes_deliver_snapshots_in_commit_order(make_store):
    async def scenario(store: MapStore):
        seen = []

        async def slow_listener(snapshot):
            await asyncio.sleep(0.01)
            seen.append([m.id for m in snapshot])

        await store.subscribe(slow_listener)
        await asyncio.gather(
            store.save(sample_payload(id="m1")),
            store.save(sample_payload(id="m2")),
        )
        return seen, [m.id for m in await store.list_maps()]

    seen, stored = run_with_store(make_store, scenario)
    assert seen[0] == []
    assert seen[-1] == stored
    assert [len(ids) for ids in seen] == sorted(len(ids) for ids in seen)


def test_write_from_inside_listener_does_not_deadlock(make_store):
    async def scenario(store: MapStore):
        seen = []

        async def listener(snapshot):
            seen.append(len(snapshot))
            if len(snapshot) == 1:
                await store.save(sample_payload(id="follow-up"))

        await store.subscribe(listener)
        await asyncio.wait_for(store.save(sample_payload(id="m1")), timeout=5)
        return seen

    assert run_with_store(make_store, scenario) == [0, 1, 2]


def test_unreachable_store_fails_soft(tmp_path):
    async def scenario():
        store = MapStore(database_url=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'maps.db'}")
        assert store.available is True
        saved = await store.save(sample_payload(id="m1"))
        listed = await store.list_maps()
        deleted = await store.delete("m1")
        fetched = await store.get("m1")
        updated = await store.update("m1", {"name": "Y"})
        snapshots = []
        await store.subscribe(snapshots.append)
        await store.close()
        return saved, listed, deleted, fetched, updated, snapshots

    assert asyncio.run(scenario()) == (None, [], False, None, None, [[]])


def test_unreachable_store_init_gives_up():
    store = MapStore(database_url="sqlite+aiosqlite:////nonexistent_dir/maps.db")

    assert asyncio.run(store.init(retries=2, delay=0)) is False
    assert store.available is False
