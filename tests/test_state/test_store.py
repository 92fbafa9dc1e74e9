"""
Tests for durable instance stores.
"""

from datetime import timedelta

import pytest

from anvilkit.node.types import InstanceRecord, NodeStatus, utc_now
from anvilkit.state.store import InMemoryInstanceStore, InstanceStore, SQLiteInstanceStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        instance_store = InMemoryInstanceStore()
    else:
        instance_store = SQLiteInstanceStore(str(tmp_path / "anvilkit.db"))
    yield instance_store
    instance_store.close()


def _record(instance_id: str, status: NodeStatus = NodeStatus.STARTING, **overrides) -> InstanceRecord:
    values = dict(
        id=instance_id,
        port=8545,
        status=status,
        chain_id=31337,
        started_at=utc_now(),
        pid=1234,
    )
    values.update(overrides)
    return InstanceRecord(**values)


class TestInstanceStore:
    """Behaviour shared by every InstanceStore implementation."""

    def test_protocol(self, store) -> None:
        assert isinstance(store, InstanceStore)

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, store) -> None:
        record = _record("a", forked_from="https://eth.example.org/***")

        await store.upsert("a", record)

        assert await store.get("a") == record
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_upsert_updates_in_place(self, store) -> None:
        record = _record("a")
        await store.upsert("a", record)
        stopped = record.model_copy(
            update={"status": NodeStatus.STOPPED, "stopped_at": utc_now()}
        )

        await store.upsert("a", stopped)

        assert (await store.get("a")).status == NodeStatus.STOPPED
        assert len(await store.list_all()) == 1

    @pytest.mark.asyncio
    async def test_list_by_status(self, store) -> None:
        now = utc_now()
        await store.upsert("old", _record("old", NodeStatus.RUNNING, started_at=now - timedelta(minutes=5)))
        await store.upsert("new", _record("new", NodeStatus.RUNNING, started_at=now))
        await store.upsert("done", _record("done", NodeStatus.STOPPED))

        running = await store.list_by_status(NodeStatus.RUNNING)

        assert [r.id for r in running] == ["new", "old"]
        assert [r.id for r in await store.list_by_status(NodeStatus.ORPHANED)] == []

    @pytest.mark.asyncio
    async def test_list_all_with_status_filter(self, store) -> None:
        now = utc_now()
        await store.upsert("a", _record("a", NodeStatus.STOPPED, started_at=now - timedelta(minutes=2)))
        await store.upsert("b", _record("b", NodeStatus.RUNNING, started_at=now - timedelta(minutes=1)))
        await store.upsert("c", _record("c", NodeStatus.STOPPED, started_at=now))

        assert [r.id for r in await store.list_all()] == ["c", "b", "a"]
        assert [r.id for r in await store.list_all(NodeStatus.STOPPED)] == ["c", "a"]
        assert [r.id for r in await store.list_all(status=NodeStatus.RUNNING)] == ["b"]
        assert await store.list_all(NodeStatus.ERROR) == []

    @pytest.mark.asyncio
    async def test_same_port_reused_across_history(self, store) -> None:
        """A port may appear in many historical records."""
        await store.upsert("a", _record("a", NodeStatus.STOPPED, port=8545))
        await store.upsert("b", _record("b", NodeStatus.RUNNING, port=8545))

        assert len(await store.list_all()) == 2

    @pytest.mark.asyncio
    async def test_mismatched_id(self, store) -> None:
        with pytest.raises(ValueError):
            await store.upsert("other", _record("a"))


class TestSQLiteInstanceStore:
    """SQLite-specific behaviour."""

    @pytest.mark.asyncio
    async def test_in_memory_database(self) -> None:
        store = SQLiteInstanceStore(":memory:")
        try:
            await store.upsert("a", _record("a"))
            assert (await store.get("a")).id == "a"
        finally:
            store.close()

    @pytest.mark.asyncio
    async def test_persists_across_connections(self, tmp_path) -> None:
        path = str(tmp_path / "nested" / "anvilkit.db")
        first = SQLiteInstanceStore(path)
        await first.upsert("a", _record("a", NodeStatus.RUNNING))
        first.close()

        second = SQLiteInstanceStore(path)
        try:
            record = await second.get("a")
            assert record.status == NodeStatus.RUNNING
            assert record.pid == 1234
        finally:
            second.close()
