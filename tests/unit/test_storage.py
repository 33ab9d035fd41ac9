"""
Unit tests for stores and run leases.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from flow_engine.core.errors import LeaseUnavailable
from flow_engine.core.models import DocumentStatus, GraphDocument, Run
from flow_engine.core.state_machine import RunStatus
from flow_engine.storage import InMemoryDocumentStore, InMemoryRunStore, LocalLeaseManager
from flow_engine.storage.redis import RedisLeaseManager

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_run(**overrides) -> Run:
    data = {"document_id": uuid4(), "event_kind": "signup", "current_node_id": "t"}
    data.update(overrides)
    return Run(**data)


class TestInMemoryRunStore:
    """Tests for the in-memory run store."""

    @pytest.mark.asyncio
    async def test_create_and_load(self):
        store = InMemoryRunStore()
        run = make_run(variables={"a": 1})

        await store.create(run)
        loaded = await store.load(run.id)

        assert loaded == run
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_load_missing(self):
        assert await InMemoryRunStore().load(uuid4()) is None

    @pytest.mark.asyncio
    async def test_create_twice_rejected(self):
        store = InMemoryRunStore()
        run = make_run()
        await store.create(run)

        with pytest.raises(ValueError):
            await store.create(run)

    @pytest.mark.asyncio
    async def test_save_unknown_rejected(self):
        with pytest.raises(KeyError):
            await InMemoryRunStore().save(make_run())

    @pytest.mark.asyncio
    async def test_records_are_isolated(self):
        store = InMemoryRunStore()
        run = make_run(variables={"a": 1})
        await store.create(run)

        run.variables["a"] = 2
        loaded = await store.load(run.id)
        loaded.variables["a"] = 3

        assert (await store.load(run.id)).variables == {"a": 1}

    @pytest.mark.asyncio
    async def test_list_waiting_orders_by_due_time(self):
        store = InMemoryRunStore()
        late = make_run(status=RunStatus.WAITING_ON_TIMER, resume_at=T0 + timedelta(seconds=20))
        early = make_run(status=RunStatus.WAITING_ON_TIMER, resume_at=T0 + timedelta(seconds=10))
        future = make_run(status=RunStatus.WAITING_ON_TIMER, resume_at=T0 + timedelta(hours=1))
        running = make_run()
        for run in (late, early, future, running):
            await store.create(run)

        due = await store.list_waiting(T0 + timedelta(seconds=30))

        assert [run.id for run in due] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_list_by_status(self):
        store = InMemoryRunStore()
        failed = make_run(status=RunStatus.FAILED)
        await store.create(failed)
        await store.create(make_run())

        assert [run.id for run in await store.list_by_status(RunStatus.FAILED)] == [failed.id]

    @pytest.mark.asyncio
    async def test_has_runs(self):
        store = InMemoryRunStore()
        run = make_run()
        await store.create(run)

        assert await store.has_runs(run.document_id)
        assert not await store.has_runs(uuid4())


class TestInMemoryDocumentStore:
    """Tests for the in-memory document store."""

    @pytest.mark.asyncio
    async def test_save_overwrites(self):
        store = InMemoryDocumentStore()
        document = GraphDocument(name="first")
        await store.save(document)

        document.name = "second"
        await store.save(document)

        assert (await store.load(document.id)).name == "second"

    @pytest.mark.asyncio
    async def test_list_filters_and_orders(self):
        store = InMemoryDocumentStore()
        older = GraphDocument(name="older", created_at=T0, status=DocumentStatus.ACTIVE)
        newer = GraphDocument(name="newer", created_at=T0 + timedelta(days=1))
        await store.save(newer)
        await store.save(older)

        assert [d.name for d in await store.list_documents()] == ["older", "newer"]
        assert [d.name for d in await store.list_documents(DocumentStatus.ACTIVE)] == ["older"]

    @pytest.mark.asyncio
    async def test_find_active_by_event(self):
        store = InMemoryDocumentStore()
        nodes = [{"id": "t", "type": "trigger", "config": {"eventKind": "signup"}}]
        active = GraphDocument.model_validate({"nodes": nodes, "status": "active"})
        draft = GraphDocument.model_validate({"nodes": nodes})
        await store.save(active)
        await store.save(draft)

        found = await store.find_active_by_event("signup")

        assert [d.id for d in found] == [active.id]
        assert await store.find_active_by_event("other") == []

    @pytest.mark.asyncio
    async def test_delete_unlinks_children(self):
        store = InMemoryDocumentStore()
        parent = GraphDocument(name="v1")
        child = GraphDocument(name="v2", version=2, parent_id=parent.id)
        await store.save(parent)
        await store.save(child)

        assert await store.delete(parent.id) is True
        assert await store.delete(parent.id) is False

        assert await store.load(parent.id) is None
        assert (await store.load(child.id)).parent_id is None


class TestLocalLeaseManager:
    """Tests for in-process run leases."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self):
        leases = LocalLeaseManager()
        run_id = uuid4()

        async with leases.acquire(run_id):
            assert leases.is_held(run_id)
            assert leases.active_count == 1

        assert not leases.is_held(run_id)
        assert leases.active_count == 0

    @pytest.mark.asyncio
    async def test_steps_on_same_run_are_serialized(self):
        leases = LocalLeaseManager()
        run_id = uuid4()
        events = []

        async def step(name):
            async with leases.acquire(run_id):
                events.append(f"{name}:start")
                await asyncio.sleep(0.01)
                events.append(f"{name}:end")

        await asyncio.gather(step("a"), step("b"))

        assert events == ["a:start", "a:end", "b:start", "b:end"]
        assert leases.active_count == 0

    @pytest.mark.asyncio
    async def test_different_runs_do_not_block(self):
        leases = LocalLeaseManager(acquire_timeout=0.1)

        async with leases.acquire(uuid4()):
            async with leases.acquire(uuid4()):
                assert leases.active_count == 2

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        leases = LocalLeaseManager(acquire_timeout=0.05)
        run_id = uuid4()

        async with leases.acquire(run_id):
            with pytest.raises(LeaseUnavailable):
                async with leases.acquire(run_id):
                    pass

        assert leases.active_count == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        leases = LocalLeaseManager()
        run_id = uuid4()

        with pytest.raises(RuntimeError):
            async with leases.acquire(run_id):
                raise RuntimeError("step failed")

        assert not leases.is_held(run_id)


@pytest.fixture
def mock_redis():
    """Create mock Redis client."""
    client = MagicMock()
    client.set = AsyncMock(return_value=True)
    client.register_script = MagicMock(return_value=AsyncMock(return_value=1))
    return client


class TestRedisLeaseManager:
    """Tests for Redis-backed run leases."""

    @pytest.mark.asyncio
    async def test_acquire_sets_key_with_expiry(self, mock_redis):
        leases = RedisLeaseManager(mock_redis, ttl=30.0)
        run_id = uuid4()

        async with leases.acquire(run_id):
            pass

        args, kwargs = mock_redis.set.call_args
        assert args[0] == f"flow:lease:run:{run_id}"
        assert kwargs == {"nx": True, "px": 30000}

    @pytest.mark.asyncio
    async def test_release_uses_token(self, mock_redis):
        leases = RedisLeaseManager(mock_redis)
        release = mock_redis.register_script.return_value
        run_id = uuid4()

        async with leases.acquire(run_id):
            token = mock_redis.set.call_args.args[1]

        release.assert_awaited_once_with(keys=[f"flow:lease:run:{run_id}"], args=[token])

    @pytest.mark.asyncio
    async def test_retries_until_free(self, mock_redis):
        mock_redis.set = AsyncMock(side_effect=[None, None, True])
        leases = RedisLeaseManager(mock_redis, retry_interval=0.001)

        async with leases.acquire(uuid4()):
            pass

        assert mock_redis.set.await_count == 3

    @pytest.mark.asyncio
    async def test_timeout_raises(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=None)
        leases = RedisLeaseManager(mock_redis, acquire_timeout=0.02, retry_interval=0.005)

        with pytest.raises(LeaseUnavailable):
            async with leases.acquire(uuid4()):
                pass

        mock_redis.register_script.return_value.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_lease_is_not_an_error(self, mock_redis):
        mock_redis.register_script = MagicMock(return_value=AsyncMock(return_value=0))
        leases = RedisLeaseManager(mock_redis)

        async with leases.acquire(uuid4()):
            pass
