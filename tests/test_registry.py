"""Tests for the queue registry and the response store."""
import pytest

from replay_queue.queue.models import QueueConfig, QueueEntryRecord, RequestSnapshot
from replay_queue.queue.registry import QUEUE_REGISTRY_KEY, QueueRegistry
from replay_queue.queue.response_store import ResponseStore
from conftest import make_response


class TestQueueRegistry:

    @pytest.mark.asyncio
    async def test_register_is_idempotent_and_ordered(self, store):
        registry = QueueRegistry(store)
        for name in ["forms", "uploads", "forms", "analytics"]:
            await registry.register(name)

        assert await registry.list_all() == ["forms", "uploads", "analytics"]
        assert await store.get(QUEUE_REGISTRY_KEY) == ["forms", "uploads", "analytics"]

    @pytest.mark.asyncio
    async def test_empty_registry(self, store):
        assert await QueueRegistry(store).list_all() == []

    @pytest.mark.asyncio
    async def test_duplicates_in_storage_are_collapsed(self, store):
        await store.put(QUEUE_REGISTRY_KEY, ["a", "b", "a"])
        assert await QueueRegistry(store).list_all() == ["a", "b"]


class TestResponseStore:

    @pytest.mark.asyncio
    async def test_put_attaches_response_to_record(self, store):
        record = QueueEntryRecord.create(
            RequestSnapshot(url="https://api.example.com/forms", method="POST", body="x=1"),
            QueueConfig(),
            1000.0,
        )
        responses = ResponseStore(store)

        updated = await responses.put("entry-1", record, make_response(202, b"accepted"))

        assert updated.response.status == 202
        assert record.response is None
        stored = QueueEntryRecord.from_dict(await store.get("entry-1"))
        assert stored.request.body == "x=1"
        assert stored.response.body == b"accepted"

    @pytest.mark.asyncio
    async def test_get(self, store):
        responses = ResponseStore(store)
        record = QueueEntryRecord.create(RequestSnapshot(url="u", method="GET"), QueueConfig(), 0)
        await store.put("entry-1", record.to_dict())

        assert await responses.get("entry-1") is None
        assert await responses.get("missing") is None

        await responses.put("entry-1", record, make_response(200, b"ok"))
        snapshot = await responses.get("entry-1")
        assert snapshot.status == 200
        assert snapshot.body == b"ok"
