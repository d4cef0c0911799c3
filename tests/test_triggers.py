"""Tests for one-shot sync triggers."""
from unittest.mock import AsyncMock

import pytest

from replay_queue.errors import ReplayFailedError
from replay_queue.replay.triggers import ARMED_TAGS_KEY, SyncManager, get_sync_manager, reset_sync_manager


class TestSyncManager:

    @pytest.mark.asyncio
    async def test_register_is_idempotent(self, sync_manager, sync_store):
        await sync_manager.register("bgqueue-forms")
        await sync_manager.register("bgqueue-forms")

        assert sync_manager.armed_tags == ["bgqueue-forms"]
        assert await sync_store.get(ARMED_TAGS_KEY) == ["bgqueue-forms"]

    @pytest.mark.asyncio
    async def test_restore_fires_each_armed_tag_once(self, sync_manager):
        handler = AsyncMock()
        sync_manager.on_trigger("bgqueue-forms", handler)
        await sync_manager.register("bgqueue-forms")

        assert await sync_manager.connectivity_restored() == {"bgqueue-forms": True}
        assert await sync_manager.connectivity_restored() == {}

        handler.assert_awaited_once_with("bgqueue-forms")
        assert not sync_manager.is_armed("bgqueue-forms")

    @pytest.mark.asyncio
    async def test_failed_handler_rearms(self, sync_manager):
        handler = AsyncMock(side_effect=ReplayFailedError("forms", [("id-1", OSError("offline"))]))
        sync_manager.on_trigger("bgqueue-forms", handler)
        await sync_manager.register("bgqueue-forms")

        assert await sync_manager.connectivity_restored() == {"bgqueue-forms": False}
        assert sync_manager.is_armed("bgqueue-forms")

        handler.side_effect = None
        assert await sync_manager.connectivity_restored() == {"bgqueue-forms": True}
        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_handler_error_rearms(self, sync_manager):
        sync_manager.on_trigger("bgqueue-forms", AsyncMock(side_effect=RuntimeError("bug")))
        await sync_manager.register("bgqueue-forms")

        await sync_manager.connectivity_restored()

        assert sync_manager.is_armed("bgqueue-forms")

    @pytest.mark.asyncio
    async def test_tag_without_handler_stays_armed(self, sync_manager):
        await sync_manager.register("bgqueue-orphan")

        assert await sync_manager.connectivity_restored() == {"bgqueue-orphan": False}
        assert sync_manager.is_armed("bgqueue-orphan")

    @pytest.mark.asyncio
    async def test_armed_tags_survive_restart(self, sync_store):
        first = SyncManager(sync_store)
        await first.register("bgqueue-forms")
        await first.register("bgqueue:replay-all")

        second = SyncManager(sync_store)
        assert await second.load() == ["bgqueue-forms", "bgqueue:replay-all"]

    @pytest.mark.asyncio
    async def test_restore_persists_disarmed_state(self, sync_manager, sync_store):
        sync_manager.on_trigger("bgqueue-forms", AsyncMock())
        await sync_manager.register("bgqueue-forms")

        await sync_manager.connectivity_restored()

        assert await sync_store.get(ARMED_TAGS_KEY) == []

    @pytest.mark.asyncio
    async def test_in_memory_manager(self):
        manager = SyncManager()
        handler = AsyncMock()
        manager.on_trigger("t", handler)
        await manager.register("t")

        assert await manager.load() == ["t"]
        await manager.connectivity_restored()
        handler.assert_awaited_once()

    def test_process_wide_manager(self):
        manager = get_sync_manager()
        assert get_sync_manager() is manager
        reset_sync_manager()
        assert get_sync_manager() is not manager
