"""Tests for queue activity broadcasts."""
import json
from unittest.mock import MagicMock

import pytest

from replay_queue import settings
from replay_queue.broadcast import BroadcastChannel, PostgresBroadcastChannel, make_broadcast_channel


class TestBroadcastChannel:

    def test_listeners_get_a_copy(self, channel):
        received = []

        def tamper(message):
            message["type"] = "changed"
            received.append(message)

        channel.subscribe(tamper)
        channel.subscribe(received.append)
        payload = {"type": "added", "id": "id-1", "url": "https://api.example.com/a"}

        channel.post_message(payload)

        assert payload["type"] == "added"
        assert received[1]["type"] == "added"

    def test_failing_listener_is_skipped(self, channel, messages):
        broken = MagicMock(side_effect=RuntimeError("bug"))
        channel.subscribe(broken)

        channel.post_message({"type": "failed", "id": "id-1", "url": "u"})

        broken.assert_called_once()
        assert len(messages) == 1

    def test_unsubscribe(self, channel):
        received = []
        unsubscribe = channel.subscribe(received.append)
        unsubscribe()
        unsubscribe()

        channel.post_message({"type": "added", "id": "id-1", "url": "u"})

        assert received == []

    def test_default_name(self):
        assert BroadcastChannel().name == settings.BROADCAST_CHANNEL

    @pytest.mark.asyncio
    async def test_drain_waits_for_async_listeners(self, channel):
        done = []

        async def slow(message):
            done.append(message["id"])

        async def broken(message):
            raise RuntimeError("bug")

        channel.subscribe(slow)
        channel.subscribe(broken)
        channel.post_message({"type": "added", "id": "id-1", "url": "u"})
        await channel.drain()

        assert done == ["id-1"]


class TestPostgresBroadcastChannel:

    def test_notifies_synchronously_without_loop(self):
        database = MagicMock()
        channel = PostgresBroadcastChannel("bgqueue", database=database)

        channel.post_message({"type": "added", "id": "id-1", "url": "u"})

        channel_name, payload = database.notify.call_args.args
        assert channel_name == "bgqueue"
        assert json.loads(payload) == {"type": "added", "id": "id-1", "url": "u"}

    @pytest.mark.asyncio
    async def test_notifies_in_background_inside_loop(self):
        database = MagicMock()
        channel = PostgresBroadcastChannel("bgqueue", database=database)

        channel.post_message({"type": "failed", "id": "id-1", "url": "u"})
        await channel.drain()

        database.notify.assert_called_once()

    def test_notify_errors_do_not_escape(self):
        database = MagicMock()
        database.notify.side_effect = RuntimeError("connection refused")
        channel = PostgresBroadcastChannel("bgqueue", database=database)

        channel.post_message({"type": "added", "id": "id-1", "url": "u"})


def test_factory_picks_channel_by_configuration(monkeypatch):
    assert type(make_broadcast_channel()) is BroadcastChannel

    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://localhost/replay")
    assert isinstance(make_broadcast_channel("custom"), PostgresBroadcastChannel)
