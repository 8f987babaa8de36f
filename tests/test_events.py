"""Tests for the in-process event bus."""

import asyncio
import logging

import pytest

from canvas_sync.app.core.events import EventBus, Events


class TestEventBus:
    """Tests for subscription and delivery."""

    def test_on_and_emit(self):
        bus = EventBus()
        received = []
        bus.on(Events.PAYLOAD_SAVED, received.append)

        bus.emit(Events.PAYLOAD_SAVED, {"territoryId": "T1"})

        assert received == [{"territoryId": "T1"}]

    def test_string_and_enum_names_match(self):
        bus = EventBus()
        received = []
        bus.on("canvas:saved", received.append)

        bus.emit(Events.PAYLOAD_SAVED, 1)

        assert received == [1]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.on(Events.PAYLOAD_SAVED, received.append)

        unsubscribe()
        bus.emit(Events.PAYLOAD_SAVED, 1)

        assert received == []
        assert bus.listener_count(Events.PAYLOAD_SAVED) == 0

    def test_once_delivers_a_single_time(self):
        bus = EventBus()
        received = []
        bus.once(Events.SAVE_FAILED, received.append)

        bus.emit(Events.SAVE_FAILED, "a")
        bus.emit(Events.SAVE_FAILED, "b")

        assert received == ["a"]

    def test_off_removes_once_listener(self):
        bus = EventBus()
        received = []
        bus.once(Events.SAVE_FAILED, received.append)

        bus.off(Events.SAVE_FAILED, received.append)
        bus.emit(Events.SAVE_FAILED, "a")

        assert received == []

    def test_failing_listener_isolated(self, caplog):
        """A raising listener is logged and the others still run."""
        bus = EventBus()
        received = []

        def broken(data):
            raise RuntimeError("listener bug")

        bus.on(Events.PAYLOAD_DELETED, broken)
        bus.on(Events.PAYLOAD_DELETED, received.append)

        with caplog.at_level(logging.ERROR, logger="canvas_sync.app.core.events"):
            bus.emit(Events.PAYLOAD_DELETED, "T1")

        assert received == ["T1"]
        assert "Error in listener" in caplog.text

    def test_emit_without_listeners(self):
        EventBus().emit(Events.NETWORK_STATUS_CHANGED, {"online": True})

    @pytest.mark.asyncio
    async def test_async_listener(self):
        bus = EventBus()
        received = []

        async def listener(data):
            received.append(data)

        bus.on(Events.RECOVERY_SUCCEEDED, listener)
        bus.emit(Events.RECOVERY_SUCCEEDED, {"territoryId": "T1"})
        await asyncio.sleep(0)

        assert received == [{"territoryId": "T1"}]

    @pytest.mark.asyncio
    async def test_failing_async_listener_logged(self, caplog):
        bus = EventBus()

        async def listener(data):
            raise RuntimeError("async bug")

        bus.on(Events.RECOVERY_GAVE_UP, listener)
        with caplog.at_level(logging.ERROR, logger="canvas_sync.app.core.events"):
            bus.emit(Events.RECOVERY_GAVE_UP, None)
            await asyncio.sleep(0.01)

        assert "Error in async listener" in caplog.text

    def test_clear(self):
        bus = EventBus()
        bus.on(Events.PAYLOAD_SAVED, print)
        bus.once(Events.PAYLOAD_SAVED, print)
        bus.on(Events.SAVE_FAILED, print)

        assert bus.listener_count(Events.PAYLOAD_SAVED) == 2

        bus.clear(Events.PAYLOAD_SAVED)
        assert bus.listener_count(Events.PAYLOAD_SAVED) == 0
        assert bus.listener_count(Events.SAVE_FAILED) == 1

        bus.clear()
        assert bus.listener_count(Events.SAVE_FAILED) == 0
