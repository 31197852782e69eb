"""Tests for the in-process event emitter."""

import logging

import pytest

from cellflow.events import EventEmitter, Events


class TestEventEmitter:
    """Tests for EventEmitter."""

    @pytest.mark.asyncio
    async def test_emit_runs_listeners(self):
        emitter = EventEmitter()
        received = []

        async def listener(payload):
            received.append(payload)

        emitter.on(Events.TABLE_RECORD_UPDATE, listener)
        emitter.emit("table.record.update", {"id": 1})
        await emitter.drain()

        assert received == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_failing_listener_is_logged(self, caplog):
        emitter = EventEmitter()
        received = []

        async def broken(payload):
            raise RuntimeError("boom")

        async def healthy(payload):
            received.append(payload)

        emitter.on(Events.TABLE_FIELD_CREATE, broken)
        emitter.on(Events.TABLE_FIELD_CREATE, healthy)

        with caplog.at_level(logging.ERROR):
            emitter.emit(Events.TABLE_FIELD_CREATE, "payload")
            await emitter.drain()

        assert received == ["payload"]
        assert "boom" in caplog.text

    @pytest.mark.asyncio
    async def test_drain_waits_for_chained_events(self):
        emitter = EventEmitter()
        received = []

        async def first(payload):
            emitter.emit(Events.OPERATION_RECORDS_CREATE, payload + 1)

        async def second(payload):
            received.append(payload)

        emitter.on(Events.TABLE_RECORD_UPDATE, first)
        emitter.on(Events.OPERATION_RECORDS_CREATE, second)
        emitter.emit(Events.TABLE_RECORD_UPDATE, 1)
        await emitter.drain()

        assert received == [2]

    def test_off_removes_listener(self):
        emitter = EventEmitter()

        async def listener(payload):
            pass

        emitter.on(Events.TABLE_RECORD_UPDATE, listener)
        emitter.off(Events.TABLE_RECORD_UPDATE, listener)

        assert emitter.listener_count(Events.TABLE_RECORD_UPDATE) == 0

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            EventEmitter().on("table.unknown", lambda payload: None)
