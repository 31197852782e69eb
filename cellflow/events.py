"""In-process event emitter for table, field and record changes.

Listeners run as background tasks so emitting never blocks the request
that caused the change. Listener failures are logged, not re-raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any


logger = logging.getLogger(__name__)


class Events(str, Enum):
    """Event names emitted by the data services."""
    TABLE_FIELD_CREATE = "table.field.create"
    TABLE_RECORD_UPDATE = "table.record.update"
    OPERATION_RECORDS_CREATE = "operation.records.create"


Listener = Callable[[Any], Awaitable[None]]


class EventEmitter:
    """Dispatches events to registered async listeners."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def on(self, event: Events | str, listener: Listener) -> None:
        """Register a listener for an event."""
        self._listeners[Events(event).value].append(listener)

    def off(self, event: Events | str, listener: Listener) -> None:
        """Remove a previously registered listener."""
        listeners = self._listeners.get(Events(event).value, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: Events | str) -> int:
        return len(self._listeners.get(Events(event).value, []))

    def emit(self, event: Events | str, payload: Any) -> list[asyncio.Task]:
        """Schedule every listener of an event with the given payload.

        Must be called from within a running event loop.
        """
        name = Events(event).value
        tasks = []
        for listener in list(self._listeners.get(name, [])):
            task = asyncio.create_task(self._run(name, listener, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        return tasks

    async def _run(self, name: str, listener: Listener, payload: Any) -> None:
        try:
            await listener(payload)
        except Exception as e:
            logger.exception(f"Listener {getattr(listener, '__qualname__', listener)} failed for {name}: {e}")

    async def drain(self) -> None:
        """Wait until all scheduled listeners, including ones they trigger, have finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# Global emitter instance
_emitter: EventEmitter | None = None


def get_event_emitter() -> EventEmitter:
    """Get or create the process-wide event emitter."""
    global _emitter
    if _emitter is None:
        _emitter = EventEmitter()
    return _emitter
