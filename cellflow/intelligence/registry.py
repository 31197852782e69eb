"""Per-field run bookkeeping for backfill runs.

One entry per `tableId:fieldId` key holds the processing flag and the
cancellation ticket of the run that currently owns the key. Entries live in
process memory only; a restart forgets them.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from cellflow.exceptions import TaskCancelledError


logger = logging.getLogger(__name__)


@dataclass
class RunTicket:
    """Cancellation token of one run."""
    key: str
    generation: int
    cancelled: bool = field(default=False)

    def cancel(self) -> None:
        self.cancelled = True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TaskCancelledError()


class ProcessingRegistry:
    """Tracks the active run per key and cancels superseded runs."""

    def __init__(self):
        self._locks: dict[str, bool] = {}
        self._tickets: dict[str, RunTicket] = {}
        self._generations = itertools.count(1)

    @staticmethod
    def make_key(table_id: str, field_id: str) -> str:
        return f"{table_id}:{field_id}"

    def is_processing(self, key: str) -> bool:
        return self._locks.get(key, False)

    def active_ticket(self, key: str) -> RunTicket | None:
        return self._tickets.get(key)

    def cancel(self, key: str) -> bool:
        """Cancel and forget the run owning a key; returns whether one existed."""
        ticket = self._tickets.pop(key, None)
        self._locks.pop(key, None)
        if ticket is None:
            return False
        ticket.cancel()
        logger.info(f"Cancelled run {ticket.generation} for {key}")
        return True

    def start(self, key: str) -> RunTicket:
        """Supersede any run for the key and register a new one."""
        self.cancel(key)
        ticket = RunTicket(key=key, generation=next(self._generations))
        self._tickets[key] = ticket
        self._locks[key] = True
        return ticket

    def finish(self, ticket: RunTicket) -> None:
        """Drop the key's entry if it still belongs to this ticket."""
        if self._tickets.get(ticket.key) is ticket:
            del self._tickets[ticket.key]
            self._locks.pop(ticket.key, None)

    @contextmanager
    def acquire(self, table_id: str, field_id: str) -> Iterator[RunTicket]:
        """Own the key for the duration of a run; released on every exit path."""
        ticket = self.start(self.make_key(table_id, field_id))
        try:
            yield ticket
        finally:
            self.finish(ticket)

    def __len__(self) -> int:
        return len(self._tickets)
