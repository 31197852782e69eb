"""Event listeners that trigger intelligence generation."""

from __future__ import annotations

import logging

from cellflow.events import EventEmitter, Events
from cellflow.intelligence.service import IntelligenceService
from cellflow.schemas import (
    CellChange,
    FieldCreatePayload,
    RecordsCreatePayload,
    RecordUpdatePayload,
    UpdateRecordsPayload,
)


logger = logging.getLogger(__name__)


class IntelligenceTriggerListener:
    """Wires field and record events to the intelligence service.

    While a backfill started by a field creation is running, record update
    events are ignored: the backfill is the one writing them.
    """

    def __init__(self, intelligence_service: IntelligenceService):
        self._service = intelligence_service
        self._field_create_runs = 0

    @property
    def is_field_create_update(self) -> bool:
        return self._field_create_runs > 0

    def register(self, emitter: EventEmitter) -> None:
        emitter.on(Events.TABLE_FIELD_CREATE, self.field_create_listener)
        emitter.on(Events.OPERATION_RECORDS_CREATE, self.record_create_listener)
        emitter.on(Events.TABLE_RECORD_UPDATE, self.record_update_listener)

    async def field_create_listener(self, payload: FieldCreatePayload) -> None:
        if isinstance(payload.field, list):
            return

        field = payload.field
        intelligence = field.intelligence
        if intelligence is None or not intelligence.enabled:
            return

        logger.info(f"Field {field.id} created with intelligence in table {payload.table_id}")
        self._field_create_runs += 1
        try:
            await self._service.trigger_intelligence_create(payload.table_id, field.id, intelligence)
        finally:
            self._field_create_runs -= 1

    async def record_create_listener(self, payload: RecordsCreatePayload) -> None:
        await self._service.trigger_intelligence_create_records(payload)

    async def record_update_listener(self, payload: RecordUpdatePayload) -> None:
        if self.is_field_create_update:
            return

        records = payload.record if isinstance(payload.record, list) else [payload.record]
        cell_contexts = [
            CellChange(
                field_id=field_id,
                record_id=record.id,
                new_value=change.new_value or None,
                old_value=change.old_value or None,
            )
            for record in records
            for field_id, change in record.fields.items()
        ]

        if not cell_contexts:
            return

        await self._service.trigger_intelligence_update_records(
            UpdateRecordsPayload(
                table_id=payload.table_id,
                user_id=payload.user_id or "",
                record_ids=[record.id for record in records],
                field_ids=list(dict.fromkeys(context.field_id for context in cell_contexts)),
                cell_contexts=cell_contexts,
            )
        )
