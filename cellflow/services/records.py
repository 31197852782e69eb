"""Record read/write service.

Writes go through here so that every change is reported to the event
emitter with its old and new values, keyed by field id.
"""

from __future__ import annotations

import logging
from typing import Any

from cellflow.database.records import RecordRepository
from cellflow.events import EventEmitter, Events
from cellflow.exceptions import NotFoundError
from cellflow.schemas import (
    FieldInfo,
    FieldKeyType,
    FieldValueChange,
    RecordChangeSet,
    RecordData,
    RecordResponse,
    RecordsCreatePayload,
    RecordUpdatePayload,
)
from cellflow.services.tables import FieldService, TableService


logger = logging.getLogger(__name__)


class RecordService:
    """Reads, creates and updates records of user tables."""

    def __init__(
        self,
        table_service: TableService,
        field_service: FieldService,
        repository: RecordRepository,
        emitter: EventEmitter,
    ):
        self._table_service = table_service
        self._field_service = field_service
        self._repository = repository
        self._emitter = emitter

    @staticmethod
    def _resolve_fields(
        fields: list[FieldInfo],
        keys: list[str],
        field_key_type: FieldKeyType,
    ) -> dict[str, FieldInfo]:
        if field_key_type == FieldKeyType.ID:
            lookup = {field.id: field for field in fields}
        else:
            lookup = {field.name: field for field in fields}

        resolved = {}
        for key in keys:
            if key not in lookup:
                raise NotFoundError(f"Field {key!r} not found")
            resolved[key] = lookup[key]
        return resolved

    async def get_record(self, table_id: str, record_id: str) -> RecordResponse:
        """Get one record with its fields keyed by name."""
        meta = await self._table_service.get_table_meta(table_id)
        fields = await self._field_service.get_fields(table_id)
        row = await self._repository.get_record(
            meta.db_table_name, record_id, [field.db_field_name for field in fields]
        )
        if row is None:
            raise NotFoundError(f"Record {record_id} not found in table {table_id}")

        return RecordResponse(
            id=record_id,
            fields={
                field.name: row[field.db_field_name]
                for field in fields
                if row.get(field.db_field_name) is not None
            },
        )

    async def update_record(
        self,
        table_id: str,
        record_id: str,
        fields: dict[str, Any],
        field_key_type: FieldKeyType = FieldKeyType.NAME,
        silent: bool = False,
        user_id: str | None = None,
    ) -> RecordResponse:
        """Update one record.

        Args:
            table_id: Table the record belongs to
            record_id: Record to update
            fields: New cell values keyed by field name or id
            field_key_type: How keys in `fields` address fields
            silent: Skip the record-update event (used for transient values)
            user_id: Acting user, forwarded on the event

        Returns:
            The updated record
        """
        meta = await self._table_service.get_table_meta(table_id)
        all_fields = await self._field_service.get_fields(table_id)
        resolved = self._resolve_fields(all_fields, list(fields), FieldKeyType(field_key_type))

        db_field_names = [field.db_field_name for field in resolved.values()]
        old_row = await self._repository.get_record(meta.db_table_name, record_id, db_field_names)
        if old_row is None:
            raise NotFoundError(f"Record {record_id} not found in table {table_id}")

        await self._repository.update_record(
            meta.db_table_name,
            record_id,
            {field.db_field_name: fields[key] for key, field in resolved.items()},
        )

        if not silent:
            changes = {
                field.id: FieldValueChange(
                    old_value=old_row.get(field.db_field_name),
                    new_value=fields[key],
                )
                for key, field in resolved.items()
            }
            self._emitter.emit(
                Events.TABLE_RECORD_UPDATE,
                RecordUpdatePayload(
                    table_id=table_id,
                    record=RecordChangeSet(id=record_id, fields=changes),
                    user_id=user_id,
                ),
            )

        return RecordResponse(
            id=record_id,
            fields={field.name: fields[key] for key, field in resolved.items()},
        )

    async def create_records(
        self,
        table_id: str,
        records: list[dict[str, Any]],
        user_id: str | None = None,
    ) -> list[RecordData]:
        """Create records from cell values keyed by field id."""
        meta = await self._table_service.get_table_meta(table_id)
        all_fields = await self._field_service.get_fields(table_id)

        rows = []
        for record in records:
            resolved = self._resolve_fields(all_fields, list(record), FieldKeyType.ID)
            rows.append({field.db_field_name: record[key] for key, field in resolved.items()})

        record_ids = await self._repository.insert_records(meta.db_table_name, rows)
        created = [
            RecordData(id=record_id, fields=dict(record))
            for record_id, record in zip(record_ids, records)
        ]
        logger.info(f"Created {len(created)} records in table {table_id}")

        self._emitter.emit(
            Events.OPERATION_RECORDS_CREATE,
            RecordsCreatePayload(table_id=table_id, records=created, user_id=user_id),
        )
        return created
