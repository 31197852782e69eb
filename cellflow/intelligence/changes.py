"""Detect which intelligence fields a batch of cell changes affects."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from cellflow.schemas import (
    CellChange,
    FieldChangeIndex,
    FieldInfo,
    IntelligenceField,
    ValueChange,
)


logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def group_cell_changes_by_field(changes: list[CellChange]) -> FieldChangeIndex:
    """Index changes by field id, then record id.

    Every field seen gets an entry. A record's change is kept when the old
    value is empty (an empty cell getting filled must still trigger) or when
    the value actually changed.
    """
    index: FieldChangeIndex = {}
    for change in changes:
        records = index.setdefault(change.field_id, {})
        if change.old_value is None or change.new_value != change.old_value:
            records[change.record_id] = ValueChange(
                old_value=change.old_value,
                new_value=change.new_value,
            )
    return index


def get_intelligence_fields(fields: list[FieldInfo]) -> list[IntelligenceField]:
    """Keep fields whose intelligence options are enabled.

    Fields with unreadable options are skipped so one bad field does not
    stop generation for the rest of the table.
    """
    result = []
    for field in fields:
        try:
            intelligence = field.intelligence
        except ValidationError as e:
            logger.warning(f"Skipping field {field.id} with invalid intelligence options: {e}")
            continue
        if intelligence is not None and intelligence.enabled:
            result.append(IntelligenceField(field_id=field.id, intelligence=intelligence))
    return result


def get_affected_fields(
    intelligence_fields: list[IntelligenceField],
    index: FieldChangeIndex,
) -> list[IntelligenceField]:
    """Fields with a dependency that received a new, non-empty value."""

    def triggers(depend_id: str) -> bool:
        return any(
            not _is_empty(change.new_value) and change.old_value != change.new_value
            for change in index.get(depend_id, {}).values()
        )

    return [
        field
        for field in intelligence_fields
        if field.intelligence.dynamic_depends
        and any(triggers(depend_id) for depend_id in field.intelligence.dynamic_depends)
    ]


def records_to_process(index: FieldChangeIndex) -> list[str]:
    """Record ids with at least one kept change, in first-seen order."""
    record_ids: dict[str, None] = {}
    for records in index.values():
        for record_id in records:
            record_ids.setdefault(record_id, None)
    return list(record_ids)


def build_record_data(
    record_id: str,
    field_map: dict[str, str],
    index: FieldChangeIndex,
) -> dict[str, Any]:
    """New values of one record's changed fields, keyed by column name."""
    data: dict[str, Any] = {}
    for field_id, records in index.items():
        db_field_name = field_map.get(field_id)
        if db_field_name and record_id in records:
            data[db_field_name] = records[record_id].new_value
    return data
