"""Prompt templating with `{fieldId}` placeholders."""

from __future__ import annotations

import json
from typing import Any

from cellflow.schemas import FieldInfo


def create_field_map(fields: list[FieldInfo]) -> dict[str, str]:
    """Map field id to physical column name."""
    return {field.id: field.db_field_name for field in fields}


def stringify_value(value: Any) -> str:
    """Render a cell value the way it should appear inside a prompt."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(stringify_value(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def replace_placeholders(
    record: dict[str, Any],
    field_map: dict[str, str],
    dynamic_depends: list[str],
    prompt: str,
) -> str:
    """Substitute each dependency placeholder with the record's value.

    Missing or null values become empty strings; placeholders for fields
    not listed in `dynamic_depends` are left untouched.
    """
    for field_id in dynamic_depends:
        db_field_name = field_map.get(field_id)
        value = record.get(db_field_name) if db_field_name else None
        prompt = prompt.replace(f"{{{field_id}}}", stringify_value(value))
    return prompt


def has_missing_dependencies(
    dynamic_depends: list[str],
    field_map: dict[str, str],
    record_data: dict[str, Any],
) -> bool:
    """Whether any dependency's column is absent from the record data."""
    return any(field_map.get(field_id) not in record_data for field_id in dynamic_depends)
