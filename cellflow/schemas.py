"""Pydantic schemas for all I/O contracts.

These schemas define the contracts between:
- API endpoints and clients (camelCase on the wire)
- Event emitters and listeners
- The intelligence pipeline and its data access layer
- LLM providers
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both camelCase (wire) and snake_case (code) names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Enums
# =============================================================================

class FieldType(str, Enum):
    """Column types supported by the record store."""
    SINGLE_LINE_TEXT = "singleLineText"
    LONG_TEXT = "longText"
    NUMBER = "number"
    CHECKBOX = "checkbox"


class IntelligenceOptionsType(str, Enum):
    """Field types that can hold generated text."""
    SINGLE_LINE_TEXT = "singleLineText"
    LONG_TEXT = "longText"


class IntelligenceMethod(str, Enum):
    """Generation methods available to intelligence fields."""
    TEXT_GENERATION = "textGeneration"


class FieldKeyType(str, Enum):
    """How record payloads address their fields."""
    NAME = "name"
    ID = "id"


class TaskType(str, Enum):
    """AI task categories, each mapped to a configured model."""
    CODING = "coding"
    TRANSLATION = "translation"


# =============================================================================
# Field Schemas
# =============================================================================

class IntelligenceOptions(CamelModel):
    """AI generation settings attached to a field's options."""
    enabled: bool | None = None
    prompt: str | None = None
    type: IntelligenceOptionsType | None = None
    dynamic: bool | None = None
    dynamic_depends: list[str] | None = None
    method: IntelligenceMethod | None = None

    def is_runnable(self) -> bool:
        """Whether a backfill may run with these options."""
        return bool(self.enabled and self.dynamic_depends and self.prompt)


class FieldInfo(CamelModel):
    """Field metadata as seen by the pipeline."""
    id: str
    name: str
    db_field_name: str
    type: FieldType = FieldType.SINGLE_LINE_TEXT
    options: dict[str, Any] = Field(default_factory=dict)

    @property
    def intelligence(self) -> IntelligenceOptions | None:
        raw = (self.options or {}).get("intelligence")
        if not raw:
            return None
        return IntelligenceOptions.model_validate(raw)


class IntelligenceField(CamelModel):
    """An intelligence-enabled field reduced to what ordering and generation need."""
    field_id: str
    intelligence: IntelligenceOptions

    @property
    def depends(self) -> list[str]:
        return self.intelligence.dynamic_depends or []


class TableMetaInfo(CamelModel):
    """Table metadata needed to reach the physical record table."""
    id: str
    base_id: str
    name: str
    db_table_name: str


# =============================================================================
# Change Schemas
# =============================================================================

class CellChange(CamelModel):
    """A single observed cell mutation."""
    field_id: str
    record_id: str
    old_value: Any = None
    new_value: Any = None


@dataclass(frozen=True)
class ValueChange:
    """Old and new value of one cell, stored in a FieldChangeIndex."""
    old_value: Any
    new_value: Any


# field id -> record id -> change
FieldChangeIndex = dict[str, dict[str, ValueChange]]


class GenerationResult(CamelModel):
    """Outcome of generating one record's value."""
    record_id: str
    success: bool
    result: str | None = None


# =============================================================================
# Event Payloads
# =============================================================================

class FieldValueChange(CamelModel):
    """Per-field change carried by a record update event."""
    old_value: Any = None
    new_value: Any = None


class RecordChangeSet(CamelModel):
    """One record's changed fields, keyed by field id."""
    id: str
    fields: dict[str, FieldValueChange] = Field(default_factory=dict)


class RecordUpdatePayload(CamelModel):
    """Payload of a table.record.update event."""
    table_id: str
    record: RecordChangeSet | list[RecordChangeSet]
    user_id: str | None = None


class FieldCreatePayload(CamelModel):
    """Payload of a table.field.create event."""
    table_id: str
    field: FieldInfo | list[FieldInfo]


class RecordData(CamelModel):
    """A record with its cell values keyed by field id."""
    id: str
    fields: dict[str, Any] = Field(default_factory=dict)


class RecordsCreatePayload(CamelModel):
    """Payload of an operation.records.create event."""
    table_id: str
    records: list[RecordData]
    user_id: str | None = None


class UpdateRecordsPayload(CamelModel):
    """Flattened record update handed to the intelligence pipeline."""
    table_id: str
    window_id: str = ""
    user_id: str = ""
    record_ids: list[str] = Field(default_factory=list)
    field_ids: list[str] = Field(default_factory=list)
    cell_contexts: list[CellChange] = Field(default_factory=list)


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class GenerateStreamRequest(CamelModel):
    """API request to stream a generation for a free-form prompt."""
    prompt: str


class GenerateBatchRequest(CamelModel):
    """API request to backfill an intelligence field over a whole table."""
    table_id: str
    field_id: str
    options: IntelligenceOptions


class GenerateBatchResponse(CamelModel):
    """API response for a scheduled backfill."""
    message: str


class CreateTableRequest(CamelModel):
    """API request to create a table."""
    base_id: str
    name: str


class CreateFieldRequest(CamelModel):
    """API request to create a field."""
    name: str
    type: FieldType = FieldType.SINGLE_LINE_TEXT
    options: dict[str, Any] = Field(default_factory=dict)


class RecordFields(CamelModel):
    """Record cell values in a request body."""
    fields: dict[str, Any] = Field(default_factory=dict)


class UpdateRecordRequest(CamelModel):
    """API request to update one record."""
    record: RecordFields
    field_key_type: FieldKeyType = FieldKeyType.NAME


class CreateRecordsRequest(CamelModel):
    """API request to create records (fields keyed by field id)."""
    records: list[RecordFields]


class RecordResponse(CamelModel):
    """API response for one record (fields keyed by field name)."""
    id: str
    fields: dict[str, Any] = Field(default_factory=dict)


class CreateRecordsResponse(CamelModel):
    """API response for created records."""
    records: list[RecordResponse]


# =============================================================================
# LLM Schemas
# =============================================================================

class LLMMessage(BaseModel):
    """A single message in an LLM conversation."""
    role: Literal["system", "user", "assistant"] = Field(...)
    content: str = Field(...)


class LLMResponse(BaseModel):
    """Response from an LLM provider."""
    content: str | None = None
    model: str
    usage: dict[str, Any] = Field(default_factory=dict)
    finish_reason: str | None = None
