"""SQLModel metadata tables.

Tables:
- TableMeta: user tables and the physical table holding their records
- FieldMeta: columns of a user table, including intelligence options

Record rows live in one physical table per user table; see records.py.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Index
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Table Model
# =============================================================================

class TableMeta(SQLModel, table=True):
    """A user table."""

    __tablename__ = "table_meta"

    id: str = Field(primary_key=True, description="Table ID (tbl...)")
    base_id: str = Field(index=True, description="Base the table belongs to")
    name: str = Field(description="Display name")
    db_table_name: str = Field(unique=True, description="Physical table holding the records")
    created_time: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    deleted_time: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


# =============================================================================
# Field Model
# =============================================================================

class FieldMeta(SQLModel, table=True):
    """A column of a user table."""

    __tablename__ = "field"
    __table_args__ = (
        Index("ix_field_table_created", "table_id", "created_time"),
    )

    id: str = Field(primary_key=True, description="Field ID (fld...)")
    table_id: str = Field(foreign_key="table_meta.id", index=True)
    name: str = Field(description="Display name, unique within a table")
    db_field_name: str = Field(description="Physical column name")
    type: str = Field(default="singleLineText")
    options: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_time: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    deleted_time: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
