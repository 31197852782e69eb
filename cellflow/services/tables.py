"""Table and field metadata services."""

from __future__ import annotations

import logging
import re
from typing import Any
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from cellflow.database.models import FieldMeta, TableMeta
from cellflow.database.records import RecordRepository
from cellflow.events import EventEmitter, Events
from cellflow.exceptions import NotFoundError
from cellflow.schemas import (
    FieldCreatePayload,
    FieldInfo,
    FieldType,
    IntelligenceOptions,
    TableMetaInfo,
)


logger = logging.getLogger(__name__)


def _short_id(prefix: str) -> str:
    return f"{prefix}{uuid4().hex[:16]}"


def to_db_field_name(name: str, taken: set[str]) -> str:
    """Derive a unique physical column name from a display name."""
    base = re.sub(r"[^0-9A-Za-z_]+", "_", name).strip("_").lower() or "field"
    if base[0].isdigit() or base.startswith("__"):
        base = f"f_{base}"
    candidate = base
    suffix = 1
    while candidate in taken:
        suffix += 1
        candidate = f"{base}_{suffix}"
    return candidate


def _to_field_info(field: FieldMeta) -> FieldInfo:
    return FieldInfo(
        id=field.id,
        name=field.name,
        db_field_name=field.db_field_name,
        type=field.type,
        options=field.options or {},
    )


class TableService:
    """Creates tables and resolves their physical storage."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        repository: RecordRepository,
    ):
        self._session_maker = session_maker
        self._repository = repository

    async def create_table(self, base_id: str, name: str) -> TableMetaInfo:
        table_id = _short_id("tbl")
        meta = TableMeta(
            id=table_id,
            base_id=base_id,
            name=name,
            db_table_name=f"{base_id}_{table_id}".lower(),
        )
        async with self._session_maker() as session:
            session.add(meta)
            await session.commit()

        await self._repository.create_table(meta.db_table_name)
        logger.info(f"Created table {table_id} ({meta.db_table_name})")

        return TableMetaInfo(
            id=meta.id,
            base_id=meta.base_id,
            name=meta.name,
            db_table_name=meta.db_table_name,
        )

    async def get_table_meta(self, table_id: str) -> TableMetaInfo:
        """Get table metadata or raise NotFoundError."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(TableMeta)
                .where(TableMeta.id == table_id)
                .where(TableMeta.deleted_time.is_(None))
            )
            meta = result.scalar_one_or_none()

        if meta is None:
            raise NotFoundError(f"Table {table_id} not found")

        return TableMetaInfo(
            id=meta.id,
            base_id=meta.base_id,
            name=meta.name,
            db_table_name=meta.db_table_name,
        )


class FieldService:
    """Reads and creates field metadata."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        repository: RecordRepository,
        table_service: TableService,
        emitter: EventEmitter,
    ):
        self._session_maker = session_maker
        self._repository = repository
        self._table_service = table_service
        self._emitter = emitter

    async def get_fields(self, table_id: str) -> list[FieldInfo]:
        """Get all live fields of a table in creation order."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(FieldMeta)
                .where(FieldMeta.table_id == table_id)
                .where(FieldMeta.deleted_time.is_(None))
                .order_by(FieldMeta.created_time, FieldMeta.id)
            )
            fields = result.scalars().all()
        return [_to_field_info(field) for field in fields]

    async def get_field(self, table_id: str, field_id: str) -> FieldInfo:
        for field in await self.get_fields(table_id):
            if field.id == field_id:
                return field
        raise NotFoundError(f"Field {field_id} not found in table {table_id}")

    async def create_field(
        self,
        table_id: str,
        name: str,
        type: FieldType = FieldType.SINGLE_LINE_TEXT,
        options: dict[str, Any] | None = None,
    ) -> FieldInfo:
        """Create a field, add its column and emit a field-create event."""
        meta = await self._table_service.get_table_meta(table_id)
        existing = await self.get_fields(table_id)
        if any(field.name == name for field in existing):
            raise ValueError(f"Field name {name!r} already exists in table {table_id}")
        intelligence = (options or {}).get("intelligence")
        if intelligence:
            try:
                IntelligenceOptions.model_validate(intelligence)
            except ValidationError as e:
                raise ValueError(f"Invalid intelligence options for field {name!r}: {e}") from e

        field_type = FieldType(type)
        field = FieldMeta(
            id=_short_id("fld"),
            table_id=table_id,
            name=name,
            db_field_name=to_db_field_name(name, {f.db_field_name for f in existing}),
            type=field_type.value,
            options=options or {},
        )

        await self._repository.add_column(meta.db_table_name, field.db_field_name, field.type)
        async with self._session_maker() as session:
            session.add(field)
            await session.commit()

        info = _to_field_info(field)
        logger.info(f"Created field {info.id} ({info.name}) in table {table_id}")

        self._emitter.emit(
            Events.TABLE_FIELD_CREATE,
            FieldCreatePayload(table_id=table_id, field=info),
        )
        return info
