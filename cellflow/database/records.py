"""Raw access to the physical record tables.

Every user table owns one physical table with a fixed set of system columns
plus one column per field. Column names are only known at runtime, so
queries are built with SQLAlchemy Core instead of mapped models.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    column,
    func,
    or_,
    select,
    table,
    text,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.schema import CreateTable
from sqlalchemy.types import TypeEngine

from cellflow.schemas import FieldType


logger = logging.getLogger(__name__)

ID_COLUMN = "__id"
AUTO_NUMBER_COLUMN = "__auto_number"

SYSTEM_DB_FIELD_NAMES: tuple[str, ...] = (
    ID_COLUMN,
    AUTO_NUMBER_COLUMN,
    "__created_time",
    "__last_modified_time",
    "__version",
)

COLUMN_TYPES: dict[str, type[TypeEngine]] = {
    FieldType.SINGLE_LINE_TEXT.value: Text,
    FieldType.LONG_TEXT.value: Text,
    FieldType.NUMBER.value: Float,
    FieldType.CHECKBOX.value: Boolean,
}


SYSTEM_COLUMN_TYPES: dict[str, TypeEngine] = {
    "__created_time": DateTime(timezone=True),
    "__last_modified_time": DateTime(timezone=True),
    "__version": Integer(),
}


def generate_record_id() -> str:
    return f"rec{uuid4().hex[:16]}"


def _column(name: str):
    column_type = SYSTEM_COLUMN_TYPES.get(name)
    return column(name, column_type) if column_type is not None else column(name)


class RecordRepository:
    """Queries and writes against physical record tables."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    # =========================================================================
    # DDL
    # =========================================================================

    async def create_table(self, db_table_name: str) -> None:
        """Create a physical record table with the system columns."""
        physical = Table(
            db_table_name,
            MetaData(),
            Column(AUTO_NUMBER_COLUMN, Integer, primary_key=True, autoincrement=True),
            Column(ID_COLUMN, String(64), unique=True, nullable=False),
            Column("__created_time", DateTime(timezone=True), nullable=False),
            Column("__last_modified_time", DateTime(timezone=True)),
            Column("__version", Integer, nullable=False, default=1),
        )
        async with self._session_maker() as session:
            await session.execute(CreateTable(physical))
            await session.commit()

    async def add_column(self, db_table_name: str, db_field_name: str, field_type: str) -> None:
        """Add a field column to a physical record table."""
        column_type = COLUMN_TYPES.get(field_type, Text)()
        async with self._session_maker() as session:
            dialect = session.bind.dialect
            preparer = dialect.identifier_preparer
            type_sql = column_type.compile(dialect=dialect)
            await session.execute(
                text(
                    f"ALTER TABLE {preparer.quote(db_table_name)} "
                    f"ADD COLUMN {preparer.quote(db_field_name)} {type_sql}"
                )
            )
            await session.commit()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_row_count(self, db_table_name: str) -> int:
        """Count all rows of a physical record table."""
        query = select(func.count()).select_from(table(db_table_name))
        async with self._session_maker() as session:
            result = await session.execute(query)
            return int(result.scalar_one())

    async def get_records_by_page(
        self,
        db_table_name: str,
        db_field_names: list[str],
        page: int,
        chunk_size: int,
    ) -> list[dict[str, Any]]:
        """Fetch one page of rows where any of the given columns is non-null.

        Rows carry the given columns plus the system columns and are ordered
        by the auto-number column.
        """
        columns = list(dict.fromkeys([*db_field_names, *SYSTEM_DB_FIELD_NAMES]))
        physical = table(db_table_name, *[_column(name) for name in columns])
        query = select(*[physical.c[name] for name in columns])
        if db_field_names:
            query = query.where(or_(*[physical.c[name].is_not(None) for name in db_field_names]))
        query = (
            query.order_by(physical.c[AUTO_NUMBER_COLUMN])
            .limit(chunk_size)
            .offset(page * chunk_size)
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            return [dict(row) for row in result.mappings().all()]

    async def get_record(
        self,
        db_table_name: str,
        record_id: str,
        db_field_names: list[str],
    ) -> dict[str, Any] | None:
        """Fetch one row by record id."""
        columns = list(dict.fromkeys([*db_field_names, *SYSTEM_DB_FIELD_NAMES]))
        physical = table(db_table_name, *[_column(name) for name in columns])
        query = select(*[physical.c[name] for name in columns]).where(
            physical.c[ID_COLUMN] == record_id
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            row = result.mappings().first()
            return dict(row) if row is not None else None

    # =========================================================================
    # Writes
    # =========================================================================

    async def insert_records(self, db_table_name: str, rows: list[dict[str, Any]]) -> list[str]:
        """Insert rows keyed by column name; returns the new record ids."""
        if not rows:
            return []
        now = datetime.now(timezone.utc)
        values = []
        for row in rows:
            values.append({
                **row,
                ID_COLUMN: row.get(ID_COLUMN) or generate_record_id(),
                "__created_time": now,
                "__version": 1,
            })

        async with self._session_maker() as session:
            for value in values:
                physical = table(db_table_name, *[_column(name) for name in value])
                await session.execute(physical.insert().values(value))
            await session.commit()

        return [value[ID_COLUMN] for value in values]

    async def update_record(
        self,
        db_table_name: str,
        record_id: str,
        values: dict[str, Any],
    ) -> int:
        """Write column values to one row and bump its version.

        Returns:
            Number of rows updated (0 when the record does not exist)
        """
        names = [*values, "__last_modified_time", "__version"]
        physical = table(db_table_name, column(ID_COLUMN), *[_column(name) for name in names])
        query = (
            physical.update()
            .where(physical.c[ID_COLUMN] == record_id)
            .values({
                **values,
                "__last_modified_time": datetime.now(timezone.utc),
                "__version": physical.c["__version"] + 1,
            })
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            await session.commit()
            return result.rowcount
