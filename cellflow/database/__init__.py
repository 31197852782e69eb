"""Persistence: metadata tables, sessions and physical record tables."""

from cellflow.database.models import FieldMeta, TableMeta
from cellflow.database.records import RecordRepository

__all__ = ["FieldMeta", "RecordRepository", "TableMeta"]
