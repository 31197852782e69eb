"""Table, field and record services."""

from cellflow.services.records import RecordService
from cellflow.services.tables import FieldService, TableService

__all__ = ["FieldService", "RecordService", "TableService"]
