"""Intelligence service: fills AI-backed fields from prompt templates.

Three entry points:
- trigger_intelligence_create: backfill one field over a whole table
- trigger_intelligence_update_records: regenerate fields whose dependencies changed
- trigger_intelligence_create_records: generate fields for new records

Backfill runs are keyed by `tableId:fieldId`; starting a run cancels the
previous one for the same key. Record-level paths process the fields of a
record one at a time in dependency order, since a later prompt may use a
value generated moments earlier.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from cellflow.config import Settings, get_settings
from cellflow.database.records import ID_COLUMN, RecordRepository
from cellflow.exceptions import TaskCancelledError
from cellflow.intelligence.changes import get_intelligence_fields
from cellflow.intelligence.graph import topological_sort
from cellflow.intelligence.prompt import (
    create_field_map,
    has_missing_dependencies,
    replace_placeholders,
)
from cellflow.intelligence.registry import ProcessingRegistry, RunTicket
from cellflow.intelligence.workflow import build_update_workflow
from cellflow.llm.router import ModelRouter
from cellflow.schemas import (
    FieldInfo,
    GenerationResult,
    IntelligenceField,
    IntelligenceOptions,
    RecordsCreatePayload,
    TaskType,
    UpdateRecordsPayload,
)
from cellflow.services.records import RecordService
from cellflow.services.tables import FieldService, TableService


logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_batches(items: list[T], size: int) -> list[list[T]]:
    """Split a list into consecutive slices of at most `size` items."""
    return [items[i:i + size] for i in range(0, len(items), size)]


@dataclass
class BackfillContext:
    """Everything a backfill batch needs besides the records themselves."""
    table_id: str
    field_id: str
    field_name: str
    field_map: dict[str, str]
    dynamic_depends: list[str]
    prompt: str
    base_id: str
    ticket: RunTicket


class IntelligenceService:
    """Generates intelligence field values and writes them back to records."""

    def __init__(
        self,
        table_service: TableService,
        field_service: FieldService,
        record_service: RecordService,
        repository: RecordRepository,
        router: ModelRouter,
        registry: ProcessingRegistry | None = None,
        settings: Settings | None = None,
    ):
        self._table_service = table_service
        self._field_service = field_service
        self._record_service = record_service
        self._repository = repository
        self._router = router
        self.registry = registry or ProcessingRegistry()

        settings = settings or get_settings()
        self.max_retries = settings.intelligence_max_retries
        self.small_batch_size = settings.intelligence_small_batch_size
        self.batch_delay = settings.intelligence_batch_delay_ms / 1000
        self.retry_base_delay = settings.intelligence_retry_base_delay_ms / 1000
        self.record_batch_size = settings.intelligence_record_batch_size
        self.record_batch_delay = settings.intelligence_record_batch_delay_ms / 1000
        self.chunk_size = settings.calc_chunk_size
        self.thinking_message = settings.intelligence_thinking_text
        self.thinking_failed_message = settings.intelligence_failed_text

        self._update_workflow = build_update_workflow(self).compile()

    # =========================================================================
    # Backfill
    # =========================================================================

    async def trigger_intelligence_create(
        self,
        table_id: str,
        field_id: str,
        options: IntelligenceOptions,
    ) -> None:
        """Generate a field's value for every record of a table.

        Any run already going for the same field is cancelled first. A run
        that gets cancelled itself returns normally; a batch that keeps
        failing after all retries raises.
        """
        with self.registry.acquire(table_id, field_id) as ticket:
            if not options.is_runnable():
                return

            try:
                fields = await self._field_service.get_fields(table_id)
                field_map = create_field_map(fields)
                meta = await self._table_service.get_table_meta(table_id)
                depends = list(options.dynamic_depends or [])
                column_names = [
                    field.db_field_name for field in fields if field.id in {*depends, field_id}
                ]
                field_name = next((field.name for field in fields if field.id == field_id), None)
                if field_name is None:
                    logger.warning(f"Field {field_id} not found in table {table_id}, nothing to generate")
                    return

                context = BackfillContext(
                    table_id=table_id,
                    field_id=field_id,
                    field_name=field_name,
                    field_map=field_map,
                    dynamic_depends=depends,
                    prompt=options.prompt or "",
                    base_id=meta.base_id,
                    ticket=ticket,
                )

                logger.info(f"Starting generation for field {field_id} in table {table_id}")

                async def processor(records: list[dict[str, Any]]) -> None:
                    ticket.raise_if_cancelled()
                    await self._process_record_batch(records, context)

                await self._process_records_in_chunks(meta.db_table_name, column_names, processor)
                logger.info(f"Finished generation for field {field_id} in table {table_id}")
            except TaskCancelledError:
                logger.info(f"Processing cancelled for field {field_id}")

    async def _process_records_in_chunks(
        self,
        db_table_name: str,
        column_names: list[str],
        processor: Callable[[list[dict[str, Any]]], Awaitable[None]],
    ) -> None:
        row_count = await self._repository.get_row_count(db_table_name)
        total_pages = math.ceil(row_count / self.chunk_size)

        for page in range(total_pages):
            records = await self._repository.get_records_by_page(
                db_table_name, column_names, page, self.chunk_size
            )
            await processor(records)

    async def _process_record_batch(
        self,
        records: list[dict[str, Any]],
        context: BackfillContext,
    ) -> None:
        for batch in create_batches(records, self.small_batch_size):
            context.ticket.raise_if_cancelled()

            retry_count = 0
            while True:
                try:
                    await self._write_batch(batch, context)
                    break
                except TaskCancelledError:
                    raise
                except Exception as e:
                    retry_count += 1
                    logger.warning(
                        f"Retry {retry_count}/{self.max_retries} for batch processing failed: {e}"
                    )
                    if retry_count >= self.max_retries:
                        logger.error(f"Max retries reached for field {context.field_id}, giving up")
                        raise
                    await asyncio.sleep(self.retry_base_delay * 2 ** retry_count)

            await asyncio.sleep(self.batch_delay)

    async def _write_batch(self, batch: list[dict[str, Any]], context: BackfillContext) -> None:
        # 1. thinking placeholder
        await asyncio.gather(*[
            self._write_value(
                context.table_id, record[ID_COLUMN], context.field_name, self.thinking_message, silent=True
            )
            for record in batch
        ])

        # 2. generation
        results = await asyncio.gather(*[
            self._process_record(record, context) for record in batch
        ])

        # A newer run owns these cells now
        if context.ticket.cancelled:
            logger.info(f"Discarding {len(results)} stale results for field {context.field_id}")
            raise TaskCancelledError()

        # 3. final values
        await asyncio.gather(*[
            self._write_value(
                context.table_id,
                result.record_id,
                context.field_name,
                result.result if result.success else self.thinking_failed_message,
                silent=not result.success,
            )
            for result in results
        ])

    async def _process_record(
        self,
        record: dict[str, Any],
        context: BackfillContext,
    ) -> GenerationResult:
        record_id = record[ID_COLUMN]
        try:
            prompt = replace_placeholders(
                record, context.field_map, context.dynamic_depends, context.prompt
            )
            text = await self.generate_text(prompt)
            return GenerationResult(record_id=record_id, success=True, result=text)
        except Exception as e:
            logger.error(f"Error processing record {record_id} for field {context.field_id}: {e}")
            return GenerationResult(record_id=record_id, success=False)

    # =========================================================================
    # Record updates
    # =========================================================================

    async def trigger_intelligence_update_records(self, payload: UpdateRecordsPayload) -> int:
        """Regenerate intelligence fields whose dependencies changed.

        Returns:
            Number of field values generated
        """
        state = await self._update_workflow.ainvoke({
            "table_id": payload.table_id,
            "cell_contexts": payload.cell_contexts,
        })
        return state.get("generated", 0)

    async def process_records(
        self,
        table_id: str,
        record_data: list[tuple[str, dict[str, Any]]],
        sorted_fields: list[IntelligenceField],
        fields: list[FieldInfo],
        field_map: dict[str, str],
    ) -> int:
        """Process records in small batches, each record's fields serially."""
        generated = 0
        for batch in create_batches(record_data, self.record_batch_size):
            for record_id, data in batch:
                for field in sorted_fields:
                    if await self.process_field(table_id, record_id, data, field, fields, field_map):
                        generated += 1
            await asyncio.sleep(self.record_batch_delay)
        return generated

    async def process_field(
        self,
        table_id: str,
        record_id: str,
        record_data: dict[str, Any],
        field: IntelligenceField,
        fields: list[FieldInfo],
        field_map: dict[str, str],
    ) -> bool:
        """Generate one field of one record.

        The generated value is stored back into `record_data` so that fields
        processed after this one can reference it.

        Returns:
            Whether a value was generated and written
        """
        intelligence = field.intelligence
        field_name = next((f.name for f in fields if f.id == field.field_id), None)
        if not field_name or not intelligence.prompt or intelligence.dynamic_depends is None:
            return False

        try:
            if has_missing_dependencies(intelligence.dynamic_depends, field_map, record_data):
                logger.warning(f"Missing dependencies for record {record_id}, field {field.field_id}")
                return False

            prompt = replace_placeholders(
                record_data, field_map, intelligence.dynamic_depends, intelligence.prompt
            )
            result = await self.generate_text(prompt)

            db_field_name = field_map.get(field.field_id)
            if db_field_name:
                record_data[db_field_name] = result

            await self._write_value(table_id, record_id, field_name, result)
            return True
        except Exception as e:
            logger.error(f"Error processing record {record_id} for field {field.field_id}: {e}")
            await self._write_value(
                table_id, record_id, field_name, self.thinking_failed_message, silent=True
            )
            return False

    # =========================================================================
    # Record creation
    # =========================================================================

    async def trigger_intelligence_create_records(self, payload: RecordsCreatePayload) -> int:
        """Generate intelligence fields for newly created records.

        Returns:
            Number of field values generated
        """
        fields = await self._field_service.get_fields(payload.table_id)
        intelligence_fields = get_intelligence_fields(fields)
        if not intelligence_fields:
            return 0

        field_map = create_field_map(fields)
        sorted_fields = topological_sort(intelligence_fields)

        record_data = []
        for record in payload.records:
            data = {
                field_map[field_id]: value
                for field_id, value in record.fields.items()
                if field_id in field_map
            }
            record_data.append((record.id, data))

        return await self.process_records(
            payload.table_id, record_data, sorted_fields, fields, field_map
        )

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_text(self, prompt: str) -> str:
        """Generate text for a fully substituted prompt."""
        return await self._router.generate_text(prompt, task=TaskType.CODING.value)

    def generate_stream(self, prompt: str, base_id: str | None = None) -> AsyncIterator[str]:
        """Stream generated text for a free-form prompt."""
        if base_id:
            logger.info(f"Streaming generation for base {base_id}")
        return self._router.stream_text(prompt, task=TaskType.CODING.value)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def get_intelligence_fields(self, table_id: str) -> list[IntelligenceField]:
        fields = await self._field_service.get_fields(table_id)
        return get_intelligence_fields(fields)

    async def get_processing_order(self, table_id: str) -> list[IntelligenceField]:
        """Intelligence fields of a table in the order they would be generated."""
        return topological_sort(await self.get_intelligence_fields(table_id))

    async def get_fields(self, table_id: str) -> list[FieldInfo]:
        return await self._field_service.get_fields(table_id)

    async def _write_value(
        self,
        table_id: str,
        record_id: str,
        field_name: str,
        value: Any,
        silent: bool = False,
    ) -> None:
        await self._record_service.update_record(
            table_id, record_id, {field_name: value}, silent=silent
        )

