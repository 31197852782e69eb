"""FastAPI routes for the CellFlow API.

Endpoints:
- POST /intelligence/generate-stream[/{baseId}] - Stream a generation (SSE)
- POST /intelligence/generate-batch            - Backfill a field over a table

Tables, fields and records:
- POST  /table                               - Create table
- GET   /table/{tableId}/field               - List fields
- POST  /table/{tableId}/field               - Create field
- POST  /table/{tableId}/record              - Create records
- GET   /table/{tableId}/record/{recordId}   - Get record
- PATCH /table/{tableId}/record/{recordId}   - Update record
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import StreamingResponse

from cellflow.config import get_settings
from cellflow.container import Container, get_container
from cellflow.llm.base import LLMError
from cellflow.schemas import (
    CreateFieldRequest,
    CreateRecordsRequest,
    CreateRecordsResponse,
    CreateTableRequest,
    FieldInfo,
    GenerateBatchRequest,
    GenerateBatchResponse,
    GenerateStreamRequest,
    IntelligenceOptions,
    RecordResponse,
    TableMetaInfo,
    UpdateRecordRequest,
)


logger = logging.getLogger(__name__)
router = APIRouter()

settings = get_settings()


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# =============================================================================
# Intelligence Endpoints
# =============================================================================

def format_sse(data: str) -> str:
    """Frame a text chunk as one server-sent event."""
    return "".join(f"data: {line}\n" for line in data.split("\n")) + "\n"


async def _sse_stream(deltas: AsyncIterator[str]) -> AsyncIterator[str]:
    try:
        async for delta in deltas:
            yield format_sse(delta)
    except (LLMError, ValueError) as e:
        logger.error(f"Generation stream failed: {e}")
        yield f"event: error\n{format_sse(str(e))}"


@router.post("/intelligence/generate-stream")
@router.post("/intelligence/generate-stream/{base_id}")
async def generate_stream(
    request: GenerateStreamRequest,
    base_id: str | None = None,
    container: Container = Depends(get_container),
) -> StreamingResponse:
    """Stream generated tokens for a prompt as server-sent events."""
    deltas = container.intelligence_service.generate_stream(request.prompt, base_id)
    return StreamingResponse(_sse_stream(deltas), media_type="text/event-stream")


async def execute_generate_batch_task(
    container: Container,
    table_id: str,
    field_id: str,
    options: IntelligenceOptions,
) -> None:
    """Background task running one backfill."""
    try:
        await container.intelligence_service.trigger_intelligence_create(table_id, field_id, options)
    except Exception as e:
        logger.error(f"Generation for field {field_id} in table {table_id} failed: {e}")


@router.post("/intelligence/generate-batch", response_model=GenerateBatchResponse)
async def generate_batch(
    request: GenerateBatchRequest,
    background_tasks: BackgroundTasks,
    container: Container = Depends(get_container),
) -> GenerateBatchResponse:
    """Start generating a field's value for every record of a table.

    The run happens in the background; a newer request for the same field
    cancels it.
    """
    background_tasks.add_task(
        execute_generate_batch_task,
        container=container,
        table_id=request.table_id,
        field_id=request.field_id,
        options=request.options,
    )

    logger.info(f"Queued generation for field {request.field_id} in table {request.table_id}")

    return GenerateBatchResponse(message="Batch generation started")


# =============================================================================
# Table / Field / Record Endpoints
# =============================================================================

@router.post("/table", response_model=TableMetaInfo)
async def create_table(
    request: CreateTableRequest,
    container: Container = Depends(get_container),
) -> TableMetaInfo:
    """Create a table with its physical record storage."""
    return await container.table_service.create_table(request.base_id, request.name)


@router.get("/table/{table_id}/field", response_model=list[FieldInfo])
async def list_fields(
    table_id: str,
    container: Container = Depends(get_container),
) -> list[FieldInfo]:
    """List the fields of a table."""
    await container.table_service.get_table_meta(table_id)
    return await container.field_service.get_fields(table_id)


@router.post("/table/{table_id}/field", response_model=FieldInfo)
async def create_field(
    table_id: str,
    request: CreateFieldRequest,
    container: Container = Depends(get_container),
) -> FieldInfo:
    """Create a field; enabled intelligence options start a backfill."""
    try:
        return await container.field_service.create_field(
            table_id, request.name, request.type, request.options
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/table/{table_id}/record", response_model=CreateRecordsResponse)
async def create_records(
    table_id: str,
    request: CreateRecordsRequest,
    container: Container = Depends(get_container),
) -> CreateRecordsResponse:
    """Create records (fields keyed by field id)."""
    created = await container.record_service.create_records(
        table_id, [record.fields for record in request.records]
    )

    return CreateRecordsResponse(
        records=[RecordResponse(id=record.id, fields=record.fields) for record in created]
    )


@router.get("/table/{table_id}/record/{record_id}", response_model=RecordResponse)
async def get_record(
    table_id: str,
    record_id: str,
    container: Container = Depends(get_container),
) -> RecordResponse:
    """Get one record (fields keyed by name)."""
    return await container.record_service.get_record(table_id, record_id)


@router.patch("/table/{table_id}/record/{record_id}", response_model=RecordResponse)
async def update_record(
    table_id: str,
    record_id: str,
    request: UpdateRecordRequest,
    container: Container = Depends(get_container),
) -> RecordResponse:
    """Update one record; dependent intelligence fields regenerate."""
    return await container.record_service.update_record(
        table_id,
        record_id,
        request.record.fields,
        field_key_type=request.field_key_type,
    )
