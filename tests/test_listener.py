"""Tests for the intelligence trigger listener."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from cellflow.intelligence.listener import IntelligenceTriggerListener
from cellflow.schemas import (
    FieldCreatePayload,
    FieldInfo,
    FieldValueChange,
    RecordChangeSet,
    RecordData,
    RecordsCreatePayload,
    RecordUpdatePayload,
)


@pytest.fixture
def service():
    service = MagicMock()
    service.trigger_intelligence_create = AsyncMock()
    service.trigger_intelligence_update_records = AsyncMock(return_value=0)
    service.trigger_intelligence_create_records = AsyncMock(return_value=0)
    return service


def update_payload(new_value, old_value=None) -> RecordUpdatePayload:
    return RecordUpdatePayload(
        table_id="tbl1",
        record=RecordChangeSet(
            id="rec1",
            fields={"fld1": FieldValueChange(old_value=old_value, new_value=new_value)},
        ),
        user_id="usr1",
    )


class TestRecordUpdateListener:
    """Tests for record_update_listener."""

    @pytest.mark.asyncio
    async def test_forwards_flattened_changes(self, service):
        listener = IntelligenceTriggerListener(service)

        await listener.record_update_listener(update_payload("Alice"))

        payload = service.trigger_intelligence_update_records.await_args.args[0]
        assert payload.table_id == "tbl1"
        assert payload.record_ids == ["rec1"]
        assert payload.field_ids == ["fld1"]
        [context] = payload.cell_contexts
        assert (context.record_id, context.new_value, context.old_value) == ("rec1", "Alice", None)

    @pytest.mark.asyncio
    async def test_falsy_values_become_null(self, service):
        listener = IntelligenceTriggerListener(service)

        await listener.record_update_listener(update_payload(0, old_value=""))

        [context] = service.trigger_intelligence_update_records.await_args.args[0].cell_contexts
        assert context.new_value is None
        assert context.old_value is None

    @pytest.mark.asyncio
    async def test_ignored_during_field_create_backfill(self, service):
        listener = IntelligenceTriggerListener(service)
        started = asyncio.Event()
        release = asyncio.Event()

        async def backfill(*args):
            started.set()
            await release.wait()

        service.trigger_intelligence_create.side_effect = backfill
        field = FieldInfo(
            id="fld2",
            name="Bio",
            db_field_name="bio",
            options={"intelligence": {"enabled": True, "prompt": "p", "dynamicDepends": ["fld1"]}},
        )

        task = asyncio.create_task(
            listener.field_create_listener(FieldCreatePayload(table_id="tbl1", field=field))
        )
        await started.wait()

        assert listener.is_field_create_update
        await listener.record_update_listener(update_payload("Alice"))
        service.trigger_intelligence_update_records.assert_not_awaited()

        release.set()
        await task

        assert not listener.is_field_create_update


class TestFieldCreateListener:
    """Tests for field_create_listener."""

    @pytest.mark.asyncio
    async def test_plain_field_is_ignored(self, service):
        listener = IntelligenceTriggerListener(service)
        field = FieldInfo(id="fld1", name="Name", db_field_name="name")

        await listener.field_create_listener(FieldCreatePayload(table_id="tbl1", field=field))

        service.trigger_intelligence_create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_intelligence_is_ignored(self, service):
        listener = IntelligenceTriggerListener(service)
        field = FieldInfo(
            id="fld2",
            name="Bio",
            db_field_name="bio",
            options={"intelligence": {"enabled": False, "prompt": "p"}},
        )

        await listener.field_create_listener(FieldCreatePayload(table_id="tbl1", field=field))

        service.trigger_intelligence_create.assert_not_awaited()


class TestRecordCreateListener:
    """Tests for record_create_listener."""

    @pytest.mark.asyncio
    async def test_forwards_payload(self, service):
        listener = IntelligenceTriggerListener(service)
        payload = RecordsCreatePayload(table_id="tbl1", records=[RecordData(id="rec1")])

        await listener.record_create_listener(payload)

        service.trigger_intelligence_create_records.assert_awaited_once_with(payload)
