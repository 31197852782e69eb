"""Tests for the record repository, table/field services and their events."""

from datetime import datetime, timedelta

import pytest

from cellflow.database.models import FieldMeta, TableMeta
from cellflow.events import Events
from cellflow.exceptions import NotFoundError
from cellflow.schemas import FieldKeyType
from cellflow.services.tables import to_db_field_name
from tests.conftest import intelligence_options


def capture(container, event):
    payloads = []

    async def listener(payload):
        payloads.append(payload)

    container.emitter.on(event, listener)
    return payloads


def test_to_db_field_name():
    assert to_db_field_name("Full Name", set()) == "full_name"
    assert to_db_field_name("Full Name", {"full_name"}) == "full_name_2"
    assert to_db_field_name("1st", set()) == "f_1st"
    assert to_db_field_name("!!!", set()) == "field"


class TestTableAndFieldServices:
    """Tests for TableService and FieldService."""

    @pytest.mark.asyncio
    async def test_create_table_and_fields(self, container):
        table = await container.table_service.create_table("bse1", "People")
        await container.field_service.create_field(table.id, "Name")
        await container.field_service.create_field(table.id, "Age", type="number")

        fields = await container.field_service.get_fields(table.id)

        assert [field.name for field in fields] == ["Name", "Age"]
        assert table.db_table_name == f"bse1_{table.id}".lower()

    @pytest.mark.asyncio
    async def test_unknown_table_raises(self, container):
        with pytest.raises(NotFoundError):
            await container.table_service.get_table_meta("tblmissing")

    @pytest.mark.asyncio
    async def test_duplicate_field_name_rejected(self, container, people_table):
        table, _ = people_table

        with pytest.raises(ValueError):
            await container.field_service.create_field(table.id, "Name")

    @pytest.mark.asyncio
    async def test_invalid_intelligence_options_rejected(self, container, people_table):
        table, name = people_table
        options = intelligence_options(f"Rate {{{name.id}}}", [name.id])
        options["intelligence"]["type"] = "number"

        with pytest.raises(ValueError, match="Invalid intelligence options"):
            await container.field_service.create_field(table.id, "Score", options=options)

        assert [field.name for field in await container.field_service.get_fields(table.id)] == ["Name"]

    def test_metadata_timestamps_are_timezone_aware(self):
        table = TableMeta(id="tbl1", base_id="bse1", name="People", db_table_name="bse1_tbl1")
        field = FieldMeta(id="fld1", table_id="tbl1", name="Name", db_field_name="name", type="singleLineText")

        assert table.created_time.tzinfo is not None
        assert field.created_time.utcoffset() == timedelta(0)

    @pytest.mark.asyncio
    async def test_create_field_emits_event(self, container, people_table):
        table, _ = people_table
        payloads = capture(container, Events.TABLE_FIELD_CREATE)

        field = await container.field_service.create_field(table.id, "Bio")
        await container.emitter.drain()

        assert len(payloads) == 1
        assert payloads[0].table_id == table.id
        assert payloads[0].field.id == field.id


class TestRecordRepository:
    """Tests for RecordRepository queries."""

    @pytest.mark.asyncio
    async def test_pages_skip_rows_without_values(self, container, people_table):
        table, name = people_table
        await container.record_service.create_records(
            table.id, [{name.id: "A"}, {}, {name.id: "B"}, {name.id: "C"}]
        )
        repository = container.repository

        assert await repository.get_row_count(table.db_table_name) == 4

        first = await repository.get_records_by_page(table.db_table_name, [name.db_field_name], 0, 2)
        second = await repository.get_records_by_page(table.db_table_name, [name.db_field_name], 1, 2)

        assert [row[name.db_field_name] for row in first] == ["A", "B"]
        assert [row[name.db_field_name] for row in second] == ["C"]
        assert {"__id", "__auto_number", "__version"} <= set(first[0])

    @pytest.mark.asyncio
    async def test_update_bumps_version(self, container, people_table):
        table, name = people_table
        [record] = await container.record_service.create_records(table.id, [{name.id: "A"}])
        repository = container.repository

        updated = await repository.update_record(table.db_table_name, record.id, {name.db_field_name: "B"})
        row = await repository.get_record(table.db_table_name, record.id, [name.db_field_name])

        assert updated == 1
        assert row[name.db_field_name] == "B"
        assert row["__version"] == 2
        assert row["__last_modified_time"] is not None
        assert isinstance(row["__created_time"], datetime)

    @pytest.mark.asyncio
    async def test_update_missing_record(self, container, people_table):
        table, name = people_table

        updated = await container.repository.update_record(
            table.db_table_name, "recmissing", {name.db_field_name: "B"}
        )

        assert updated == 0


class TestRecordService:
    """Tests for RecordService."""

    @pytest.mark.asyncio
    async def test_update_emits_change_keyed_by_field_id(self, container, people_table):
        table, name = people_table
        [record] = await container.record_service.create_records(table.id, [{name.id: "Old"}])
        payloads = capture(container, Events.TABLE_RECORD_UPDATE)

        response = await container.record_service.update_record(
            table.id, record.id, {"Name": "New"}, user_id="usr1"
        )
        await container.emitter.drain()

        assert response.fields == {"Name": "New"}
        assert len(payloads) == 1
        change = payloads[0].record.fields[name.id]
        assert (change.old_value, change.new_value) == ("Old", "New")
        assert payloads[0].user_id == "usr1"

    @pytest.mark.asyncio
    async def test_update_by_field_id(self, container, people_table):
        table, name = people_table
        [record] = await container.record_service.create_records(table.id, [{}])

        await container.record_service.update_record(
            table.id, record.id, {name.id: "Ann"}, field_key_type=FieldKeyType.ID
        )

        stored = await container.record_service.get_record(table.id, record.id)
        assert stored.fields == {"Name": "Ann"}

    @pytest.mark.asyncio
    async def test_silent_update_emits_nothing(self, container, people_table):
        table, name = people_table
        [record] = await container.record_service.create_records(table.id, [{}])
        payloads = capture(container, Events.TABLE_RECORD_UPDATE)

        await container.record_service.update_record(table.id, record.id, {"Name": "x"}, silent=True)
        await container.emitter.drain()

        assert payloads == []

    @pytest.mark.asyncio
    async def test_unknown_field_raises(self, container, people_table):
        table, _ = people_table
        [record] = await container.record_service.create_records(table.id, [{}])

        with pytest.raises(NotFoundError):
            await container.record_service.update_record(table.id, record.id, {"Nope": "x"})

    @pytest.mark.asyncio
    async def test_unknown_record_raises(self, container, people_table):
        table, _ = people_table

        with pytest.raises(NotFoundError):
            await container.record_service.get_record(table.id, "recmissing")

    @pytest.mark.asyncio
    async def test_create_emits_records_event(self, container, people_table):
        table, name = people_table
        payloads = capture(container, Events.OPERATION_RECORDS_CREATE)

        created = await container.record_service.create_records(table.id, [{name.id: "A"}, {name.id: "B"}])
        await container.emitter.drain()

        assert len(payloads) == 1
        assert [record.id for record in payloads[0].records] == [record.id for record in created]
        assert payloads[0].records[0].fields == {name.id: "A"}
