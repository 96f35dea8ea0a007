"""
Tests for TransmissionHistoryStore and the history queries.
"""

import csv
import io
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from devsim.core.exceptions import StoreFault
from devsim.models.transmission_record import TransmissionRecord, TransmissionRecordStatus
from devsim.repositories.transmission_record import HistoryScope, build_history_query
from devsim.schemas.transmission import HistoryFilters
from devsim.services.transmission_history import (
    DEVICE_EXPORT_HEADER,
    PROJECT_EXPORT_HEADER,
    TransmissionHistoryStore,
)


def _record(status="SUCCESS", row_index=0, minutes_ago=0, error=None):
    return TransmissionRecord(
        id=uuid4(),
        device_id=uuid4(),
        project_id=None,
        connection_id=uuid4(),
        connection_name="Ingest API",
        status=status,
        transmission_type="AUTOMATIC",
        row_index=row_index,
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago),
        response_time=12,
        error_message=error,
    )


def _compile(query) -> str:
    return str(query.compile(dialect=postgresql.dialect()))


@pytest.fixture
def repository():
    repo = AsyncMock()
    repo.add = AsyncMock(side_effect=lambda db, record: record)
    return repo


@pytest.fixture
def store(repository):
    return TransmissionHistoryStore(repository=repository)


class TestHistoryQuery:

    def test_device_scope_orders_most_recent_first(self):
        sql = _compile(build_history_query(HistoryScope.device(uuid4())))
        assert "transmission_records.device_id = " in sql
        assert "ORDER BY transmission_records.timestamp DESC, transmission_records.id DESC" in sql

    def test_project_scope_filters_on_stamped_project(self):
        sql = _compile(build_history_query(HistoryScope.project(uuid4())))
        assert "transmission_records.project_id = " in sql
        assert "LEFT OUTER JOIN devices" in sql

    def test_filters_combine_with_and(self):
        filters = HistoryFilters(status=TransmissionRecordStatus.FAILED, connection_id=uuid4())
        sql = _compile(build_history_query(HistoryScope.device(uuid4()), filters))
        assert "transmission_records.status = " in sql
        assert "AND transmission_records.connection_id = " in sql


class TestRecord:

    @pytest.mark.asyncio
    async def test_failed_record_always_has_message(self, store, mock_db):
        entry = _record(status="FAILED", error=None)
        saved = await store.record(mock_db, entry)
        assert saved.error_message

    @pytest.mark.asyncio
    async def test_success_record_has_no_message(self, store, mock_db):
        entry = _record(status="SUCCESS", error="stale")
        saved = await store.record(mock_db, entry)
        assert saved.error_message is None

    @pytest.mark.asyncio
    async def test_timestamp_defaults_to_now(self, store, mock_db):
        entry = _record()
        entry.timestamp = None
        saved = await store.record(mock_db, entry)
        assert saved.timestamp is not None

    @pytest.mark.asyncio
    async def test_write_failure_is_store_fault(self, store, repository, mock_db):
        repository.add = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down")))

        with pytest.raises(StoreFault):
            await store.record(mock_db, _record())
        mock_db.rollback.assert_awaited()


class TestQueryPagination:

    @pytest.mark.asyncio
    async def test_page_metadata(self, store, repository, mock_db):
        rows = [(_record(minutes_ago=i), "Sensor A", "ABCD1234") for i in range(20)]
        repository.count = AsyncMock(return_value=45)
        repository.find = AsyncMock(return_value=rows)

        page = await store.query(mock_db, HistoryScope.device(uuid4()), page=2, limit=20)

        assert page["total"] == 45
        assert page["total_pages"] == 3
        assert page["page"] == 2
        assert len(page["history"]) == 20
        assert page["history"][0].device_reference == "ABCD1234"
        assert repository.find.await_args.kwargs == {"offset": 20, "limit": 20}

    @pytest.mark.asyncio
    async def test_page_past_end_is_empty(self, store, repository, mock_db):
        repository.count = AsyncMock(return_value=5)
        repository.find = AsyncMock()

        page = await store.query(mock_db, HistoryScope.device(uuid4()), page=3, limit=20)

        assert page["history"] == []
        assert page["total_pages"] == 1
        repository.find.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_history(self, store, repository, mock_db):
        repository.count = AsyncMock(return_value=0)
        repository.find = AsyncMock()

        page = await store.query(mock_db, HistoryScope.project(uuid4()))

        assert page["total"] == 0
        assert page["total_pages"] == 0
        assert page["history"] == []


class TestExport:

    @pytest.mark.asyncio
    async def test_empty_export_is_header_only(self, store, repository, mock_db):
        repository.find = AsyncMock(return_value=[])

        content = await store.export_csv(mock_db, HistoryScope.project(uuid4()))

        assert list(csv.reader(io.StringIO(content))) == [PROJECT_EXPORT_HEADER]

    @pytest.mark.asyncio
    async def test_device_export_rows(self, store, repository, mock_db):
        failed = _record(status="FAILED", row_index=2, error="HTTP error 500")
        repository.find = AsyncMock(return_value=[(failed, "Sensor A", "ABCD1234")])

        content = await store.export_csv(mock_db, HistoryScope.device(failed.device_id))
        rows = list(csv.reader(io.StringIO(content)))

        assert rows[0] == DEVICE_EXPORT_HEADER
        assert rows[1] == ["Ingest API", "FAILED", "2", failed.timestamp.isoformat(), "HTTP error 500"]

    @pytest.mark.asyncio
    async def test_project_export_includes_device_labels(self, store, repository, mock_db):
        record = _record(row_index=None)
        repository.find = AsyncMock(return_value=[(record, "Logger 1", "ZZZZ0001")])

        content = await store.export_csv(mock_db, HistoryScope.project(uuid4()))
        rows = list(csv.reader(io.StringIO(content)))

        assert rows[1][:5] == ["Logger 1", "ZZZZ0001", "Ingest API", "SUCCESS", "AUTOMATIC"]
        assert rows[1][5] == ""
