"""
Tests for the two-phase CSV ingestion pipeline.
"""

import time
from datetime import datetime, timezone
from unittest.mock import patch
from uuid import uuid4

import pytest

from devsim.core.exceptions import FormatError, NotFoundError, ValidationError
from devsim.core.locks import DeviceLockRegistry
from devsim.services.csv_ingestion import CsvIngestionPipeline, StagedDataset, StagingCache, coerce_cell

from conftest import make_device, repository_for

SAMPLE = b"temp,humidity,label\n21.5,40,a\n22,41,b\n,42,c\n"


def _pipeline(device, ttl=900):
    return CsvIngestionPipeline(
        cache=StagingCache(ttl),
        locks=DeviceLockRegistry(),
        repository=repository_for(device),
    )


class TestCoerceCell:

    @pytest.mark.parametrize("raw,expected", [
        ("42", 42),
        ("-3", -3),
        ("21.5", 21.5),
        ("", None),
        ("abc", "abc"),
        ("nan", "nan"),
        ("inf", "inf"),
    ])
    def test_coercion(self, raw, expected):
        assert coerce_cell(raw) == expected


class TestParse:

    def test_parse_headers_and_rows(self):
        headers, rows = CsvIngestionPipeline().parse(SAMPLE)
        assert headers == ["temp", "humidity", "label"]
        assert rows[0] == ["21.5", "40", "a"]
        assert rows[2] == ["", "42", "c"]

    def test_utf8_bom_is_stripped(self):
        headers, _ = CsvIngestionPipeline().parse(b"\xef\xbb\xbfa,b\n1,2\n")
        assert headers == ["a", "b"]

    @pytest.mark.parametrize("content", [b"", b"   \n", b"a,b\n"])
    def test_unusable_content(self, content):
        with pytest.raises(FormatError):
            CsvIngestionPipeline().parse(content)

    def test_non_utf8(self):
        with pytest.raises(FormatError):
            CsvIngestionPipeline().parse(b"\xff\xfe\x00a")

    def test_row_limit(self):
        content = b"a\n" + b"1\n" * 6
        with patch("devsim.services.csv_ingestion.settings") as mock_settings:
            mock_settings.CSV_MAX_ROWS = 5
            with pytest.raises(FormatError):
                CsvIngestionPipeline(cache=StagingCache(60)).parse(content)


class TestStageAndCommit:

    @pytest.mark.asyncio
    async def test_stage_does_not_touch_device(self, mock_db):
        device = make_device(rows=0)
        pipeline = _pipeline(device)

        preview = await pipeline.stage(mock_db, device.id, "data.csv", SAMPLE)

        assert preview.row_count == 3
        assert preview.headers == ["temp", "humidity", "label"]
        assert preview.json_preview[0] == {"temp": 21.5, "humidity": 40, "label": "a"}
        assert preview.json_preview[2]["temp"] is None
        assert device.csv_data is None
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stage_rejects_other_extensions(self, mock_db):
        device = make_device()
        with pytest.raises(FormatError):
            await _pipeline(device).stage(mock_db, device.id, "data.xlsx", SAMPLE)

    @pytest.mark.asyncio
    async def test_stage_unknown_device(self, mock_db):
        with pytest.raises(NotFoundError):
            await _pipeline(make_device()).stage(mock_db, uuid4(), "data.csv", SAMPLE)

    @pytest.mark.asyncio
    async def test_first_commit_sets_dataset_and_cursor(self, mock_db):
        device = make_device(rows=0, cursor=0)
        pipeline = _pipeline(device)
        preview = await pipeline.stage(mock_db, device.id, "data.csv", SAMPLE)

        result = await pipeline.commit(mock_db, device.id, preview.staging_id)

        assert result.row_count == 3
        assert result.csv_data["headers"] == ["temp", "humidity", "label"]
        assert len(result.csv_data["csv_preview"]) == 3
        assert result.current_row_index == 0
        mock_db.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_commit_keeps_cursor_that_still_fits(self, mock_db):
        device = make_device(rows=5, cursor=2)
        pipeline = _pipeline(device)
        preview = await pipeline.stage(mock_db, device.id, "data.csv", SAMPLE)

        result = await pipeline.commit(mock_db, device.id, preview.staging_id)
        assert result.current_row_index == 2

    @pytest.mark.asyncio
    async def test_commit_resets_cursor_past_new_end(self, mock_db):
        device = make_device(rows=10, cursor=7)
        pipeline = _pipeline(device)
        preview = await pipeline.stage(mock_db, device.id, "data.csv", SAMPLE)

        result = await pipeline.commit(mock_db, device.id, preview.staging_id)
        assert result.current_row_index == 0

    @pytest.mark.asyncio
    async def test_staging_is_single_use(self, mock_db):
        device = make_device(rows=0)
        pipeline = _pipeline(device)
        preview = await pipeline.stage(mock_db, device.id, "data.csv", SAMPLE)
        await pipeline.commit(mock_db, device.id, preview.staging_id)

        with pytest.raises(ValidationError):
            await pipeline.commit(mock_db, device.id, preview.staging_id)

    @pytest.mark.asyncio
    async def test_commit_for_other_device_rejected(self, mock_db):
        device = make_device(rows=0)
        pipeline = _pipeline(device)
        preview = await pipeline.stage(mock_db, device.id, "data.csv", SAMPLE)

        with pytest.raises(ValidationError):
            await pipeline.commit(mock_db, uuid4(), preview.staging_id)

    @pytest.mark.asyncio
    async def test_new_upload_replaces_previous_staging(self, mock_db):
        device = make_device(rows=0)
        pipeline = _pipeline(device)
        first = await pipeline.stage(mock_db, device.id, "a.csv", SAMPLE)
        second = await pipeline.stage(mock_db, device.id, "b.csv", SAMPLE)

        with pytest.raises(ValidationError):
            await pipeline.commit(mock_db, device.id, first.staging_id)
        await pipeline.commit(mock_db, device.id, second.staging_id)


class TestStagingCache:

    def test_expired_entries_are_dropped(self):
        cache = StagingCache(ttl_seconds=10)
        pipeline = CsvIngestionPipeline(cache=cache)
        headers, rows = pipeline.parse(SAMPLE)

        staged = StagedDataset(
            staging_id=uuid4(),
            device_id=uuid4(),
            filename="a.csv",
            headers=headers,
            csv_rows=rows,
            json_rows=[],
            expires_at=datetime.now(timezone.utc),
            loaded_at=time.monotonic() - 60,
        )
        cache.put(staged)
        assert cache.get(staged.staging_id) is None
