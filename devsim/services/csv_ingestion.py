"""
CSV Ingestion Pipeline
Two-phase upload: parse into a staged preview, then commit it as the device dataset
"""

import asyncio
import io
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import pandas as pd
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.config import settings
from devsim.core.exceptions import FormatError, NotFoundError, ValidationError
from devsim.core.locks import DeviceLockRegistry, device_locks
from devsim.models.device import Device
from devsim.repositories.device import device_repository
from devsim.schemas.csv_data import PreviewStaging

logger = structlog.get_logger()


@dataclass
class StagedDataset:
    """Full parse of an upload waiting for confirmation"""
    staging_id: UUID
    device_id: UUID
    filename: str
    headers: List[str]
    csv_rows: List[List[str]]
    json_rows: List[Dict[str, Any]]
    expires_at: datetime
    loaded_at: float = field(default_factory=time.monotonic)

    @property
    def row_count(self) -> int:
        return len(self.csv_rows)


class StagingCache:
    """In-process TTL cache of staged uploads, at most one live staging per device"""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[UUID, StagedDataset] = {}
        self._by_device: Dict[UUID, UUID] = {}

    def put(self, staged: StagedDataset):
        self._purge()
        previous = self._by_device.get(staged.device_id)
        if previous is not None:
            self._entries.pop(previous, None)
        self._entries[staged.staging_id] = staged
        self._by_device[staged.device_id] = staged.staging_id

    def get(self, staging_id: UUID) -> Optional[StagedDataset]:
        self._purge()
        return self._entries.get(staging_id)

    def pop(self, staging_id: UUID) -> Optional[StagedDataset]:
        staged = self._entries.pop(staging_id, None)
        if staged is not None and self._by_device.get(staged.device_id) == staging_id:
            del self._by_device[staged.device_id]
        return staged

    def _purge(self):
        now = time.monotonic()
        expired = [sid for sid, s in self._entries.items() if now - s.loaded_at > self.ttl_seconds]
        for staging_id in expired:
            self.pop(staging_id)


def coerce_cell(value: str) -> Any:
    """JSON projection of one CSV cell: ints, floats, null for empty, otherwise the text"""
    if value == "":
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        number = float(value)
    except ValueError:
        return value
    return number if math.isfinite(number) else value


class CsvIngestionPipeline:
    """Parses uploads without touching the device; commit replaces the dataset"""

    def __init__(
        self,
        cache: Optional[StagingCache] = None,
        locks: Optional[DeviceLockRegistry] = None,
        repository=None
    ):
        self.cache = cache or StagingCache(settings.CSV_STAGING_TTL_SECONDS)
        self.locks = locks or device_locks
        self.repository = repository or device_repository

    # ==================== Parsing ====================

    def parse(self, content: bytes) -> Tuple[List[str], List[List[str]]]:
        """
        Parse raw bytes into headers and string rows

        Raises:
            FormatError: content is not a usable CSV
        """
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FormatError("CSV file must be UTF-8 encoded") from e

        if not text.strip():
            raise FormatError("CSV file is empty")

        try:
            df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, skipinitialspace=True)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
            raise FormatError(f"File could not be parsed as CSV: {e}") from e

        raw_headers = [str(column).strip() for column in df.columns]
        if not any(h and not h.startswith("Unnamed:") for h in raw_headers):
            raise FormatError("CSV header row is empty")

        headers = [
            f"column_{idx + 1}" if (not h or h.startswith("Unnamed:")) else h
            for idx, h in enumerate(raw_headers)
        ]

        if len(df) == 0:
            raise FormatError("CSV file has no data rows")
        if len(df) > settings.CSV_MAX_ROWS:
            raise FormatError(f"CSV file exceeds the maximum of {settings.CSV_MAX_ROWS} rows")

        rows = [[str(cell) for cell in row] for row in df.itertuples(index=False, name=None)]
        return headers, rows

    # ==================== Stage / Commit ====================

    async def stage(
        self,
        db: AsyncSession,
        device_id: UUID,
        filename: str,
        content: bytes
    ) -> PreviewStaging:
        """Parse an upload into a preview. The device is not modified."""
        device = await self.repository.get(db, device_id)
        if not device:
            raise NotFoundError(f"Device {device_id} not found")

        if Path(filename or "").suffix.lower() != ".csv":
            raise FormatError("Only .csv files are supported")
        if len(content) > settings.MAX_UPLOAD_SIZE:
            raise FormatError(f"File exceeds the maximum upload size of {settings.MAX_UPLOAD_SIZE} bytes")

        headers, rows = await asyncio.to_thread(self.parse, content)
        json_rows = [
            {header: coerce_cell(cell) for header, cell in zip(headers, row)}
            for row in rows
        ]

        staged = StagedDataset(
            staging_id=uuid.uuid4(),
            device_id=device.id,
            filename=filename,
            headers=headers,
            csv_rows=rows,
            json_rows=json_rows,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.cache.ttl_seconds),
        )
        self.cache.put(staged)

        logger.info(
            "CSV upload staged",
            device_id=str(device.id),
            staging_id=str(staged.staging_id),
            rows=staged.row_count,
            columns=len(headers)
        )

        limit = settings.CSV_PREVIEW_ROWS
        return PreviewStaging(
            staging_id=staged.staging_id,
            device_id=device.id,
            filename=filename,
            headers=headers,
            csv_preview=rows[:limit],
            json_preview=json_rows[:limit],
            row_count=staged.row_count,
            expires_at=staged.expires_at,
        )

    async def commit(self, db: AsyncSession, device_id: UUID, staging_id: UUID) -> Device:
        """
        Replace the device dataset with the full staged parse

        The first commit puts the cursor at 0. Later commits keep it unless it
        no longer fits the new row count.
        """
        staged = self.cache.get(staging_id)
        if staged is None:
            raise ValidationError("Staged upload not found or expired; upload the file again")
        if staged.device_id != device_id:
            raise ValidationError("Staged upload belongs to a different device")

        async with self.locks.acquire(device_id):
            device = await self.repository.get(db, device_id)
            if not device:
                raise NotFoundError(f"Device {device_id} not found")

            first_commit = device.csv_data is None
            device.csv_data = {
                "headers": staged.headers,
                "csv_preview": staged.csv_rows,
                "json_preview": staged.json_rows,
            }
            if first_commit or device.current_row_index >= staged.row_count:
                device.current_row_index = 0

            db.add(device)
            await db.commit()
            await db.refresh(device)

        self.cache.pop(staging_id)
        logger.info(
            "CSV dataset committed",
            device_id=str(device_id),
            rows=staged.row_count,
            current_row_index=device.current_row_index
        )
        return device


csv_ingestion = CsvIngestionPipeline()
