"""
Transmission History Store
Append-only transmission records with filtered pages and CSV export
"""

import csv
import io
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.exceptions import StoreFault
from devsim.core.metrics import TRANSMISSIONS_TOTAL
from devsim.models.transmission_record import TransmissionRecord, TransmissionRecordStatus
from devsim.repositories.transmission_record import (
    HistoryRow,
    HistoryScope,
    ScopeKind,
    transmission_record_repository,
)
from devsim.schemas.transmission import (
    HistoryFilters,
    ProjectTransmissionItem,
    TransmissionRecordResponse,
)

logger = structlog.get_logger()

PROJECT_EXPORT_HEADER = ["Device", "Reference", "Connection", "Status", "Type", "Row", "Timestamp", "Error"]
DEVICE_EXPORT_HEADER = ["Connection", "Status", "Row", "Timestamp", "Error"]


class TransmissionHistoryStore:
    """Append-only history. Records are written once and never updated."""

    def __init__(self, repository=None):
        self.repository = repository or transmission_record_repository

    async def record(
        self,
        db: AsyncSession,
        entry: TransmissionRecord,
        protocol: str = "unknown"
    ) -> TransmissionRecord:
        """
        Append one record

        Raises:
            StoreFault: the history could not be written; nothing was persisted
        """
        if entry.timestamp is None:
            entry.timestamp = datetime.now(timezone.utc)
        if entry.status == TransmissionRecordStatus.SUCCESS.value:
            entry.error_message = None
        elif not entry.error_message:
            entry.error_message = "Transmission failed"

        try:
            saved = await self.repository.add(db, entry)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Transmission history write failed", device_id=str(entry.device_id), error=str(e))
            raise StoreFault("Transmission history is unavailable") from e

        TRANSMISSIONS_TOTAL.labels(
            protocol=protocol,
            transmission_type=entry.transmission_type,
            status=entry.status
        ).inc()
        return saved

    async def query(
        self,
        db: AsyncSession,
        scope: HistoryScope,
        filters: Optional[HistoryFilters] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """Filtered page, most recent first. Pages past the end are empty."""
        page = max(page, 1)
        total = await self.repository.count(db, scope, filters)
        total_pages = math.ceil(total / limit) if limit else 0

        rows: List[HistoryRow] = []
        if page <= total_pages:
            rows = await self.repository.find(db, scope, filters, offset=(page - 1) * limit, limit=limit)

        return {
            "history": [self._to_item(row) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
        }

    async def recent(
        self,
        db: AsyncSession,
        scope: HistoryScope,
        limit: int = 50,
        offset: int = 0
    ) -> List[ProjectTransmissionItem]:
        rows = await self.repository.find(db, scope, None, offset=offset, limit=limit)
        return [self._to_item(row) for row in rows]

    async def export_csv(
        self,
        db: AsyncSession,
        scope: HistoryScope,
        filters: Optional[HistoryFilters] = None
    ) -> str:
        """Every matching record, most recent first, as CSV text"""
        rows = await self.repository.find(db, scope, filters)
        project_scope = scope.kind == ScopeKind.PROJECT

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(PROJECT_EXPORT_HEADER if project_scope else DEVICE_EXPORT_HEADER)

        for record, device_name, device_reference in rows:
            common = [
                record.connection_name or "",
                record.status,
            ]
            tail = [
                "" if record.row_index is None else record.row_index,
                record.timestamp.isoformat() if record.timestamp else "",
                record.error_message or "",
            ]
            if project_scope:
                writer.writerow(
                    [device_name or "", device_reference or ""] + common + [record.transmission_type] + tail
                )
            else:
                writer.writerow(common + tail)

        logger.info("Transmission history exported", scope=scope.kind.value, scope_id=str(scope.id), rows=len(rows))
        return output.getvalue()

    def _to_item(self, row: HistoryRow) -> ProjectTransmissionItem:
        record, device_name, device_reference = row
        data = TransmissionRecordResponse.model_validate(record).model_dump()
        return ProjectTransmissionItem(**data, device_name=device_name, device_reference=device_reference)


transmission_history = TransmissionHistoryStore()
