"""
Transmission Record Repository
Append and read operations for the transmission history
"""

import enum
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from devsim.models.device import Device
from devsim.models.transmission_record import TransmissionRecord
from devsim.schemas.transmission import HistoryFilters


class ScopeKind(str, enum.Enum):
    DEVICE = "device"
    PROJECT = "project"
    CONNECTION = "connection"


@dataclass(frozen=True)
class HistoryScope:
    """Which slice of the history a query reads"""
    kind: ScopeKind
    id: UUID

    @classmethod
    def device(cls, device_id: UUID) -> "HistoryScope":
        return cls(ScopeKind.DEVICE, device_id)

    @classmethod
    def project(cls, project_id: UUID) -> "HistoryScope":
        return cls(ScopeKind.PROJECT, project_id)

    @classmethod
    def connection(cls, connection_id: UUID) -> "HistoryScope":
        return cls(ScopeKind.CONNECTION, connection_id)


_SCOPE_COLUMNS = {
    ScopeKind.DEVICE: TransmissionRecord.device_id,
    ScopeKind.PROJECT: TransmissionRecord.project_id,
    ScopeKind.CONNECTION: TransmissionRecord.connection_id,
}

# (record, device_name, device_reference)
HistoryRow = Tuple[TransmissionRecord, Optional[str], Optional[str]]


def _conditions(scope: HistoryScope, filters: Optional[HistoryFilters]) -> List[Any]:
    conditions = [_SCOPE_COLUMNS[scope.kind] == scope.id]
    if filters is not None:
        if filters.status is not None:
            conditions.append(TransmissionRecord.status == getattr(filters.status, "value", filters.status))
        if filters.connection_id is not None:
            conditions.append(TransmissionRecord.connection_id == filters.connection_id)
    return conditions


def build_history_query(scope: HistoryScope, filters: Optional[HistoryFilters] = None):
    """Filtered history joined with device labels, most recent first"""
    return (
        select(TransmissionRecord, Device.name, Device.reference)
        .outerjoin(Device, Device.id == TransmissionRecord.device_id)
        .where(and_(*_conditions(scope, filters)))
        .order_by(TransmissionRecord.timestamp.desc(), TransmissionRecord.id.desc())
    )


def build_history_count(scope: HistoryScope, filters: Optional[HistoryFilters] = None):
    return select(func.count(TransmissionRecord.id)).where(and_(*_conditions(scope, filters)))


class TransmissionRecordRepository:
    """Repository for the append-only transmission history"""

    async def add(self, db: AsyncSession, record: TransmissionRecord, commit: bool = True) -> TransmissionRecord:
        db.add(record)
        if commit:
            await db.commit()
            await db.refresh(record)
        else:
            await db.flush()
        return record

    async def count(
        self,
        db: AsyncSession,
        scope: HistoryScope,
        filters: Optional[HistoryFilters] = None
    ) -> int:
        result = await db.execute(build_history_count(scope, filters))
        return result.scalar() or 0

    async def find(
        self,
        db: AsyncSession,
        scope: HistoryScope,
        filters: Optional[HistoryFilters] = None,
        *,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[HistoryRow]:
        query = build_history_query(scope, filters)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await db.execute(query)
        return [tuple(row) for row in result.all()]


transmission_record_repository = TransmissionRecordRepository()
