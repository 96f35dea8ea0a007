"""
Device Repository
Database operations for devices, membership and the armed set
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.models.device import Device, TransmissionState, generate_device_reference
from devsim.repositories.base import CRUDBase
from devsim.schemas.device import DeviceCreate, DeviceUpdate

logger = structlog.get_logger()


class DeviceRepository(CRUDBase[Device, DeviceCreate, DeviceUpdate]):
    """Repository for device database operations"""

    async def reference_exists(self, db: AsyncSession, reference: str) -> bool:
        """References stay reserved after a device is deleted"""
        result = await db.execute(select(func.count(Device.id)).where(Device.reference == reference))
        return bool(result.scalar())

    async def generate_unique_reference(self, db: AsyncSession, max_attempts: int = 10) -> str:
        """Generate a reference not used by any device (deleted ones included)"""
        for _ in range(max_attempts):
            candidate = generate_device_reference()
            if not await self.reference_exists(db, candidate):
                return candidate
        raise RuntimeError("Could not generate a unique device reference")

    async def list_filtered(
        self,
        db: AsyncSession,
        *,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
        project_id: Optional[UUID] = None,
        unassigned: bool = False,
    ) -> List[Device]:
        query = select(Device).where(Device.is_deleted.is_(False))
        if unassigned:
            query = query.where(Device.project_id.is_(None))
        elif project_id is not None:
            query = query.where(Device.project_id == project_id)
        if search:
            query = query.where(or_(
                Device.name.ilike(f"%{search}%"),
                Device.reference.ilike(f"%{search}%"),
            ))
        query = query.order_by(Device.created_at.desc()).offset(skip).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_project_devices(self, db: AsyncSession, project_id: UUID) -> List[Device]:
        result = await db.execute(
            select(Device)
            .where(Device.project_id == project_id, Device.is_deleted.is_(False))
            .order_by(Device.name)
        )
        return list(result.scalars().all())

    async def get_many(self, db: AsyncSession, device_ids: List[UUID]) -> List[Device]:
        result = await db.execute(
            select(Device).where(Device.id.in_(device_ids), Device.is_deleted.is_(False))
        )
        return list(result.scalars().all())

    async def count_project_devices(self, db: AsyncSession, project_id: UUID) -> int:
        result = await db.execute(
            select(func.count(Device.id))
            .where(Device.project_id == project_id, Device.is_deleted.is_(False))
        )
        return result.scalar() or 0

    async def duplicate_device(self, db: AsyncSession, source: Device, count: int) -> List[Device]:
        """Copies of the configuration and dataset; state, cursor and membership reset"""
        duplicates = []
        # Pending copies are not flushed, so references handed out here are tracked locally
        taken = set()
        for i in range(1, count + 1):
            reference = await self.generate_unique_reference(db)
            while reference in taken:
                reference = await self.generate_unique_reference(db)
            taken.add(reference)
            duplicate = Device(
                name=f"{source.name} {i}",
                reference=reference,
                description=source.description,
                device_type=source.device_type,
                transmission_frequency=source.transmission_frequency,
                transmission_state=TransmissionState.INACTIVE.value,
                transmission_enabled=False,
                transmission_paused=False,
                selected_connection_id=source.selected_connection_id,
                current_row_index=0,
                last_transmission_at=None,
                csv_data=dict(source.csv_data) if source.csv_data else None,
                project_id=None,
            )
            db.add(duplicate)
            duplicates.append(duplicate)

        await db.commit()
        for duplicate in duplicates:
            await db.refresh(duplicate)
        return duplicates

    async def get_armed(self, db: AsyncSession) -> List[Device]:
        """Devices whose scheduler should be running"""
        result = await db.execute(
            select(Device).where(
                Device.transmission_state == TransmissionState.ACTIVE.value,
                Device.is_deleted.is_(False),
            )
        )
        return list(result.scalars().all())


device_repository = DeviceRepository(Device)
