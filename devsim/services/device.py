"""
Device Service
Business logic for device management
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.exceptions import ConflictError, NotFoundError
from devsim.core.locks import DeviceLockRegistry, device_locks
from devsim.models.device import Device, TransmissionState
from devsim.repositories.device import device_repository
from devsim.schemas.device import DeviceCreate, DeviceDuplicateRequest, DeviceUpdate
from devsim.services.device_transmission import DeviceTransmissionController, device_transmission

logger = structlog.get_logger()


class DeviceService:
    """Service for device management business logic"""

    def __init__(
        self,
        repository=None,
        controller: Optional[DeviceTransmissionController] = None,
        locks: Optional[DeviceLockRegistry] = None,
    ):
        self.repository = repository or device_repository
        self.controller = controller or device_transmission
        self.locks = locks or device_locks

    # ==================== CRUD ====================

    async def create_device(self, db: AsyncSession, device_in: DeviceCreate) -> Device:
        """Create a device; the reference is generated when not supplied"""
        if device_in.reference:
            if await self.repository.reference_exists(db, device_in.reference):
                raise ConflictError(f"Device reference '{device_in.reference}' already exists")
            reference = device_in.reference
        else:
            reference = await self.repository.generate_unique_reference(db)

        device = await self.repository.create(db, {
            "name": device_in.name,
            "reference": reference,
            "description": device_in.description,
            "device_type": device_in.device_type,
            "transmission_frequency": device_in.transmission_frequency,
            "transmission_state": TransmissionState.INACTIVE.value,
            "transmission_enabled": False,
            "transmission_paused": False,
            "current_row_index": 0,
        })
        logger.info("Device created", id=str(device.id), name=device.name, reference=device.reference)
        return device

    async def get_device(self, db: AsyncSession, device_id: UUID) -> Device:
        device = await self.repository.get(db, device_id)
        if not device:
            raise NotFoundError(f"Device {device_id} not found")
        return device

    async def list_devices(
        self,
        db: AsyncSession,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None
    ) -> List[Device]:
        return await self.repository.list_filtered(db, skip=skip, limit=limit, search=search)

    async def list_unassigned(self, db: AsyncSession, skip: int = 0, limit: int = 100) -> List[Device]:
        """Devices not in any project, candidates for assignment"""
        return await self.repository.list_filtered(db, skip=skip, limit=limit, unassigned=True)

    async def update_device(self, db: AsyncSession, device_id: UUID, device_in: DeviceUpdate) -> Device:
        """Name and description only; transmission settings go through the controller"""
        device = await self.get_device(db, device_id)
        device = await self.repository.update(db, device, device_in.model_dump(exclude_unset=True))
        logger.info("Device updated", id=str(device_id))
        return device

    async def delete_device(self, db: AsyncSession, device_id: UUID) -> Device:
        """Stop transmissions, then soft delete. History records are kept."""
        device = await self.controller.stop(db, device_id)
        await self.repository.soft_delete(db, device)
        self.locks.discard(device_id)
        logger.info("Device deleted", id=str(device_id))
        return device

    # ==================== Duplication ====================

    async def duplicate_device(
        self,
        db: AsyncSession,
        device_id: UUID,
        request: DeviceDuplicateRequest
    ) -> List[Device]:
        device = await self.get_device(db, device_id)
        duplicates = await self.repository.duplicate_device(db, source=device, count=request.count)
        logger.info("Device duplicated", source_id=str(device_id), count=len(duplicates))
        return duplicates


device_service = DeviceService()
