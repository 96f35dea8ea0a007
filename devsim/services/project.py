"""
Project Service
Project CRUD and device membership
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.exceptions import ConflictError, NotFoundError
from devsim.models.device import Device
from devsim.models.project import Project, TransmissionStatus
from devsim.repositories.device import device_repository
from devsim.repositories.project import project_repository
from devsim.schemas.project import ProjectCreate, ProjectUpdate
from devsim.services.device_transmission import DeviceTransmissionController, device_transmission
from devsim.services.project_transmission import ProjectTransmissionOrchestrator, project_transmission

logger = structlog.get_logger()


class ProjectService:
    """Service for project management and membership"""

    def __init__(
        self,
        repository=None,
        device_repo=None,
        controller: Optional[DeviceTransmissionController] = None,
        orchestrator: Optional[ProjectTransmissionOrchestrator] = None,
    ):
        self.repository = repository or project_repository
        self.device_repository = device_repo or device_repository
        self.controller = controller or device_transmission
        self.orchestrator = orchestrator or project_transmission

    # ==================== CRUD ====================

    async def create_project(self, db: AsyncSession, project_in: ProjectCreate) -> Project:
        project = await self.repository.create(db, {
            "name": project_in.name,
            "description": project_in.description,
            "transmission_status": TransmissionStatus.INACTIVE.value,
        })
        logger.info("Project created", id=str(project.id), name=project.name)
        return project

    async def get_project(self, db: AsyncSession, project_id: UUID) -> Project:
        project = await self.repository.get(db, project_id)
        if not project:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def list_projects(
        self,
        db: AsyncSession,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None
    ) -> List[Project]:
        return await self.repository.list_filtered(db, skip=skip, limit=limit, search=search)

    async def count_devices(self, db: AsyncSession, project_id: UUID) -> int:
        return await self.device_repository.count_project_devices(db, project_id)

    async def update_project(self, db: AsyncSession, project_id: UUID, project_in: ProjectUpdate) -> Project:
        project = await self.get_project(db, project_id)
        project = await self.repository.update(db, project, project_in.model_dump(exclude_unset=True))
        logger.info("Project updated", id=str(project_id))
        return project

    async def delete_project(self, db: AsyncSession, project_id: UUID) -> Dict[str, Any]:
        """Stop every member device, release them to the unassigned pool, then delete"""
        project = await self.get_project(db, project_id)
        stop_result = await self.orchestrator.stop_all(db, project_id)

        devices = await self.device_repository.get_project_devices(db, project_id)
        for device in devices:
            device.project_id = None
            db.add(device)

        await self.repository.soft_delete(db, project)
        logger.info("Project deleted", id=str(project_id), released_devices=len(devices))
        return {
            "project_id": project_id,
            "released_devices": len(devices),
            "stopped": stop_result["successful_operations"],
        }

    # ==================== Membership ====================

    async def list_devices(self, db: AsyncSession, project_id: UUID) -> List[Device]:
        await self.get_project(db, project_id)
        return await self.device_repository.get_project_devices(db, project_id)

    async def add_devices(self, db: AsyncSession, project_id: UUID, device_ids: List[UUID]) -> List[UUID]:
        """
        Assign devices to the project. Every id is checked before anything is
        assigned, so a conflict on one device leaves all of them untouched.
        """
        await self.get_project(db, project_id)
        unique_ids = list(dict.fromkeys(device_ids))
        devices = {device.id: device for device in await self.device_repository.get_many(db, unique_ids)}

        for device_id in unique_ids:
            device = devices.get(device_id)
            if device is None:
                raise NotFoundError(f"Device {device_id} not found")
            if device.project_id is not None and device.project_id != project_id:
                raise ConflictError(f"Device '{device.name}' is already assigned to another project")

        for device in devices.values():
            device.project_id = project_id
            db.add(device)
        await db.commit()

        logger.info("Devices assigned", project_id=str(project_id), count=len(unique_ids))
        return unique_ids

    async def remove_device(self, db: AsyncSession, project_id: UUID, device_id: UUID) -> Device:
        """Stop the device, then return it to the unassigned pool"""
        await self.get_project(db, project_id)
        device = await self.device_repository.get(db, device_id)
        if not device or device.project_id != project_id:
            raise NotFoundError(f"Device {device_id} is not part of project {project_id}")

        device = await self.controller.stop(db, device_id)
        device.project_id = None
        db.add(device)
        await db.commit()
        await db.refresh(device)

        logger.info("Device removed from project", project_id=str(project_id), device_id=str(device_id))
        return device


project_service = ProjectService()
