"""
Project Transmission Orchestrator
Fans lifecycle commands out to every device of a project and aggregates the outcome
"""

import asyncio
import enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.config import settings
from devsim.core.database import AsyncSessionLocal
from devsim.core.exceptions import DevSimError, NotFoundError, StoreFault
from devsim.core.metrics import BULK_OPERATIONS_TOTAL
from devsim.models.device import Device
from devsim.models.project import Project, TransmissionStatus
from devsim.models.transmission_record import TransmissionRecordStatus
from devsim.repositories.connection import connection_repository
from devsim.repositories.device import device_repository
from devsim.repositories.project import project_repository
from devsim.services.device_transmission import DeviceTransmissionController, device_transmission

logger = structlog.get_logger()


class BulkOperation(str, enum.Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


_SUCCESS_MESSAGES = {
    BulkOperation.START: "Transmission started",
    BulkOperation.PAUSE: "Transmission paused",
    BulkOperation.RESUME: "Transmission resumed",
    BulkOperation.STOP: "Transmission stopped",
}


def derive_project_status(operation: BulkOperation, current: str, successful: int) -> str:
    """Project status after a bulk operation; unchanged when nothing succeeded"""
    if operation == BulkOperation.STOP:
        return TransmissionStatus.INACTIVE.value
    if successful == 0:
        return current
    if operation == BulkOperation.PAUSE:
        return TransmissionStatus.PAUSED.value
    return TransmissionStatus.ACTIVE.value


class ProjectTransmissionOrchestrator:
    """
    Runs one controller operation per member device, each in its own session,
    and waits for all of them. A device failure never aborts the batch.
    """

    def __init__(
        self,
        controller: Optional[DeviceTransmissionController] = None,
        session_factory=None,
        project_repo=None,
        device_repo=None,
        connection_repo=None,
        max_concurrency: Optional[int] = None,
    ):
        self.controller = controller or device_transmission
        self.session_factory = session_factory or AsyncSessionLocal
        self.project_repository = project_repo or project_repository
        self.device_repository = device_repo or device_repository
        self.connection_repository = connection_repo or connection_repository
        self.max_concurrency = max_concurrency or settings.BULK_MAX_CONCURRENCY

    async def start_all(self, db: AsyncSession, project_id: UUID, connection_id: Optional[UUID] = None) -> Dict[str, Any]:
        return await self._run(db, project_id, BulkOperation.START, connection_id)

    async def pause_all(self, db: AsyncSession, project_id: UUID, connection_id: Optional[UUID] = None) -> Dict[str, Any]:
        return await self._run(db, project_id, BulkOperation.PAUSE, connection_id)

    async def resume_all(self, db: AsyncSession, project_id: UUID, connection_id: Optional[UUID] = None) -> Dict[str, Any]:
        return await self._run(db, project_id, BulkOperation.RESUME, connection_id)

    async def stop_all(self, db: AsyncSession, project_id: UUID, connection_id: Optional[UUID] = None) -> Dict[str, Any]:
        return await self._run(db, project_id, BulkOperation.STOP, connection_id)

    # ==================== Internals ====================

    async def _apply(
        self,
        db: AsyncSession,
        operation: BulkOperation,
        device_id: UUID,
        connection_id: Optional[UUID]
    ):
        if operation == BulkOperation.START:
            return await self.controller.start(db, device_id, connection_id)
        if operation == BulkOperation.PAUSE:
            return await self.controller.pause(db, device_id)
        if operation == BulkOperation.RESUME:
            return await self.controller.resume(db, device_id, connection_id)
        return await self.controller.stop(db, device_id)

    async def _run_device(
        self,
        semaphore: asyncio.Semaphore,
        operation: BulkOperation,
        device: Device,
        connection_id: Optional[UUID]
    ) -> Dict[str, Any]:
        async with semaphore:
            async with self.session_factory() as device_db:
                try:
                    await self._apply(device_db, operation, device.id, connection_id)
                    status = TransmissionRecordStatus.SUCCESS
                    message = _SUCCESS_MESSAGES[operation]
                except StoreFault:
                    raise
                except DevSimError as e:
                    status = TransmissionRecordStatus.FAILED
                    message = e.message
                except Exception as e:
                    logger.error(
                        "Bulk device operation failed",
                        operation=operation.value,
                        device_id=str(device.id),
                        error=str(e)
                    )
                    status = TransmissionRecordStatus.FAILED
                    message = f"Unexpected error: {e}"

        BULK_OPERATIONS_TOTAL.labels(operation=operation.value, status=status.value).inc()
        return {
            "device_id": device.id,
            "device_name": device.name,
            "status": status.value,
            "message": message,
        }

    async def _run(
        self,
        db: AsyncSession,
        project_id: UUID,
        operation: BulkOperation,
        connection_id: Optional[UUID]
    ) -> Dict[str, Any]:
        project: Project = await self.project_repository.get(db, project_id)
        if not project:
            raise NotFoundError(f"Project {project_id} not found")

        if connection_id is not None:
            connection = await self.connection_repository.get(db, connection_id)
            if not connection:
                raise NotFoundError(f"Connection {connection_id} not found")

        devices = await self.device_repository.get_project_devices(db, project_id)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        outcomes = await asyncio.gather(
            *[self._run_device(semaphore, operation, device, connection_id) for device in devices],
            return_exceptions=True
        )
        # Every device has settled; only now may a store failure abort the batch
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.error(
                    "Project bulk operation aborted",
                    project_id=str(project_id),
                    operation=operation.value,
                    error=str(outcome)
                )
                raise outcome
        results: List[Dict[str, Any]] = list(outcomes)

        successful = sum(1 for r in results if r["status"] == TransmissionRecordStatus.SUCCESS.value)
        failed = len(results) - successful

        new_status = derive_project_status(operation, project.transmission_status, successful)
        if new_status != project.transmission_status:
            project.transmission_status = new_status
            db.add(project)
            await db.commit()

        logger.info(
            "Project bulk operation completed",
            project_id=str(project_id),
            operation=operation.value,
            total=len(results),
            successful=successful,
            failed=failed,
            transmission_status=new_status
        )

        return {
            "project_id": project.id,
            "operation": operation.value,
            "transmission_status": new_status,
            "total_devices": len(results),
            "successful_operations": successful,
            "failed_operations": failed,
            "results": results,
        }


project_transmission = ProjectTransmissionOrchestrator()
