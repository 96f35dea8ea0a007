"""
Project Management Endpoints
Project CRUD, device assignment, bulk transmission control and history
"""

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.config import settings
from devsim.core.database import get_db
from devsim.core.exceptions import DevSimError, ValidationError
from devsim.models.project import Project
from devsim.models.transmission_record import TransmissionRecordStatus
from devsim.repositories.transmission_record import HistoryScope
from devsim.schemas.base import MessageResponse
from devsim.schemas.device import DeviceResponse
from devsim.schemas.project import (
    ProjectCreate,
    ProjectDevicesRequest,
    ProjectDevicesResponse,
    ProjectResponse,
    ProjectUpdate,
)
from devsim.schemas.transmission import (
    BulkOperationResponse,
    BulkTransmissionRequest,
    HistoryFilters,
    ProjectTransmissionsResponse,
)
from devsim.services.project import project_service
from devsim.services.project_transmission import project_transmission
from devsim.services.transmission_history import transmission_history

logger = structlog.get_logger()
router = APIRouter()


async def _to_response(db: AsyncSession, project: Project) -> ProjectResponse:
    response = ProjectResponse.model_validate(project)
    response.device_count = await project_service.count_devices(db, project.id)
    return response


# ==================== CRUD ====================


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_in: ProjectCreate,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Create a new project."""
    try:
        project = await project_service.create_project(db, project_in)
        return ProjectResponse.model_validate(project)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error creating project", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to create project")


@router.get("", response_model=List[ProjectResponse])
async def list_projects(
    search: Optional[str] = Query(None, description="Search in name"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        projects = await project_service.list_projects(db, skip=skip, limit=limit, search=search)
        return [await _to_response(db, project) for project in projects]
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error listing projects", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list projects")


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        project = await project_service.get_project(db, project_id)
        return await _to_response(db, project)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error getting project", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get project")


@router.put("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: UUID,
    project_in: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        project = await project_service.update_project(db, project_id, project_in)
        return await _to_response(db, project)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error updating project", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to update project")


@router.delete("/{project_id}", response_model=MessageResponse)
async def delete_project(
    project_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Stops and unassigns every device, then deletes the project."""
    try:
        result = await project_service.delete_project(db, project_id)
        return MessageResponse(message=f"Project deleted, {result['released_devices']} devices unassigned")
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error deleting project", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to delete project")


# ==================== Device Membership ====================


@router.get("/{project_id}/devices", response_model=List[DeviceResponse])
async def list_project_devices(
    project_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await project_service.list_devices(db, project_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error listing project devices", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list project devices")


@router.post("/{project_id}/devices", response_model=ProjectDevicesResponse)
async def add_project_devices(
    project_id: UUID,
    request: ProjectDevicesRequest,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Assign devices; nothing is assigned if any device belongs to another project."""
    try:
        assigned = await project_service.add_devices(db, project_id, request.device_ids)
        return ProjectDevicesResponse(project_id=project_id, assigned=assigned)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error assigning devices", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to assign devices")


@router.delete("/{project_id}/devices/{device_id}", response_model=DeviceResponse)
async def remove_project_device(
    project_id: UUID,
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Stop the device and return it to the unassigned pool."""
    try:
        return await project_service.remove_device(db, project_id, device_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error(
            "Error removing device from project",
            project_id=str(project_id),
            device_id=str(device_id),
            error=str(e)
        )
        raise HTTPException(status_code=500, detail="Failed to remove device")


# ==================== Bulk Transmission Control ====================


@router.post("/{project_id}/start-transmission", response_model=BulkOperationResponse)
async def start_project_transmission(
    project_id: UUID,
    request: Optional[BulkTransmissionRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Start every device; per-device failures are reported, not raised."""
    try:
        connection_id = request.connection_id if request else None
        return await project_transmission.start_all(db, project_id, connection_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error starting project transmissions", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to start transmissions")


@router.post("/{project_id}/pause-transmission", response_model=BulkOperationResponse)
async def pause_project_transmission(
    project_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Pause every device, preserving row cursors."""
    try:
        return await project_transmission.pause_all(db, project_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error pausing project transmissions", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to pause transmissions")


@router.post("/{project_id}/resume-transmission", response_model=BulkOperationResponse)
async def resume_project_transmission(
    project_id: UUID,
    request: Optional[BulkTransmissionRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        connection_id = request.connection_id if request else None
        return await project_transmission.resume_all(db, project_id, connection_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error resuming project transmissions", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to resume transmissions")


@router.post("/{project_id}/stop-transmission", response_model=BulkOperationResponse)
async def stop_project_transmission(
    project_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await project_transmission.stop_all(db, project_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error stopping project transmissions", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to stop transmissions")


# ==================== History ====================


@router.get("/{project_id}/transmission-history", response_model=ProjectTransmissionsResponse)
async def get_project_transmission_history(
    project_id: UUID,
    limit: int = Query(settings.HISTORY_DEFAULT_LIMIT, ge=1, le=settings.HISTORY_MAX_LIMIT),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Most recent records of every device in the project."""
    try:
        await project_service.get_project(db, project_id)
        transmissions = await transmission_history.recent(
            db, HistoryScope.project(project_id), limit=limit, offset=offset
        )
        return ProjectTransmissionsResponse(transmissions=transmissions)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error getting transmission history", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get transmission history")


@router.get("/{project_id}/transmission-history/export")
async def export_project_transmission_history(
    project_id: UUID,
    export_format: str = Query("csv", alias="format"),
    history_status: Optional[TransmissionRecordStatus] = Query(None, alias="status"),
    connection_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    """Export transmission history as CSV."""
    try:
        if export_format.lower() != "csv":
            raise ValidationError(f"Unsupported export format '{export_format}'")
        await project_service.get_project(db, project_id)
        filters = HistoryFilters(status=history_status, connection_id=connection_id)
        content = await transmission_history.export_csv(db, HistoryScope.project(project_id), filters)
        return StreamingResponse(
            iter([content]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename=project_{project_id}_history.csv"},
        )
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error exporting history", project_id=str(project_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to export history")
