"""
Device Management Endpoints
Device CRUD, transmission control, CSV datasets and transmission history
"""

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.config import settings
from devsim.core.database import get_db
from devsim.core.exceptions import DevSimError, ValidationError
from devsim.models.transmission_record import TransmissionRecordStatus
from devsim.repositories.transmission_record import HistoryScope
from devsim.schemas.base import MessageResponse
from devsim.schemas.csv_data import CsvCommitRequest, UploadResponse
from devsim.schemas.device import (
    DeviceCreate,
    DeviceDuplicateRequest,
    DeviceResponse,
    DeviceUpdate,
    TransmissionConfigResponse,
    TransmissionConfigUpdate,
)
from devsim.schemas.transmission import (
    HistoryFilters,
    ResetSensorResponse,
    TransmissionHistoryPage,
    TransmissionRecordResponse,
    TransmissionStartRequest,
    TransmitRequest,
    TransmitResponse,
)
from devsim.services.csv_ingestion import csv_ingestion
from devsim.services.device import device_service
from devsim.services.device_transmission import device_transmission
from devsim.services.transmission_history import transmission_history

logger = structlog.get_logger()
router = APIRouter()


# ==================== Unassigned devices (before parameterized routes) ====================


@router.get("/unassigned", response_model=List[DeviceResponse])
async def list_unassigned_devices(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Devices not assigned to any project."""
    try:
        return await device_service.list_unassigned(db, skip=skip, limit=limit)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error listing unassigned devices", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list unassigned devices")


# ==================== CRUD ====================


@router.post("", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
async def create_device(
    device_in: DeviceCreate,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await device_service.create_device(db, device_in)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error creating device", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to create device")


@router.get("", response_model=List[DeviceResponse])
async def list_devices(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    search: Optional[str] = Query(None, description="Search by name or reference"),
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await device_service.list_devices(db, skip=skip, limit=limit, search=search)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error listing devices", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list devices")


@router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await device_service.get_device(db, device_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error getting device", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get device")


@router.put("/{device_id}", response_model=DeviceResponse)
async def update_device(
    device_id: UUID,
    device_in: DeviceUpdate,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await device_service.update_device(db, device_id, device_in)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error updating device", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to update device")


@router.delete("/{device_id}", response_model=MessageResponse)
async def delete_device(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Stops any transmission and soft deletes the device. History is kept."""
    try:
        await device_service.delete_device(db, device_id)
        return MessageResponse(message="Device deleted")
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error deleting device", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to delete device")


@router.post("/{device_id}/duplicate", response_model=List[DeviceResponse], status_code=status.HTTP_201_CREATED)
async def duplicate_device(
    device_id: UUID,
    request: DeviceDuplicateRequest,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Create `count` copies named "<name> 1".."<name> N"."""
    try:
        return await device_service.duplicate_device(db, device_id, request)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error duplicating device", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to duplicate device")


# ==================== Transmission Control ====================


@router.get("/{device_id}/transmission-config", response_model=TransmissionConfigResponse)
async def get_transmission_config(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await device_transmission.get_config(db, device_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error getting transmission config", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get transmission config")


@router.put("/{device_id}/transmission-config", response_model=DeviceResponse)
async def update_transmission_config(
    device_id: UUID,
    config: TransmissionConfigUpdate,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Enabling with a connection on an inactive device arms it immediately."""
    try:
        return await device_transmission.configure(db, device_id, config)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error updating transmission config", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to update transmission config")


@router.post("/{device_id}/transmission/start", response_model=DeviceResponse)
async def start_transmission(
    device_id: UUID,
    request: Optional[TransmissionStartRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        connection_id = request.connection_id if request else None
        return await device_transmission.start(db, device_id, connection_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error starting transmission", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to start transmission")


@router.post("/{device_id}/transmission/pause", response_model=DeviceResponse)
async def pause_transmission(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await device_transmission.pause(db, device_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error pausing transmission", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to pause transmission")


@router.post("/{device_id}/transmission/resume", response_model=DeviceResponse)
async def resume_transmission(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Resume from the preserved cursor."""
    try:
        return await device_transmission.resume(db, device_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error resuming transmission", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to resume transmission")


@router.post("/{device_id}/transmission/stop", response_model=DeviceResponse)
async def stop_transmission(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await device_transmission.stop(db, device_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error stopping transmission", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to stop transmission")


@router.post("/{device_id}/transmit", response_model=TransmitResponse)
async def transmit_now(
    device_id: UUID,
    request: TransmitRequest,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Single manual transmission; delivery failures return success=false."""
    try:
        result = await device_transmission.transmit_now(db, device_id, request.connection_id)
        record = result["last_transmission"]
        return TransmitResponse(
            success=result["success"],
            current_row_index=result["current_row_index"],
            last_transmission=TransmissionRecordResponse.model_validate(record) if record else None,
            error=result["error"],
        )
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error transmitting", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to transmit")


@router.post("/{device_id}/reset-sensor", response_model=ResetSensorResponse)
async def reset_sensor(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        device = await device_transmission.reset_sensor(db, device_id)
        return ResetSensorResponse(current_row_index=device.current_row_index)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error resetting sensor", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to reset sensor")


# ==================== CSV Dataset ====================


@router.post("/{device_id}/upload", response_model=UploadResponse)
async def upload_csv(
    device_id: UUID,
    file: UploadFile = File(..., description="CSV file"),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Parse a CSV into a preview. The device is unchanged until /save."""
    try:
        content = await file.read()
        preview = await csv_ingestion.stage(db, device_id, file.filename or "", content)
        return UploadResponse(preview=preview)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error uploading CSV", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to process upload")


@router.post("/{device_id}/save", response_model=DeviceResponse)
async def save_csv(
    device_id: UUID,
    request: CsvCommitRequest,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Commit a staged upload as the device dataset."""
    try:
        return await csv_ingestion.commit(db, device_id, request.csv_data.staging_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error saving CSV", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to save dataset")


# ==================== History ====================


@router.get("/{device_id}/transmission-history", response_model=TransmissionHistoryPage)
async def get_transmission_history(
    device_id: UUID,
    history_status: Optional[TransmissionRecordStatus] = Query(None, alias="status"),
    connection_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.HISTORY_DEFAULT_LIMIT, ge=1, le=settings.HISTORY_MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Paginated history, most recent first."""
    try:
        await device_service.get_device(db, device_id)
        filters = HistoryFilters(status=history_status, connection_id=connection_id)
        return await transmission_history.query(db, HistoryScope.device(device_id), filters, page=page, limit=limit)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error getting transmission history", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get transmission history")


@router.get("/{device_id}/transmission-history/export")
async def export_transmission_history(
    device_id: UUID,
    export_format: str = Query("csv", alias="format"),
    history_status: Optional[TransmissionRecordStatus] = Query(None, alias="status"),
    connection_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    """Export the filtered history as CSV."""
    try:
        if export_format.lower() != "csv":
            raise ValidationError(f"Unsupported export format '{export_format}'")
        await device_service.get_device(db, device_id)
        filters = HistoryFilters(status=history_status, connection_id=connection_id)
        content = await transmission_history.export_csv(db, HistoryScope.device(device_id), filters)
        return StreamingResponse(
            iter([content]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename=device_{device_id}_history.csv"},
        )
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error exporting history", device_id=str(device_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to export history")
