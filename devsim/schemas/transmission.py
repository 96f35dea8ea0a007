"""
Transmission Schemas
History records, history pages and bulk operation results
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from devsim.models.transmission_record import TransmissionRecordStatus
from devsim.schemas.base import BaseSchema


# ==================== History ====================


class HistoryFilters(BaseModel):
    """Filters combine with logical AND"""
    status: Optional[TransmissionRecordStatus] = None
    connection_id: Optional[UUID] = None


class TransmissionRecordResponse(BaseSchema):
    id: UUID
    device_id: UUID
    project_id: Optional[UUID] = None
    connection_id: Optional[UUID] = None
    connection_name: Optional[str] = None
    status: str
    transmission_type: str
    row_index: Optional[int] = None
    timestamp: datetime
    response_time: Optional[int] = Field(None, description="Milliseconds")
    error_message: Optional[str] = None


class ProjectTransmissionItem(TransmissionRecordResponse):
    device_name: Optional[str] = None
    device_reference: Optional[str] = None


class TransmissionHistoryPage(BaseModel):
    history: List[ProjectTransmissionItem]
    total: int
    page: int
    limit: int
    total_pages: int


class ProjectTransmissionsResponse(BaseModel):
    transmissions: List[ProjectTransmissionItem]


class ConnectionHistoryResponse(BaseModel):
    history: List[ProjectTransmissionItem]


# ==================== Device Operations ====================


class TransmissionStartRequest(BaseModel):
    connection_id: Optional[UUID] = Field(None, description="Defaults to the device's selected connection")


class TransmitRequest(BaseModel):
    connection_id: UUID


class TransmitResponse(BaseModel):
    success: bool
    current_row_index: Optional[int] = None
    last_transmission: Optional[TransmissionRecordResponse] = None
    error: Optional[str] = None


class ResetSensorResponse(BaseModel):
    current_row_index: int


# ==================== Bulk Operations ====================


class BulkTransmissionRequest(BaseModel):
    connection_id: Optional[UUID] = Field(None, description="Overrides every device's own connection")


class DeviceOperationResult(BaseModel):
    device_id: UUID
    device_name: str
    status: TransmissionRecordStatus
    message: str


class BulkOperationResponse(BaseModel):
    project_id: UUID
    operation: str
    transmission_status: str
    total_devices: int
    successful_operations: int
    failed_operations: int
    results: List[DeviceOperationResult]
