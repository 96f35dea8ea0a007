"""
Device Schemas
Request/response models for devices and their transmission configuration
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from devsim.core.config import settings
from devsim.models.device import DeviceType
from devsim.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseSchema, BaseUpdateSchema


# ==================== Request Schemas ====================


class DeviceCreate(BaseCreateSchema):
    """Schema for creating a device"""
    name: str = Field(..., min_length=1, max_length=100, description="Device name")
    reference: Optional[str] = Field(
        None,
        pattern=r"^[A-Z0-9]{8}$",
        description="8-character uppercase reference, generated when omitted"
    )
    description: Optional[str] = Field(None, max_length=1000)
    device_type: DeviceType = DeviceType.SENSOR
    transmission_frequency: int = Field(60, gt=0, le=172800, description="Seconds between automatic ticks")

    @field_validator('reference', mode='before')
    @classmethod
    def uppercase_reference(cls, v):
        return v.upper() if isinstance(v, str) else v


class DeviceUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)


class DeviceDuplicateRequest(BaseModel):
    count: int = Field(..., ge=1, le=settings.MAX_DEVICE_DUPLICATION, description="Number of copies")


class TransmissionConfigUpdate(BaseModel):
    device_type: DeviceType
    transmission_frequency: int = Field(..., gt=0, le=172800, description="Seconds between automatic ticks")
    transmission_enabled: bool
    connection_id: Optional[UUID] = None


# ==================== Response Schemas ====================


class CsvDataView(BaseModel):
    """Committed dataset, truncated to the preview size"""
    headers: List[str] = Field(default_factory=list)
    csv_preview: List[List[str]] = Field(default_factory=list)
    json_preview: List[Dict[str, Any]] = Field(default_factory=list)


class DeviceResponse(BaseResponseSchema):
    reference: str
    name: str
    description: Optional[str] = None
    device_type: str
    transmission_frequency: int
    transmission_state: str
    transmission_enabled: bool
    transmission_paused: bool
    selected_connection_id: Optional[UUID] = None
    current_row_index: int
    row_count: int = 0
    csv_data: Optional[CsvDataView] = None
    project_id: Optional[UUID] = None
    last_transmission_at: Optional[datetime] = None

    @field_validator('csv_data', mode='before')
    @classmethod
    def truncate_dataset(cls, v: Any) -> Any:
        if not v:
            return None
        limit = settings.CSV_PREVIEW_ROWS
        return {
            "headers": v.get("headers") or [],
            "csv_preview": (v.get("csv_preview") or [])[:limit],
            "json_preview": (v.get("json_preview") or [])[:limit],
        }


class TransmissionConfigResponse(BaseSchema):
    id: UUID
    device_type: str
    transmission_frequency: int
    transmission_state: str
    transmission_enabled: bool
    transmission_paused: bool
    selected_connection_id: Optional[UUID] = None
    current_row_index: int
    row_count: int = 0
    last_transmission_at: Optional[datetime] = None
