"""
Project Schemas
Request/response models for project management
"""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from devsim.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema


# ==================== Request Schemas ====================


class ProjectCreate(BaseCreateSchema):
    """Schema for creating a project"""
    name: str = Field(..., min_length=2, max_length=255, description="Project name")
    description: Optional[str] = Field(None, max_length=500, description="Project description")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Project name cannot be empty")
        return v


class ProjectUpdate(BaseUpdateSchema):
    """transmission_status is derived and cannot be set here"""
    name: Optional[str] = Field(None, min_length=2, max_length=255, description="Project name")
    description: Optional[str] = Field(None, max_length=500, description="Project description")


class ProjectDevicesRequest(BaseModel):
    device_ids: List[UUID] = Field(..., min_length=1, description="Devices to assign")


# ==================== Response Schemas ====================


class ProjectResponse(BaseResponseSchema):
    name: str
    description: Optional[str] = None
    transmission_status: str
    device_count: int = 0


class ProjectDevicesResponse(BaseModel):
    project_id: UUID
    assigned: List[UUID]
