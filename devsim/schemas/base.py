"""
Base Pydantic Schemas
Shared model configuration for request and response bodies
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Reads ORM objects; enums are stored as their string values"""
    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        str_strip_whitespace=True,
        use_enum_values=True
    )


class BaseCreateSchema(BaseSchema):
    pass


class BaseUpdateSchema(BaseSchema):
    """Fields left unset are not touched (dump with exclude_unset)"""
    pass


class BaseResponseSchema(BaseSchema):
    id: UUID
    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseModel):
    message: str
