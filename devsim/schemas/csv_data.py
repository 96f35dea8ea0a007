"""
CSV Data Schemas
Staged upload previews and the commit request
"""

from datetime import datetime
from typing import Any, Dict, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PreviewStaging(BaseModel):
    """Bounded preview of a parsed upload; the full parse stays server side"""
    staging_id: UUID
    device_id: UUID
    filename: str
    headers: List[str]
    csv_preview: List[List[str]]
    json_preview: List[Dict[str, Any]]
    row_count: int
    expires_at: datetime


class UploadResponse(BaseModel):
    preview: PreviewStaging


class CsvCommitPayload(BaseModel):
    """The preview object returned by upload; only staging_id is authoritative"""
    model_config = ConfigDict(extra="ignore")

    staging_id: UUID


class CsvCommitRequest(BaseModel):
    csv_data: CsvCommitPayload = Field(..., description="Preview returned by the upload endpoint")
