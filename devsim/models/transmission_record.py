"""
Transmission Record Model
Append-only history of every transmission attempt
"""

import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from devsim.core.database import Base


class TransmissionRecordStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TransmissionType(str, enum.Enum):
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"


class TransmissionRecord(Base):
    """
    One row per transmission attempt. Rows are written once and never updated.
    connection_name is a snapshot so renamed or deleted connections keep their history readable.
    """
    __tablename__ = "transmission_records"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    device_id = Column(UUID(as_uuid=True), ForeignKey("devices.id"), nullable=False, index=True)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True, index=True)
    connection_id = Column(UUID(as_uuid=True), ForeignKey("connections.id"), nullable=True, index=True)
    connection_name = Column(String(255), nullable=True)

    status = Column(String(10), nullable=False, index=True)
    transmission_type = Column(String(10), nullable=False, index=True)
    row_index = Column(Integer, nullable=True)
    response_time = Column(Integer, nullable=True)  # ms
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index('ix_record_device_timestamp', 'device_id', 'timestamp'),
        Index('ix_record_project_timestamp', 'project_id', 'timestamp'),
    )

    def __repr__(self):
        return f"<TransmissionRecord(device_id='{self.device_id}', status='{self.status}')>"
