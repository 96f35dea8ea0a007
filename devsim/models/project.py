"""
Project Model
Named grouping of devices with bulk transmission control
"""

import enum

from sqlalchemy import Column, String, Text
from sqlalchemy.orm import relationship

from devsim.models.base import SoftDeleteModel


class TransmissionStatus(str, enum.Enum):
    """Project transmission status, derived from bulk operations"""
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class Project(SoftDeleteModel):
    """Project model for organizing devices and controlling bulk transmissions"""
    __tablename__ = "projects"

    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    transmission_status = Column(
        String(20),
        default=TransmissionStatus.INACTIVE.value,
        nullable=False,
        index=True,
    )

    devices = relationship("Device", back_populates="project", lazy="noload")

    def __repr__(self):
        return f"<Project(name='{self.name}', status='{self.transmission_status}')>"
