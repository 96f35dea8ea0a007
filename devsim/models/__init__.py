"""
SQLAlchemy Models Package
Devices, connections, projects and the transmission history
"""

from devsim.models.connection import AuthType, Connection, ConnectionType
from devsim.models.device import (
    Device,
    DeviceType,
    TransmissionAction,
    TransmissionState,
    generate_device_reference,
    next_transmission_state,
)
from devsim.models.project import Project, TransmissionStatus
from devsim.models.transmission_record import (
    TransmissionRecord,
    TransmissionRecordStatus,
    TransmissionType,
)

__all__ = [
    "AuthType",
    "Connection",
    "ConnectionType",
    "Device",
    "DeviceType",
    "TransmissionAction",
    "TransmissionState",
    "generate_device_reference",
    "next_transmission_state",
    "Project",
    "TransmissionStatus",
    "TransmissionRecord",
    "TransmissionRecordStatus",
    "TransmissionType",
]
