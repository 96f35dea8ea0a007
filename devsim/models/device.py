"""
Device Model
Simulated device, its transmission state machine and committed dataset
"""

import enum
import random as _random
import string
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from devsim.models.base import SoftDeleteModel


class DeviceType(str, enum.Enum):
    """Sensors send one row per transmission, dataloggers the whole dataset"""
    SENSOR = "Sensor"
    DATALOGGER = "Datalogger"


class TransmissionState(str, enum.Enum):
    INACTIVE = "INACTIVE"
    MANUAL = "MANUAL"     # enabled, scheduler not armed
    ACTIVE = "ACTIVE"     # enabled, scheduler armed
    PAUSED = "PAUSED"


class TransmissionAction(str, enum.Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    ENABLE = "enable"     # enabled without a connection to arm


_TRANSITIONS = {
    TransmissionState.INACTIVE: {
        TransmissionAction.START: TransmissionState.ACTIVE,
        TransmissionAction.STOP: TransmissionState.INACTIVE,
        TransmissionAction.ENABLE: TransmissionState.MANUAL,
    },
    TransmissionState.MANUAL: {
        TransmissionAction.START: TransmissionState.ACTIVE,
        TransmissionAction.STOP: TransmissionState.INACTIVE,
        TransmissionAction.ENABLE: TransmissionState.MANUAL,
    },
    TransmissionState.ACTIVE: {
        TransmissionAction.START: TransmissionState.ACTIVE,
        TransmissionAction.PAUSE: TransmissionState.PAUSED,
        TransmissionAction.STOP: TransmissionState.INACTIVE,
        TransmissionAction.ENABLE: TransmissionState.ACTIVE,
    },
    TransmissionState.PAUSED: {
        TransmissionAction.START: TransmissionState.ACTIVE,
        TransmissionAction.PAUSE: TransmissionState.PAUSED,
        TransmissionAction.RESUME: TransmissionState.ACTIVE,
        TransmissionAction.STOP: TransmissionState.INACTIVE,
        TransmissionAction.ENABLE: TransmissionState.PAUSED,
    },
}

# (transmission_enabled, transmission_paused) for each state
_STATE_FLAGS = {
    TransmissionState.INACTIVE: (False, False),
    TransmissionState.MANUAL: (True, False),
    TransmissionState.ACTIVE: (True, False),
    TransmissionState.PAUSED: (True, True),
}


def next_transmission_state(
    current: TransmissionState,
    action: TransmissionAction
) -> Optional[TransmissionState]:
    """Look up a transition. Returns None when the action is not allowed."""
    return _TRANSITIONS[current].get(action)


def generate_device_reference(length: int = 8) -> str:
    """Generate an alphanumeric device reference"""
    chars = string.ascii_uppercase + string.digits
    return ''.join(_random.choices(chars, k=length))


class Device(SoftDeleteModel):
    """Device model for simulated IoT devices"""
    __tablename__ = "devices"

    # Identity
    name = Column(String(100), nullable=False, index=True)
    reference = Column(String(8), nullable=False, unique=True, index=True, default=generate_device_reference)
    description = Column(Text, nullable=True)

    device_type = Column(String(20), nullable=False, default=DeviceType.SENSOR.value, index=True)

    # Transmission configuration
    transmission_frequency = Column(Integer, nullable=False, default=60)  # seconds
    transmission_state = Column(
        String(20),
        nullable=False,
        default=TransmissionState.INACTIVE.value,
        index=True
    )
    transmission_enabled = Column(Boolean, nullable=False, default=False)
    transmission_paused = Column(Boolean, nullable=False, default=False)
    selected_connection_id = Column(
        UUID(as_uuid=True),
        ForeignKey("connections.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Sensor cursor into csv_data rows
    current_row_index = Column(Integer, nullable=False, default=0)
    last_transmission_at = Column(DateTime(timezone=True), nullable=True)

    # Committed dataset: {"headers": [...], "csv_preview": [[...]], "json_preview": [{...}]}
    csv_data = Column(JSONB, nullable=True)

    project_id = Column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    connection = relationship("Connection", lazy="noload")
    project = relationship("Project", back_populates="devices", lazy="noload")

    __table_args__ = (
        Index('ix_device_state_deleted', 'transmission_state', 'is_deleted'),
        Index('ix_device_project_deleted', 'project_id', 'is_deleted'),
    )

    def __repr__(self):
        return f"<Device(name='{self.name}', reference='{self.reference}', state='{self.transmission_state}')>"

    @property
    def state(self) -> TransmissionState:
        return TransmissionState(self.transmission_state or TransmissionState.INACTIVE.value)

    def apply_transmission_state(self, state: TransmissionState):
        """Set the state and keep the two legacy flags in sync with it"""
        self.transmission_state = state.value
        self.transmission_enabled, self.transmission_paused = _STATE_FLAGS[state]

    @property
    def is_sensor(self) -> bool:
        return self.device_type == DeviceType.SENSOR.value

    @property
    def has_dataset(self) -> bool:
        return bool(self.csv_data) and self.row_count > 0

    @property
    def row_count(self) -> int:
        if not self.csv_data:
            return 0
        return len(self.csv_data.get("json_preview") or [])

    @property
    def dataset_rows(self) -> List[Dict[str, Any]]:
        if not self.csv_data:
            return []
        return list(self.csv_data.get("json_preview") or [])
