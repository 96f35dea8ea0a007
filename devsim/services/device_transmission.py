"""
Device Transmission Controller
Per-device transmission state machine, manual sends and scheduled ticks
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.database import AsyncSessionLocal
from devsim.core.exceptions import ConflictError, NotFoundError, ValidationError
from devsim.core.locks import DeviceLockRegistry, device_locks
from devsim.models.connection import Connection
from devsim.models.device import (
    Device,
    DeviceType,
    TransmissionAction,
    TransmissionState,
    next_transmission_state,
)
from devsim.models.transmission_record import (
    TransmissionRecord,
    TransmissionRecordStatus,
    TransmissionType,
)
from devsim.repositories.connection import connection_repository
from devsim.repositories.device import device_repository
from devsim.schemas.device import TransmissionConfigUpdate
from devsim.services.scheduler import TransmissionScheduler, transmission_scheduler
from devsim.services.transmission_history import TransmissionHistoryStore, transmission_history
from devsim.services.transport import TransportGateway, transport_gateway

logger = structlog.get_logger()


class DeviceTransmissionController:
    """
    Owns the transmission state of single devices.

    Every read-modify-write runs under the device's lock, including the
    delivery itself, so the cursor advance and its history record are
    committed together and stop() can never interleave with a send.
    """

    def __init__(
        self,
        scheduler: Optional[TransmissionScheduler] = None,
        gateway: Optional[TransportGateway] = None,
        history: Optional[TransmissionHistoryStore] = None,
        locks: Optional[DeviceLockRegistry] = None,
        device_repo=None,
        connection_repo=None,
        session_factory=None,
    ):
        self.scheduler = scheduler or transmission_scheduler
        self.gateway = gateway or transport_gateway
        self.history = history or transmission_history
        self.locks = locks or device_locks
        self.device_repository = device_repo or device_repository
        self.connection_repository = connection_repo or connection_repository
        self.session_factory = session_factory or AsyncSessionLocal

    # ==================== Helpers ====================

    async def _get_device(self, db: AsyncSession, device_id: UUID) -> Device:
        device = await self.device_repository.get(db, device_id)
        if not device:
            raise NotFoundError(f"Device {device_id} not found")
        return device

    async def _get_connection(self, db: AsyncSession, connection_id: UUID, require_active: bool = True) -> Connection:
        connection = await self.connection_repository.get(db, connection_id)
        if not connection:
            raise NotFoundError(f"Connection {connection_id} not found")
        if require_active and not connection.is_active:
            raise ValidationError(f"Connection '{connection.name}' is not active")
        return connection

    def _transition(self, device: Device, action: TransmissionAction) -> TransmissionState:
        new_state = next_transmission_state(device.state, action)
        if new_state is None:
            raise ConflictError(f"Cannot {action.value} a device in state {device.state.value}")
        return new_state

    async def _save(self, db: AsyncSession, device: Device) -> Device:
        db.add(device)
        await db.commit()
        await db.refresh(device)
        return device

    def _sync_scheduler(self, device: Device):
        if device.state == TransmissionState.ACTIVE:
            self.scheduler.arm(device.id, device.transmission_frequency)
        else:
            self.scheduler.disarm(device.id)

    # ==================== Configuration ====================

    async def get_config(self, db: AsyncSession, device_id: UUID) -> Device:
        return await self._get_device(db, device_id)

    async def configure(
        self,
        db: AsyncSession,
        device_id: UUID,
        config: TransmissionConfigUpdate
    ) -> Device:
        """
        Update type, frequency and connection, and apply the enabled flag.

        Enabling an inactive device together with a connection arms it in the
        same step (configure-and-arm). Enabling without a connection leaves the
        device in MANUAL. Disabling stops it.
        """
        frequency = config.transmission_frequency
        if frequency is None or frequency <= 0:
            raise ValidationError("transmission_frequency must be greater than 0")
        device_type = getattr(config.device_type, "value", config.device_type)

        async with self.locks.acquire(device_id):
            device = await self._get_device(db, device_id)
            connection = None
            if config.connection_id is not None:
                connection = await self._get_connection(db, config.connection_id, require_active=False)

            if config.transmission_enabled and device_type == DeviceType.SENSOR.value and not device.has_dataset:
                raise ValidationError("Sensor devices need a committed dataset before transmission can be enabled")

            state = device.state
            if not config.transmission_enabled:
                new_state = self._transition(device, TransmissionAction.STOP)
            elif state == TransmissionState.ACTIVE:
                if connection is not None and connection.id != device.selected_connection_id:
                    raise ConflictError("Device is transmitting through another connection; stop it first")
                new_state = TransmissionState.ACTIVE
            elif state == TransmissionState.INACTIVE and connection is not None:
                if not connection.is_active:
                    raise ValidationError(f"Connection '{connection.name}' is not active")
                if not device.has_dataset:
                    raise ValidationError("Device has no committed dataset")
                new_state = self._transition(device, TransmissionAction.START)
            else:
                new_state = self._transition(device, TransmissionAction.ENABLE)

            device.device_type = device_type
            device.transmission_frequency = frequency
            if connection is not None:
                device.selected_connection_id = connection.id
            device.apply_transmission_state(new_state)
            await self._save(db, device)
            self._sync_scheduler(device)

        logger.info(
            "Device transmission configured",
            device_id=str(device_id),
            state=device.transmission_state,
            frequency=frequency
        )
        return device

    # ==================== Lifecycle ====================

    async def start(self, db: AsyncSession, device_id: UUID, connection_id: Optional[UUID] = None) -> Device:
        async with self.locks.acquire(device_id):
            device = await self._get_device(db, device_id)

            target_id = connection_id or device.selected_connection_id
            if target_id is None:
                raise ValidationError("No connection selected for this device")
            connection = await self._get_connection(db, target_id)

            if not device.has_dataset:
                raise ValidationError("Device has no committed dataset")

            if device.state == TransmissionState.ACTIVE:
                if device.selected_connection_id == connection.id:
                    return device
                raise ConflictError("Device is transmitting through another connection; stop it first")

            device.selected_connection_id = connection.id
            device.apply_transmission_state(self._transition(device, TransmissionAction.START))
            await self._save(db, device)
            self._sync_scheduler(device)

        logger.info("Device transmission started", device_id=str(device_id), connection_id=str(connection.id))
        return device

    async def pause(self, db: AsyncSession, device_id: UUID) -> Device:
        async with self.locks.acquire(device_id):
            device = await self._get_device(db, device_id)
            if device.state == TransmissionState.PAUSED:
                return device

            device.apply_transmission_state(self._transition(device, TransmissionAction.PAUSE))
            await self._save(db, device)
            self._sync_scheduler(device)

        logger.info("Device transmission paused", device_id=str(device_id))
        return device

    async def resume(self, db: AsyncSession, device_id: UUID, connection_id: Optional[UUID] = None) -> Device:
        """PAUSED -> ACTIVE, optionally switching to another connection"""
        async with self.locks.acquire(device_id):
            device = await self._get_device(db, device_id)
            new_state = self._transition(device, TransmissionAction.RESUME)
            if connection_id is not None:
                connection = await self._get_connection(db, connection_id)
                device.selected_connection_id = connection.id
            if device.selected_connection_id is None:
                raise ValidationError("No connection selected for this device")

            device.apply_transmission_state(new_state)
            await self._save(db, device)
            self._sync_scheduler(device)

        logger.info("Device transmission resumed", device_id=str(device_id))
        return device

    async def stop(self, db: AsyncSession, device_id: UUID) -> Device:
        """Valid from any state. Also clears a stale paused flag."""
        async with self.locks.acquire(device_id):
            device = await self._get_device(db, device_id)
            # Disarm first so no further tick is dispatched
            self.scheduler.disarm(device.id)
            if device.state != TransmissionState.INACTIVE or device.transmission_paused or device.transmission_enabled:
                device.apply_transmission_state(self._transition(device, TransmissionAction.STOP))
                await self._save(db, device)

        logger.info("Device transmission stopped", device_id=str(device_id))
        return device

    async def reset_sensor(self, db: AsyncSession, device_id: UUID) -> Device:
        async with self.locks.acquire(device_id):
            device = await self._get_device(db, device_id)
            device.current_row_index = 0
            await self._save(db, device)

        logger.info("Device sensor cursor reset", device_id=str(device_id))
        return device

    # ==================== Transmission ====================

    async def transmit_now(self, db: AsyncSession, device_id: UUID, connection_id: UUID) -> Dict[str, Any]:
        """
        Single manual transmission. Refused while the device transmits automatically.

        Delivery failures are not raised; they come back with success=False and
        are recorded like any other attempt.
        """
        async with self.locks.acquire(device_id):
            device = await self._get_device(db, device_id)
            if device.state == TransmissionState.ACTIVE:
                raise ConflictError("Device is transmitting automatically; pause or stop it before sending manually")

            connection = await self._get_connection(db, connection_id)
            if not device.has_dataset:
                raise ValidationError("Device has no committed dataset")

            record = await self._transmit(db, device, connection, TransmissionType.MANUAL)

        return {
            "success": record.status == TransmissionRecordStatus.SUCCESS.value,
            "current_row_index": device.current_row_index,
            "last_transmission": record,
            "error": record.error_message,
        }

    async def run_scheduled_tick(self, device_id: UUID) -> Optional[TransmissionRecord]:
        """
        Automatic tick, called by the scheduler with its own session.

        Returns None when the device is no longer ACTIVE by the time the lock
        is acquired (stopped or paused since the tick was dispatched).
        """
        async with self.session_factory() as db:
            async with self.locks.acquire(device_id):
                device = await self.device_repository.get(db, device_id)
                if device is None or device.state != TransmissionState.ACTIVE:
                    self.scheduler.disarm(device_id)
                    return None
                if not device.has_dataset:
                    return None

                connection = None
                if device.selected_connection_id is not None:
                    connection = await self.connection_repository.get(db, device.selected_connection_id)

                if connection is None or not connection.is_active:
                    entry = TransmissionRecord(
                        device_id=device.id,
                        project_id=device.project_id,
                        connection_id=connection.id if connection else None,
                        connection_name=connection.name if connection else None,
                        status=TransmissionRecordStatus.FAILED.value,
                        transmission_type=TransmissionType.AUTOMATIC.value,
                        row_index=None,
                        error_message="Connection is missing or inactive",
                    )
                    return await self.history.record(db, entry)

                return await self._transmit(db, device, connection, TransmissionType.AUTOMATIC)

    def build_payload(
        self,
        device: Device,
        data: Union[Dict[str, Any], List[Dict[str, Any]]],
        row_index: Optional[int]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "device_id": device.reference,
            "device_name": device.name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if row_index is not None:
            payload["row_index"] = row_index
        else:
            payload["row_count"] = len(data)
        payload["data"] = data
        return payload

    async def _transmit(
        self,
        db: AsyncSession,
        device: Device,
        connection: Connection,
        transmission_type: TransmissionType
    ) -> TransmissionRecord:
        """
        Send the current row (Sensor) or the whole dataset, advance the cursor
        whatever the outcome, and record the attempt. Caller holds the lock.
        """
        rows = device.dataset_rows
        if device.is_sensor:
            row_index = device.current_row_index if device.current_row_index < len(rows) else 0
            payload = self.build_payload(device, rows[row_index], row_index)
        else:
            row_index = None
            payload = self.build_payload(device, rows, None)

        result = await self.gateway.deliver(connection, payload)

        if row_index is not None:
            device.current_row_index = (row_index + 1) % len(rows)
        device.last_transmission_at = datetime.now(timezone.utc)
        db.add(device)

        status = TransmissionRecordStatus.SUCCESS if result.success else TransmissionRecordStatus.FAILED
        entry = TransmissionRecord(
            device_id=device.id,
            project_id=device.project_id,
            connection_id=connection.id,
            connection_name=connection.name,
            status=status.value,
            transmission_type=transmission_type.value,
            row_index=row_index,
            timestamp=result.timestamp,
            response_time=int(round(result.latency_ms)),
            error_message=None if result.success else result.message,
        )
        # The device update and the record commit together
        record = await self.history.record(db, entry, protocol=connection.type)

        log = logger.info if result.success else logger.warning
        log(
            "Device transmission attempted",
            device_id=str(device.id),
            transmission_type=transmission_type.value,
            status=status.value,
            row_index=row_index,
            latency_ms=round(result.latency_ms, 2)
        )
        return record


device_transmission = DeviceTransmissionController()
