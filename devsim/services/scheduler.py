"""
Transmission Scheduler
Fixed-frequency automatic ticks for every ACTIVE device
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

import structlog

from devsim.core.config import settings
from devsim.core.database import AsyncSessionLocal
from devsim.core.metrics import SCHEDULED_DEVICES, SCHEDULER_TICK_ERRORS
from devsim.repositories.device import device_repository

logger = structlog.get_logger()

TickHandler = Callable[[UUID], Awaitable[object]]


@dataclass
class ScheduledDevice:
    """Runtime state for an armed device"""
    device_id: UUID
    frequency: int  # seconds
    last_tick: float
    armed_at: float = 0.0
    is_transmitting: bool = False  # prevents overlapping ticks


class TransmissionScheduler:
    """
    Dispatches a tick for each armed device once per frequency.

    The tick handler re-checks the device state under the device lock, so a
    device disarmed while a tick was queued produces no transmission.
    """

    def __init__(self, session_factory=None, repository=None):
        self.running = False
        self.active_devices: Dict[UUID, ScheduledDevice] = {}
        self.worker_tasks: List[asyncio.Task] = []
        self.tick_handler: Optional[TickHandler] = None
        self.session_factory = session_factory or AsyncSessionLocal
        self.repository = repository or device_repository
        self._semaphore = asyncio.Semaphore(settings.SCHEDULER_MAX_CONCURRENCY)

    # ==================== Armed Set ====================

    def arm(self, device_id: UUID, frequency: int):
        """Arm or re-arm a device. The first tick fires one period from now."""
        now = time.monotonic()
        current = self.active_devices.get(device_id)
        if current is not None:
            current.frequency = frequency
            current.armed_at = now
        else:
            self.active_devices[device_id] = ScheduledDevice(
                device_id=device_id,
                frequency=frequency,
                last_tick=now,
                armed_at=now,
            )
        SCHEDULED_DEVICES.set(len(self.active_devices))
        logger.debug("Device armed", device_id=str(device_id), frequency=frequency)

    def disarm(self, device_id: UUID):
        if self.active_devices.pop(device_id, None) is not None:
            SCHEDULED_DEVICES.set(len(self.active_devices))
            logger.debug("Device disarmed", device_id=str(device_id))

    def is_armed(self, device_id: UUID) -> bool:
        return device_id in self.active_devices

    def due_devices(self, now: Optional[float] = None) -> List[ScheduledDevice]:
        now = time.monotonic() if now is None else now
        return [
            entry for entry in self.active_devices.values()
            if not entry.is_transmitting and now - entry.last_tick >= entry.frequency
        ]

    # ==================== Lifecycle ====================

    async def start(self, tick_handler: TickHandler):
        """Start the tick loop and the periodic resync with the database"""
        if self.running:
            logger.warning("Transmission scheduler already running")
            return

        self.tick_handler = tick_handler
        self.running = True
        try:
            await self.sync_from_database()
        except Exception as e:
            # The sync loop retries on its next interval
            logger.error("Initial scheduler sync failed", error=str(e))

        self.worker_tasks.append(asyncio.create_task(self._tick_loop()))
        self.worker_tasks.append(asyncio.create_task(self._sync_loop()))
        logger.info("Transmission scheduler started", armed=len(self.active_devices))

    async def stop(self):
        if not self.running:
            return

        self.running = False
        for task in self.worker_tasks:
            task.cancel()
        if self.worker_tasks:
            await asyncio.gather(*self.worker_tasks, return_exceptions=True)

        self.worker_tasks.clear()
        self.active_devices.clear()
        SCHEDULED_DEVICES.set(0)
        logger.info("Transmission scheduler stopped")

    async def sync_from_database(self):
        """Arm every ACTIVE device, disarm the rest"""
        sync_started = time.monotonic()
        async with self.session_factory() as db:
            devices = await self.repository.get_armed(db)

        armed_ids = {device.id for device in devices}
        for device in devices:
            if device.id not in self.active_devices:
                self.arm(device.id, device.transmission_frequency)
        for device_id in list(self.active_devices):
            entry = self.active_devices[device_id]
            # Entries armed while the query ran are newer than the snapshot
            if device_id not in armed_ids and entry.armed_at < sync_started and not entry.is_transmitting:
                self.disarm(device_id)

    # ==================== Core Loops ====================

    async def run_due(self, now: Optional[float] = None):
        """Dispatch every due device concurrently and wait for all of them"""
        due = self.due_devices(now)
        if due:
            await asyncio.gather(*[self._guarded_tick(entry) for entry in due], return_exceptions=True)

    async def _guarded_tick(self, entry: ScheduledDevice):
        entry.is_transmitting = True
        try:
            async with self._semaphore:
                try:
                    await self.tick_handler(entry.device_id)
                except Exception as e:
                    # Ticks never propagate; the next interval runs regardless
                    SCHEDULER_TICK_ERRORS.inc()
                    logger.error("Scheduled transmission failed", device_id=str(entry.device_id), error=str(e))
        finally:
            entry.last_tick = time.monotonic()
            entry.is_transmitting = False

    async def _tick_loop(self):
        logger.info("Starting scheduler tick loop", interval=settings.SCHEDULER_TICK_INTERVAL)
        try:
            while self.running:
                try:
                    await self.run_due()
                    await asyncio.sleep(settings.SCHEDULER_TICK_INTERVAL)
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error("Scheduler loop error", error=str(e))
                    await asyncio.sleep(1)
        finally:
            logger.info("Scheduler tick loop stopped")

    async def _sync_loop(self):
        try:
            while self.running:
                try:
                    await asyncio.sleep(settings.SCHEDULER_SYNC_INTERVAL)
                    await self.sync_from_database()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error("Scheduler sync error", error=str(e))
        finally:
            logger.info("Scheduler sync loop stopped")


transmission_scheduler = TransmissionScheduler()
