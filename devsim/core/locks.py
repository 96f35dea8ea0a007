"""
Per-Device Locks
Single-writer discipline for read-modify-write transitions on a device
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict
from uuid import UUID


class DeviceLockRegistry:
    """Hands out one asyncio.Lock per device id (process-local)"""

    def __init__(self):
        self._locks: Dict[UUID, asyncio.Lock] = {}

    def get(self, device_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[device_id] = lock
        return lock

    @asynccontextmanager
    async def acquire(self, device_id: UUID):
        async with self.get(device_id):
            yield

    def discard(self, device_id: UUID):
        """Forget the lock of a deleted device"""
        lock = self._locks.get(device_id)
        if lock is not None and not lock.locked():
            del self._locks[device_id]


device_locks = DeviceLockRegistry()
