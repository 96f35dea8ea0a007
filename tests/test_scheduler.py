"""
Tests for TransmissionScheduler: armed set, due selection and resync.
"""

import asyncio
import time
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from devsim.services.scheduler import TransmissionScheduler

from conftest import FakeSessionFactory, make_device


def _scheduler(armed_devices=()):
    repository = AsyncMock()
    repository.get_armed = AsyncMock(return_value=list(armed_devices))
    return TransmissionScheduler(session_factory=FakeSessionFactory(), repository=repository)


class TestArmedSet:

    def test_arm_and_disarm(self):
        scheduler = _scheduler()
        device_id = uuid4()

        scheduler.arm(device_id, 30)
        assert scheduler.is_armed(device_id)

        scheduler.disarm(device_id)
        assert not scheduler.is_armed(device_id)

    def test_disarm_unknown_is_noop(self):
        scheduler = _scheduler()
        scheduler.disarm(uuid4())
        assert scheduler.active_devices == {}

    def test_rearm_updates_frequency(self):
        scheduler = _scheduler()
        device_id = uuid4()
        scheduler.arm(device_id, 30)
        scheduler.arm(device_id, 5)

        assert len(scheduler.active_devices) == 1
        assert scheduler.active_devices[device_id].frequency == 5

    def test_first_tick_is_one_period_after_arming(self):
        scheduler = _scheduler()
        device_id = uuid4()
        scheduler.arm(device_id, 10)
        armed = scheduler.active_devices[device_id].last_tick

        assert scheduler.due_devices(armed + 9.9) == []
        assert [e.device_id for e in scheduler.due_devices(armed + 10)] == [device_id]

    def test_in_flight_device_is_not_due(self):
        scheduler = _scheduler()
        device_id = uuid4()
        scheduler.arm(device_id, 1)
        scheduler.active_devices[device_id].is_transmitting = True

        assert scheduler.due_devices(time.monotonic() + 60) == []


class TestRunDue:

    @pytest.mark.asyncio
    async def test_handler_called_for_due_devices(self):
        scheduler = _scheduler()
        due_id, later_id = uuid4(), uuid4()
        scheduler.arm(due_id, 1)
        scheduler.arm(later_id, 3600)
        scheduler.tick_handler = AsyncMock()

        await scheduler.run_due(time.monotonic() + 5)

        scheduler.tick_handler.assert_awaited_once_with(due_id)
        assert scheduler.active_devices[due_id].is_transmitting is False

    @pytest.mark.asyncio
    async def test_handler_errors_are_contained(self):
        scheduler = _scheduler()
        first, second = uuid4(), uuid4()
        scheduler.arm(first, 1)
        scheduler.arm(second, 1)
        scheduler.tick_handler = AsyncMock(side_effect=[RuntimeError("boom"), None])

        await scheduler.run_due(time.monotonic() + 5)

        assert scheduler.tick_handler.await_count == 2
        assert scheduler.is_armed(first)
        assert scheduler.is_armed(second)

    @pytest.mark.asyncio
    async def test_last_tick_advances(self):
        scheduler = _scheduler()
        device_id = uuid4()
        scheduler.arm(device_id, 1)
        before = scheduler.active_devices[device_id].last_tick
        scheduler.tick_handler = AsyncMock()

        await scheduler.run_due(time.monotonic() + 5)

        assert scheduler.active_devices[device_id].last_tick > before


class TestSync:

    @pytest.mark.asyncio
    async def test_sync_arms_active_devices(self):
        device = make_device(state="ACTIVE", frequency=15)
        scheduler = _scheduler([device])

        await scheduler.sync_from_database()

        assert scheduler.is_armed(device.id)
        assert scheduler.active_devices[device.id].frequency == 15

    @pytest.mark.asyncio
    async def test_sync_disarms_stale_entries(self):
        scheduler = _scheduler([])
        stale = uuid4()
        scheduler.arm(stale, 10)
        scheduler.active_devices[stale].armed_at = time.monotonic() - 100

        await scheduler.sync_from_database()

        assert not scheduler.is_armed(stale)

    @pytest.mark.asyncio
    async def test_sync_keeps_entries_armed_during_query(self):
        scheduler = _scheduler([])
        fresh = uuid4()

        async def get_armed(db):
            scheduler.arm(fresh, 10)
            return []

        scheduler.repository.get_armed = AsyncMock(side_effect=get_armed)
        await scheduler.sync_from_database()

        assert scheduler.is_armed(fresh)


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_survives_failed_sync(self):
        scheduler = _scheduler()
        scheduler.repository.get_armed = AsyncMock(side_effect=ConnectionError("db down"))

        await scheduler.start(AsyncMock())
        try:
            assert scheduler.running is True
            assert len(scheduler.worker_tasks) == 2
        finally:
            await scheduler.stop()

        assert scheduler.running is False
        assert scheduler.worker_tasks == []

    @pytest.mark.asyncio
    async def test_stop_clears_armed_set(self):
        device = make_device(state="ACTIVE")
        scheduler = _scheduler([device])

        await scheduler.start(AsyncMock())
        await asyncio.sleep(0)
        await scheduler.stop()

        assert scheduler.active_devices == {}
