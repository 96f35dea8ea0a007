"""
Tests for ProjectTransmissionOrchestrator.
Bulk lifecycle commands, per-device failure capture and project status derivation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from devsim.core.exceptions import ConflictError, NotFoundError, StoreFault, ValidationError
from devsim.models.project import TransmissionStatus
from devsim.services.project_transmission import (
    BulkOperation,
    ProjectTransmissionOrchestrator,
    derive_project_status,
)

from conftest import FakeSessionFactory, make_connection, make_device, make_project, repository_for


def _orchestrator(project, devices, controller=None, connections=()):
    device_repo = AsyncMock()
    device_repo.get_project_devices = AsyncMock(return_value=devices)
    return ProjectTransmissionOrchestrator(
        controller=controller or AsyncMock(),
        session_factory=FakeSessionFactory(),
        project_repo=repository_for(project),
        device_repo=device_repo,
        connection_repo=repository_for(*connections),
        max_concurrency=2,
    )


class TestDeriveStatus:

    def test_stop_always_inactive(self):
        assert derive_project_status(BulkOperation.STOP, "ACTIVE", 0) == TransmissionStatus.INACTIVE.value

    def test_start_with_success_is_active(self):
        assert derive_project_status(BulkOperation.START, "INACTIVE", 1) == TransmissionStatus.ACTIVE.value

    def test_pause_with_success_is_paused(self):
        assert derive_project_status(BulkOperation.PAUSE, "ACTIVE", 2) == TransmissionStatus.PAUSED.value

    def test_nothing_succeeded_keeps_status(self):
        assert derive_project_status(BulkOperation.START, "INACTIVE", 0) == "INACTIVE"
        assert derive_project_status(BulkOperation.RESUME, "PAUSED", 0) == "PAUSED"


class TestBulkOperations:

    @pytest.mark.asyncio
    async def test_start_all_partial_failure(self, mock_db):
        project = make_project()
        ok = make_device()
        bad = make_device()
        bad.name = "Sensor B"

        controller = AsyncMock()

        async def start(db, device_id, connection_id):
            if device_id == bad.id:
                raise ValidationError("No connection selected for this device")
            return ok

        controller.start = AsyncMock(side_effect=start)
        orchestrator = _orchestrator(project, [ok, bad], controller)

        result = await orchestrator.start_all(mock_db, project.id)

        assert result["total_devices"] == 2
        assert result["successful_operations"] == 1
        assert result["failed_operations"] == 1
        assert result["transmission_status"] == "ACTIVE"
        assert project.transmission_status == "ACTIVE"

        failed = next(r for r in result["results"] if r["device_id"] == bad.id)
        assert failed["status"] == "FAILED"
        assert failed["message"] == "No connection selected for this device"
        assert failed["device_name"] == "Sensor B"
        mock_db.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_every_device_gets_its_own_session(self, mock_db):
        project = make_project()
        devices = [make_device() for _ in range(3)]
        controller = AsyncMock()
        orchestrator = _orchestrator(project, devices, controller)

        await orchestrator.pause_all(mock_db, project.id)

        sessions = [call.args[0] for call in controller.pause.await_args_list]
        assert len(sessions) == 3
        assert len({id(s) for s in sessions}) == 3
        assert mock_db not in sessions

    @pytest.mark.asyncio
    async def test_all_failed_keeps_project_status(self, mock_db):
        project = make_project(status="INACTIVE")
        devices = [make_device(), make_device()]
        controller = AsyncMock()
        controller.resume = AsyncMock(side_effect=ConflictError("Cannot resume a device in state INACTIVE"))
        orchestrator = _orchestrator(project, devices, controller)

        result = await orchestrator.resume_all(mock_db, project.id)

        assert result["successful_operations"] == 0
        assert result["transmission_status"] == "INACTIVE"
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_captured(self, mock_db):
        project = make_project(status="ACTIVE")
        device = make_device()
        controller = AsyncMock()
        controller.stop = AsyncMock(side_effect=RuntimeError("boom"))
        orchestrator = _orchestrator(project, [device], controller)

        result = await orchestrator.stop_all(mock_db, project.id)

        assert result["failed_operations"] == 1
        assert "boom" in result["results"][0]["message"]
        assert result["transmission_status"] == "INACTIVE"

    @pytest.mark.asyncio
    async def test_store_fault_aborts(self, mock_db):
        project = make_project()
        controller = AsyncMock()
        controller.start = AsyncMock(side_effect=StoreFault("Transmission history is unavailable"))
        orchestrator = _orchestrator(project, [make_device()], controller)

        with pytest.raises(StoreFault):
            await orchestrator.start_all(mock_db, project.id)

    @pytest.mark.asyncio
    async def test_store_fault_raised_after_every_device_settles(self, mock_db):
        project = make_project()
        failing, slow = make_device(), make_device()
        finished = []

        async def start(db, device_id, connection_id):
            if device_id == failing.id:
                raise StoreFault("Transmission history is unavailable")
            await asyncio.sleep(0.05)
            finished.append(device_id)
            return slow

        controller = AsyncMock()
        controller.start = AsyncMock(side_effect=start)
        orchestrator = _orchestrator(project, [failing, slow], controller)

        with pytest.raises(StoreFault):
            await orchestrator.start_all(mock_db, project.id)

        assert finished == [slow.id]
        assert project.transmission_status == "INACTIVE"
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_override_connection_passed_to_each_device(self, mock_db):
        project = make_project()
        connection = make_connection()
        devices = [make_device(), make_device()]
        controller = AsyncMock()
        orchestrator = _orchestrator(project, devices, controller, connections=[connection])

        await orchestrator.start_all(mock_db, project.id, connection.id)

        for call in controller.start.await_args_list:
            assert call.args[2] == connection.id

    @pytest.mark.asyncio
    async def test_unknown_override_connection_touches_nothing(self, mock_db):
        project = make_project()
        controller = AsyncMock()
        orchestrator = _orchestrator(project, [make_device()], controller)

        with pytest.raises(NotFoundError):
            await orchestrator.start_all(mock_db, project.id, uuid4())
        controller.start.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_project(self, mock_db):
        orchestrator = _orchestrator(make_project(), [], MagicMock())
        with pytest.raises(NotFoundError):
            await orchestrator.stop_all(mock_db, uuid4())

    @pytest.mark.asyncio
    async def test_empty_project(self, mock_db):
        project = make_project(status="ACTIVE")
        orchestrator = _orchestrator(project, [])

        result = await orchestrator.pause_all(mock_db, project.id)

        assert result["total_devices"] == 0
        assert result["results"] == []
        assert result["transmission_status"] == "ACTIVE"
