"""
Shared fixtures for the devsim test suite.
In-memory models, mocked sessions and repositories; no database required.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from devsim.models.connection import Connection
from devsim.models.device import Device
from devsim.models.project import Project


# ── Builders ────────────────────────────────────────────────────


def make_rows(count=3):
    return [{"temp": 20 + i, "label": f"r{i}"} for i in range(count)]


def make_csv_data(count=3):
    rows = make_rows(count)
    return {
        "headers": ["temp", "label"],
        "csv_preview": [[str(r["temp"]), r["label"]] for r in rows],
        "json_preview": rows,
    }


def make_device(
    state="INACTIVE",
    device_type="Sensor",
    rows=3,
    cursor=0,
    connection_id=None,
    project_id=None,
    frequency=60,
):
    """Device with every column populated; defaults only apply on flush"""
    enabled = state in ("MANUAL", "ACTIVE", "PAUSED")
    now = datetime.now(timezone.utc)
    return Device(
        id=uuid4(),
        name="Sensor A",
        reference="ABCD1234",
        description=None,
        device_type=device_type,
        transmission_frequency=frequency,
        transmission_state=state,
        transmission_enabled=enabled,
        transmission_paused=state == "PAUSED",
        selected_connection_id=connection_id,
        current_row_index=cursor,
        last_transmission_at=None,
        csv_data=make_csv_data(rows) if rows else None,
        project_id=project_id,
        is_deleted=False,
        created_at=now,
        updated_at=now,
    )


def make_connection(type="HTTPS", is_active=True, **overrides):
    now = datetime.now(timezone.utc)
    values = dict(
        id=uuid4(),
        name="Ingest API",
        description=None,
        type=type,
        host="api.example.com",
        port=None,
        endpoint="/ingest",
        auth_type="NONE",
        auth_config={},
        connection_config={"method": "POST", "timeout": 5, "verify_ssl": True} if type == "HTTPS"
        else {"client_id": "devsim_test", "keep_alive": 60, "qos": 1, "ssl": False},
        is_active=is_active,
        is_deleted=False,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    return Connection(**values)


def make_project(status="INACTIVE"):
    now = datetime.now(timezone.utc)
    return Project(
        id=uuid4(),
        name="Plant 1",
        description=None,
        transmission_status=status,
        is_deleted=False,
        created_at=now,
        updated_at=now,
    )


def repository_for(*objects):
    """AsyncMock repository whose get() resolves the given objects by id"""
    by_id = {obj.id: obj for obj in objects}
    repo = AsyncMock()
    repo.get = AsyncMock(side_effect=lambda db, id, **kwargs: by_id.get(id))
    return repo


class FakeSessionFactory:
    """Stands in for AsyncSessionLocal: each call yields a fresh mock session"""

    def __init__(self):
        self.sessions = []

    def __call__(self):
        session = make_session()
        self.sessions.append(session)
        return _SessionContext(session)


class _SessionContext:
    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc):
        return False


def make_session():
    session = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    return session


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def mock_db():
    """Mock async database session"""
    return make_session()


@pytest.fixture
def session_factory():
    return FakeSessionFactory()
