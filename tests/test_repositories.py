"""
Tests for CRUDBase.
Soft-deleted rows are hidden from lookups unless asked for.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from devsim.models.device import Device
from devsim.repositories.base import CRUDBase
from devsim.repositories.device import DeviceRepository


def _executed_sql(db) -> str:
    statement = db.execute.await_args.args[0]
    return str(statement.compile(dialect=postgresql.dialect()))


@pytest.fixture
def lookup_db(mock_db):
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    mock_db.execute = AsyncMock(return_value=result)
    return mock_db


class TestGet:

    @pytest.mark.asyncio
    async def test_hides_soft_deleted_rows(self, lookup_db):
        repo = DeviceRepository(Device)

        assert await repo.get(lookup_db, uuid4()) is None
        assert "devices.is_deleted IS false" in _executed_sql(lookup_db)

    @pytest.mark.asyncio
    async def test_include_deleted_drops_the_filter(self, lookup_db):
        repo = DeviceRepository(Device)

        await repo.get(lookup_db, uuid4(), include_deleted=True)

        assert "is_deleted" not in _executed_sql(lookup_db).split("WHERE", 1)[1]

    def test_listing_lives_in_concrete_repositories(self):
        assert not hasattr(CRUDBase, "get_multi")
        assert not hasattr(CRUDBase, "count")
        assert hasattr(DeviceRepository, "list_filtered")
