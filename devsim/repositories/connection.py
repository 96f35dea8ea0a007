"""
Connection Repository
Database operations for connections
"""

from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from devsim.models.connection import Connection
from devsim.repositories.base import CRUDBase
from devsim.schemas.connection import ConnectionCreate, ConnectionUpdate


class ConnectionRepository(CRUDBase[Connection, ConnectionCreate, ConnectionUpdate]):
    """Repository for connection database operations"""

    async def list_filtered(
        self,
        db: AsyncSession,
        *,
        skip: int = 0,
        limit: int = 100,
        type: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> List[Connection]:
        query = select(Connection).where(Connection.is_deleted.is_(False))
        if type:
            query = query.where(Connection.type == type)
        if is_active is not None:
            query = query.where(Connection.is_active.is_(is_active))
        if search:
            query = query.where(or_(
                Connection.name.ilike(f"%{search}%"),
                Connection.host.ilike(f"%{search}%"),
            ))
        query = query.order_by(Connection.created_at.desc()).offset(skip).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())


connection_repository = ConnectionRepository(Connection)
