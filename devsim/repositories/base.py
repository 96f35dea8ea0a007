"""
Base CRUD Repository Pattern
Generic repository with common database operations
"""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.database import Base

logger = structlog.get_logger()

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    """
    Base CRUD repository with generic database operations
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    def _visible(self, query, include_deleted: bool):
        if hasattr(self.model, "is_deleted") and not include_deleted:
            query = query.where(self.model.is_deleted.is_(False))
        return query

    async def get(
        self,
        db: AsyncSession,
        id: Union[UUID, str],
        include_deleted: bool = False
    ) -> Optional[ModelType]:
        """
        Get a single record by ID

        Args:
            db: Database session
            id: Record ID
            include_deleted: Include soft-deleted records

        Returns:
            Model instance or None
        """
        query = self._visible(select(self.model).where(self.model.id == id), include_deleted)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def create(
        self,
        db: AsyncSession,
        obj_in_data: Dict[str, Any],
        commit: bool = True
    ) -> ModelType:
        """Create a new record from dict data"""
        db_obj = self.model(**obj_in_data)
        db.add(db_obj)

        if commit:
            await db.commit()
            await db.refresh(db_obj)
        else:
            await db.flush()

        logger.info("Record created", model=self.model.__name__, id=str(db_obj.id))
        return db_obj

    async def update(
        self,
        db: AsyncSession,
        db_obj: ModelType,
        obj_in_data: Dict[str, Any],
        commit: bool = True
    ) -> ModelType:
        """Apply the given fields; None values are skipped"""
        for field, value in obj_in_data.items():
            if hasattr(db_obj, field) and value is not None:
                setattr(db_obj, field, value)

        db.add(db_obj)

        if commit:
            await db.commit()
            await db.refresh(db_obj)
        else:
            await db.flush()

        logger.info("Record updated", model=self.model.__name__, id=str(db_obj.id))
        return db_obj

    async def soft_delete(
        self,
        db: AsyncSession,
        db_obj: ModelType,
        commit: bool = True
    ) -> ModelType:
        db_obj.is_deleted = True
        db_obj.deleted_at = datetime.now(timezone.utc)
        db.add(db_obj)

        if commit:
            await db.commit()
        else:
            await db.flush()

        logger.info("Record deleted", model=self.model.__name__, id=str(db_obj.id))
        return db_obj
