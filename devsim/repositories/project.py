"""
Project Repository
Database operations for project management
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from devsim.models.project import Project
from devsim.repositories.base import CRUDBase
from devsim.schemas.project import ProjectCreate, ProjectUpdate


class ProjectRepository(CRUDBase[Project, ProjectCreate, ProjectUpdate]):
    """Repository for project database operations"""

    async def list_filtered(
        self,
        db: AsyncSession,
        *,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
    ) -> List[Project]:
        query = select(Project).where(Project.is_deleted.is_(False))
        if search:
            query = query.where(Project.name.ilike(f"%{search}%"))
        query = query.order_by(Project.created_at.desc()).offset(skip).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())


project_repository = ProjectRepository(Project)
