"""
Connection Management Endpoints
Connection CRUD, connectivity tests and per-connection history
"""

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.config import settings
from devsim.core.database import get_db
from devsim.core.exceptions import DevSimError
from devsim.models.connection import ConnectionType
from devsim.schemas.base import MessageResponse
from devsim.schemas.connection import (
    ConnectionCreate,
    ConnectionResponse,
    ConnectionTestResponse,
    ConnectionTypeInfo,
    ConnectionUpdate,
)
from devsim.schemas.transmission import ConnectionHistoryResponse
from devsim.services.connection import connection_service

logger = structlog.get_logger()
router = APIRouter()


# ==================== Reference data (before parameterized routes) ====================


@router.get("/types", response_model=List[ConnectionTypeInfo])
async def get_connection_types() -> Any:
    return connection_service.connection_types()


@router.get("/auth-types", response_model=List[ConnectionTypeInfo])
async def get_auth_types() -> Any:
    return connection_service.auth_types()


# ==================== CRUD ====================


@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    connection_in: ConnectionCreate,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await connection_service.create_connection(db, connection_in)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error creating connection", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to create connection")


@router.get("", response_model=List[ConnectionResponse])
async def list_connections(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    type: Optional[ConnectionType] = Query(None, description="Filter by protocol"),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Search by name or host"),
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await connection_service.list_connections(
            db, skip=skip, limit=limit, type=type, is_active=is_active, search=search
        )
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error listing connections", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list connections")


@router.get("/{connection_id}", response_model=ConnectionResponse)
async def get_connection(
    connection_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        return await connection_service.get_connection(db, connection_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error getting connection", connection_id=str(connection_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get connection")


@router.put("/{connection_id}", response_model=ConnectionResponse)
async def update_connection(
    connection_id: UUID,
    connection_in: ConnectionUpdate,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Partial update; the merged connection is validated as a whole."""
    try:
        return await connection_service.update_connection(db, connection_id, connection_in)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error updating connection", connection_id=str(connection_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to update connection")


@router.delete("/{connection_id}", response_model=MessageResponse)
async def delete_connection(
    connection_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        await connection_service.delete_connection(db, connection_id)
        return MessageResponse(message="Connection deleted")
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error deleting connection", connection_id=str(connection_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to delete connection")


# ==================== Testing / History ====================


@router.post("/{connection_id}/test", response_model=ConnectionTestResponse)
async def test_connection(
    connection_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Check that the broker or API is reachable with the stored credentials."""
    try:
        return await connection_service.test_connection(db, connection_id)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error testing connection", connection_id=str(connection_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to test connection")


@router.get("/{connection_id}/history", response_model=ConnectionHistoryResponse)
async def get_connection_history(
    connection_id: UUID,
    limit: int = Query(settings.HISTORY_DEFAULT_LIMIT, ge=1, le=settings.HISTORY_MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
) -> Any:
    try:
        history = await connection_service.get_history(db, connection_id, limit=limit)
        return ConnectionHistoryResponse(history=history)
    except DevSimError:
        raise
    except Exception as e:
        logger.error("Error getting connection history", connection_id=str(connection_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get connection history")
