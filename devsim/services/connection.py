"""
Connection Service
Business logic for connection management and testing
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from devsim.core.config import settings
from devsim.core.exceptions import NotFoundError, ValidationError
from devsim.models.connection import AuthType, Connection, ConnectionType
from devsim.repositories.connection import connection_repository
from devsim.repositories.transmission_record import HistoryScope
from devsim.schemas.connection import SENSITIVE_AUTH_FIELDS, ConnectionCreate, ConnectionUpdate
from devsim.schemas.transmission import ProjectTransmissionItem
from devsim.services.transmission_history import TransmissionHistoryStore, transmission_history
from devsim.services.transport import TransportGateway, transport_gateway

logger = structlog.get_logger()

MASKED_VALUE = "****"

CONNECTION_TYPE_LABELS = {
    ConnectionType.MQTT: "MQTT",
    ConnectionType.HTTPS: "HTTPS",
}

AUTH_TYPE_LABELS = {
    AuthType.NONE: "No authentication",
    AuthType.USER_PASS: "Username and password",
    AuthType.TOKEN: "Token",
    AuthType.API_KEY: "API key",
}


def _format_validation_error(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else item.get("msg", ""))
    return "; ".join(parts) or "Invalid connection configuration"


class ConnectionService:
    """Service for connection management"""

    def __init__(
        self,
        repository=None,
        gateway: Optional[TransportGateway] = None,
        history: Optional[TransmissionHistoryStore] = None,
    ):
        self.repository = repository or connection_repository
        self.gateway = gateway or transport_gateway
        self.history = history or transmission_history

    # ==================== CRUD ====================

    async def create_connection(self, db: AsyncSession, connection_in: ConnectionCreate) -> Connection:
        data = connection_in.model_dump(exclude={"auth_config", "connection_config"})
        data.update(connection_in.config_payloads())
        connection = await self.repository.create(db, data)
        logger.info("Connection created", id=str(connection.id), name=connection.name, type=connection.type)
        return connection

    async def get_connection(self, db: AsyncSession, connection_id: UUID) -> Connection:
        connection = await self.repository.get(db, connection_id)
        if not connection:
            raise NotFoundError(f"Connection {connection_id} not found")
        return connection

    async def list_connections(
        self,
        db: AsyncSession,
        skip: int = 0,
        limit: int = 100,
        type: Optional[ConnectionType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None
    ) -> List[Connection]:
        return await self.repository.list_filtered(
            db,
            skip=skip,
            limit=limit,
            type=type.value if type else None,
            is_active=is_active,
            search=search
        )

    async def update_connection(
        self,
        db: AsyncSession,
        connection_id: UUID,
        connection_in: ConnectionUpdate
    ) -> Connection:
        """
        Merge the partial update into the stored connection and validate the
        result as a whole, so variant payloads always match their tags.
        Masked secrets sent back unchanged keep their stored value.
        """
        connection = await self.get_connection(db, connection_id)
        changes = connection_in.model_dump(exclude_unset=True, mode="json")

        merged: Dict[str, Any] = {
            "name": connection.name,
            "description": connection.description,
            "type": connection.type,
            "host": connection.host,
            "port": connection.port,
            "endpoint": connection.endpoint,
            "auth_type": connection.auth_type,
            "is_active": connection.is_active,
        }
        merged.update({k: v for k, v in changes.items() if k not in ("auth_config", "connection_config")})

        stored_auth = dict(connection.auth_config or {}) if merged["auth_type"] == connection.auth_type else {}
        auth_config = {**stored_auth, **(changes.get("auth_config") or {})}
        for field in SENSITIVE_AUTH_FIELDS:
            if auth_config.get(field) == MASKED_VALUE:
                auth_config[field] = stored_auth.get(field)
        merged["auth_config"] = auth_config

        stored_config = dict(connection.connection_config or {}) if merged["type"] == connection.type else {}
        merged["connection_config"] = {**stored_config, **(changes.get("connection_config") or {})}

        try:
            validated = ConnectionCreate.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(_format_validation_error(e)) from e

        data = validated.model_dump(exclude={"auth_config", "connection_config"})
        data.update(validated.config_payloads())
        # description may be cleared explicitly, which update() would skip
        connection.description = data.pop("description")
        connection = await self.repository.update(db, connection, data)
        logger.info("Connection updated", id=str(connection_id))
        return connection

    async def delete_connection(self, db: AsyncSession, connection_id: UUID) -> Connection:
        """Soft delete; devices referencing it fail their next automatic tick"""
        connection = await self.get_connection(db, connection_id)
        await self.repository.soft_delete(db, connection)
        logger.info("Connection deleted", id=str(connection_id))
        return connection

    # ==================== Testing / History ====================

    async def test_connection(self, db: AsyncSession, connection_id: UUID) -> Dict[str, Any]:
        connection = await self.get_connection(db, connection_id)
        result = await self.gateway.test(connection)
        logger.info(
            "Connection tested",
            id=str(connection_id),
            success=result.success,
            latency_ms=round(result.latency_ms, 2)
        )
        return {
            "success": result.success,
            "response_time": round(result.latency_ms, 2),
            "message": result.message,
        }

    async def get_history(
        self,
        db: AsyncSession,
        connection_id: UUID,
        limit: Optional[int] = None
    ) -> List[ProjectTransmissionItem]:
        await self.get_connection(db, connection_id)
        limit = min(limit or settings.HISTORY_DEFAULT_LIMIT, settings.HISTORY_MAX_LIMIT)
        return await self.history.recent(db, HistoryScope.connection(connection_id), limit=limit)

    # ==================== Reference Data ====================

    def connection_types(self) -> List[Dict[str, str]]:
        return [{"value": t.value, "label": label} for t, label in CONNECTION_TYPE_LABELS.items()]

    def auth_types(self) -> List[Dict[str, str]]:
        return [{"value": t.value, "label": label} for t, label in AUTH_TYPE_LABELS.items()]


connection_service = ConnectionService()
