"""
Transport Gateway
Bounded-timeout delivery through the protocol handler matching a connection
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from devsim.core.config import settings
from devsim.core.metrics import TRANSPORT_LATENCY
from devsim.models.connection import Connection, ConnectionType
from devsim.services.protocols import ProtocolRegistry, PublishResult, TransportTarget, protocol_registry

logger = structlog.get_logger()


class TransportGateway:
    """Resolves the handler for a connection and enforces the delivery timeout"""

    def __init__(self, registry: Optional[ProtocolRegistry] = None):
        self.registry = registry or protocol_registry

    def timeout_for(self, connection: Connection) -> float:
        """HTTPS connections carry their own timeout; MQTT uses the service default"""
        config = connection.connection_config or {}
        if connection.type == ConnectionType.HTTPS.value and config.get("timeout"):
            return float(config["timeout"])
        return float(settings.TRANSPORT_DEFAULT_TIMEOUT)

    async def deliver(self, connection: Connection, payload: Dict[str, Any]) -> PublishResult:
        """Deliver one payload. Never raises; failures come back as unsuccessful results."""
        timeout = self.timeout_for(connection)
        started = time.perf_counter()
        handler = self.registry.get_handler(connection.type)

        if handler is None:
            return PublishResult(
                success=False,
                message=f"No handler available for connection type {connection.type}",
                latency_ms=0,
                timestamp=datetime.now(timezone.utc),
                error_code="PROTOCOL_NOT_SUPPORTED"
            )

        try:
            result = await asyncio.wait_for(
                handler.publish(TransportTarget.from_connection(connection), payload, timeout),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            result = PublishResult(
                success=False,
                message="timeout",
                latency_ms=(time.perf_counter() - started) * 1000,
                timestamp=datetime.now(timezone.utc),
                error_code="TIMEOUT"
            )
        except Exception as e:
            logger.error("Transport handler raised", connection_id=str(connection.id), error=str(e))
            result = PublishResult(
                success=False,
                message=str(e) or e.__class__.__name__,
                latency_ms=(time.perf_counter() - started) * 1000,
                timestamp=datetime.now(timezone.utc),
                error_code="PUBLISH_ERROR"
            )

        if result.error_code == "TIMEOUT":
            result.message = f"Transmission timed out after {timeout:g}s"

        TRANSPORT_LATENCY.labels(protocol=connection.type).observe(result.latency_ms / 1000)
        return result

    async def test(self, connection: Connection) -> PublishResult:
        timeout = self.timeout_for(connection)
        handler = self.registry.get_handler(connection.type)
        if handler is None:
            return PublishResult(
                success=False,
                message=f"No handler available for connection type {connection.type}",
                latency_ms=0,
                timestamp=datetime.now(timezone.utc),
                error_code="PROTOCOL_NOT_SUPPORTED"
            )
        try:
            return await asyncio.wait_for(
                handler.test_connection(TransportTarget.from_connection(connection), timeout),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            return PublishResult(
                success=False,
                message=f"Connection test timed out after {timeout:g}s",
                latency_ms=timeout * 1000,
                timestamp=datetime.now(timezone.utc),
                error_code="TIMEOUT"
            )


transport_gateway = TransportGateway()
