"""
Base Protocol Handler
Interface shared by the MQTT and HTTPS transports
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger()


@dataclass
class PublishResult:
    """Result of a publish or connectivity test"""
    success: bool
    message: str
    latency_ms: float
    timestamp: datetime
    message_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None


@dataclass
class TransportTarget:
    """Everything a handler needs to reach a connection's endpoint"""
    type: str
    host: str
    port: Optional[int]
    endpoint: str
    auth_type: str = "NONE"
    auth_config: Dict[str, Any] = field(default_factory=dict)
    connection_config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_connection(cls, connection) -> "TransportTarget":
        return cls(
            type=connection.type,
            host=connection.host,
            port=connection.port,
            endpoint=connection.endpoint or "",
            auth_type=connection.auth_type or "NONE",
            auth_config=dict(connection.auth_config or {}),
            connection_config=dict(connection.connection_config or {}),
        )


class ProtocolHandler(ABC):
    """Abstract base class for protocol handlers"""

    def __init__(self, protocol_name: str):
        self.protocol_name = protocol_name
        self.logger = logger.bind(protocol=protocol_name)

    @abstractmethod
    async def publish(
        self,
        target: TransportTarget,
        payload: Dict[str, Any],
        timeout: float = 30
    ) -> PublishResult:
        """
        Deliver one payload to the target

        Args:
            target: Resolved connection endpoint, auth and protocol options
            payload: JSON-serializable message
            timeout: Delivery timeout in seconds

        Returns:
            PublishResult with outcome details
        """

    @abstractmethod
    async def test_connection(self, target: TransportTarget, timeout: float = 10) -> PublishResult:
        """Check that the endpoint is reachable with the configured credentials"""

    def _sanitize_error_message(self, error: Exception) -> str:
        """Remove sensitive info from error messages"""
        error_str = str(error).lower()
        sensitive_patterns = ['password', 'token', 'key', 'secret', 'credential']

        for pattern in sensitive_patterns:
            if pattern in error_str:
                return "Connection failed due to authentication or configuration error"

        return str(error) or error.__class__.__name__

    def _get_error_code(self, error: Exception) -> str:
        """Get standardized error code from exception"""
        error_str = str(error).lower()

        if isinstance(error, TimeoutError) or 'timeout' in error_str or 'timed out' in error_str:
            return 'TIMEOUT'
        elif 'connection refused' in error_str:
            return 'CONNECTION_REFUSED'
        elif 'not found' in error_str or 'name or service not known' in error_str:
            return 'HOST_NOT_FOUND'
        elif 'auth' in error_str or 'unauthorized' in error_str:
            return 'AUTHENTICATION_FAILED'
        elif 'ssl' in error_str or 'tls' in error_str or 'certificate' in error_str:
            return 'SSL_ERROR'
        else:
            return 'PUBLISH_ERROR'
