"""
Protocol Handlers Registry
Central registry for the transport handlers, keyed by connection type
"""

from typing import Dict, Optional

from .base import ProtocolHandler, PublishResult, TransportTarget
from .http_handler import HTTPHandler
from .mqtt_handler import MQTTHandler


class ProtocolRegistry:
    """Registry for protocol handlers"""

    def __init__(self):
        self._handlers: Dict[str, ProtocolHandler] = {}
        self._register_default_handlers()

    def _register_default_handlers(self):
        self.register("MQTT", MQTTHandler())
        self.register("HTTPS", HTTPHandler())

    def register(self, connection_type: str, handler: ProtocolHandler):
        self._handlers[connection_type.upper()] = handler

    def get_handler(self, connection_type: str) -> Optional[ProtocolHandler]:
        return self._handlers.get((connection_type or "").upper())

    def list_protocols(self) -> list:
        return list(self._handlers.keys())


protocol_registry = ProtocolRegistry()


__all__ = [
    "ProtocolHandler",
    "PublishResult",
    "TransportTarget",
    "ProtocolRegistry",
    "protocol_registry",
    "MQTTHandler",
    "HTTPHandler",
]
