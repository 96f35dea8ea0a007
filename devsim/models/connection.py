"""
Connection Model
Remote endpoint (MQTT broker topic or HTTPS API) shared by devices
"""

import enum

from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from devsim.models.base import SoftDeleteModel


class ConnectionType(str, enum.Enum):
    MQTT = "MQTT"
    HTTPS = "HTTPS"


class AuthType(str, enum.Enum):
    NONE = "NONE"
    USER_PASS = "USER_PASS"
    TOKEN = "TOKEN"
    API_KEY = "API_KEY"


class Connection(SoftDeleteModel):
    """Connection model; config columns hold the validated variant payloads"""
    __tablename__ = "connections"

    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False, index=True)

    host = Column(String(255), nullable=False)
    port = Column(Integer, nullable=True)
    endpoint = Column(String(500), nullable=False, default="")

    auth_type = Column(String(20), nullable=False, default=AuthType.NONE.value)
    auth_config = Column(JSONB, nullable=False, default=dict, server_default='{}')
    connection_config = Column(JSONB, nullable=False, default=dict, server_default='{}')

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self):
        return f"<Connection(name='{self.name}', type='{self.type}', host='{self.host}')>"
