"""
Connection Schemas
Request/response models for connections; auth and protocol config are tagged unions
"""

import time
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from devsim.models.connection import AuthType, ConnectionType
from devsim.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema


# ==================== Auth Variants ====================


class NoAuthConfig(BaseModel):
    auth_type: Literal["NONE"] = "NONE"


class UserPassAuthConfig(BaseModel):
    auth_type: Literal["USER_PASS"] = "USER_PASS"
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenAuthConfig(BaseModel):
    auth_type: Literal["TOKEN"] = "TOKEN"
    token: str = Field(..., min_length=1)
    token_type: Literal["Bearer", "Token"] = "Bearer"


class ApiKeyAuthConfig(BaseModel):
    auth_type: Literal["API_KEY"] = "API_KEY"
    key: str = Field(..., min_length=1)
    location: Literal["header", "query"] = "header"
    parameter_name: str = Field("X-API-Key", min_length=1)


AuthConfig = Annotated[
    Union[NoAuthConfig, UserPassAuthConfig, TokenAuthConfig, ApiKeyAuthConfig],
    Field(discriminator="auth_type")
]


# ==================== Protocol Variants ====================


class MqttConnectionConfig(BaseModel):
    type: Literal["MQTT"] = "MQTT"
    client_id: str = Field(default_factory=lambda: f"devsim_{int(time.time())}")
    keep_alive: int = Field(60, ge=1, le=65535, description="Keep-alive in seconds")
    qos: int = Field(1, ge=0, le=2)
    ssl: bool = False


class HttpsConnectionConfig(BaseModel):
    type: Literal["HTTPS"] = "HTTPS"
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    timeout: int = Field(30, ge=1, le=300, description="Request timeout in seconds")
    verify_ssl: bool = True


ConnectionConfig = Annotated[
    Union[MqttConnectionConfig, HttpsConnectionConfig],
    Field(discriminator="type")
]

SENSITIVE_AUTH_FIELDS = ("password", "token", "key")


def _tag_value(value: Any) -> Any:
    return getattr(value, "value", value)


# ==================== Request Schemas ====================


class ConnectionCreate(BaseCreateSchema):
    """Schema for creating a connection"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    type: ConnectionType
    host: str = Field(..., min_length=1, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    endpoint: str = Field("", max_length=500, description="MQTT topic or HTTP path")
    auth_type: AuthType = AuthType.NONE
    auth_config: AuthConfig
    connection_config: ConnectionConfig
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def tag_variants(cls, data: Any) -> Any:
        """Route auth_config/connection_config to the variant named by auth_type/type"""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        auth_type = _tag_value(data.get("auth_type") or AuthType.NONE.value)
        data["auth_type"] = auth_type
        data["auth_config"] = {**(data.get("auth_config") or {}), "auth_type": auth_type}
        if data.get("type") is not None:
            conn_type = _tag_value(data["type"])
            data["connection_config"] = {**(data.get("connection_config") or {}), "type": conn_type}
        return data

    def config_payloads(self) -> Dict[str, Dict[str, Any]]:
        """Variant payloads as stored in the JSONB columns"""
        return {
            "auth_config": self.auth_config.model_dump(exclude={"auth_type"}),
            "connection_config": self.connection_config.model_dump(exclude={"type"}),
        }


class ConnectionUpdate(BaseUpdateSchema):
    """Partial update; variant fields are re-validated against the merged connection"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    type: Optional[ConnectionType] = None
    host: Optional[str] = Field(None, min_length=1, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    endpoint: Optional[str] = Field(None, max_length=500)
    auth_type: Optional[AuthType] = None
    auth_config: Optional[Dict[str, Any]] = None
    connection_config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


# ==================== Response Schemas ====================


class ConnectionResponse(BaseResponseSchema):
    name: str
    description: Optional[str] = None
    type: str
    host: str
    port: Optional[int] = None
    endpoint: str
    auth_type: str
    auth_config: Dict[str, Any] = Field(default_factory=dict)
    connection_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool

    @field_validator("auth_config", mode="before")
    @classmethod
    def mask_secrets(cls, v: Any) -> Dict[str, Any]:
        if not v:
            return {}
        return {
            key: ("****" if key in SENSITIVE_AUTH_FIELDS and value else value)
            for key, value in dict(v).items()
        }


class ConnectionTestResponse(BaseModel):
    success: bool
    response_time: float = Field(..., description="Round trip in milliseconds")
    message: Optional[str] = None


class ConnectionTypeInfo(BaseModel):
    value: str
    label: str
