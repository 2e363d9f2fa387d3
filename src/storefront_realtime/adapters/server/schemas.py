"""Request and response schemas for the realtime HTTP endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from storefront_realtime.config.schema import ClientType


class HandshakeRequest(BaseModel):
    """Long-polling handshake body."""

    model_config = ConfigDict(populate_by_name=True)

    token: str | None = Field(default=None, description="JWT access token, optionally Bearer-prefixed")
    client_type: ClientType = Field(default=ClientType.CLIENT, alias="clientType")


class PollAcceptedResponse(BaseModel):
    """Result of posting client frames over long-polling."""

    accepted: int = Field(..., ge=0, description="Number of frames handled")


class ApiResponse(BaseModel):
    """Envelope used by monitoring endpoints.

    Attributes:
        success: Whether the operation succeeded
        message: Human-readable summary
        data: Endpoint-specific body
    """

    success: bool = True
    message: str
    data: Any = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Health status")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    uptime: float = Field(..., description="Hub uptime in seconds")
    connections: dict[str, Any] = Field(default_factory=dict)


class BroadcastRequest(BaseModel):
    """Admin broadcast to every connected client."""

    message: str = Field(default="", description="Message text")
    type: str = Field(default="notification", description="Notification category")


class PublishRequest(BaseModel):
    """Write-path publish of a domain mutation."""

    domain: str = Field(..., min_length=1, description="Domain name, e.g. order")
    action: str = Field(..., min_length=1, description="Action name, e.g. created")
    data: dict[str, Any] = Field(default_factory=dict, description="Mutated document")
