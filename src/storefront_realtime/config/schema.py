"""Configuration schema for the storefront realtime bridge.

Uses Pydantic v2 for validation, serialization, and documentation.
Configuration is loaded from YAML files and validated against these models.
"""

from __future__ import annotations

from enum import Enum
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# =============================================================================
# ENUMERATIONS
# =============================================================================


class TransportName(str, Enum):
    """Transports a client may negotiate, listed in preference order in config."""

    WEBSOCKET = "websocket"
    POLLING = "polling"


class ClientType(str, Enum):
    """Audience a connection belongs to."""

    CLIENT = "client"
    ADMIN = "admin"


class LogFormat(str, Enum):
    """Log output formats."""

    CONSOLE = "console"
    JSON = "json"


# =============================================================================
# CLIENT CONFIGURATION
# =============================================================================


class ReconnectionConfig(BaseModel):
    """Bounded reconnection backoff for the client connection manager."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Reconnect automatically after loss")
    delay_s: float = Field(default=3.0, gt=0.0, description="Base reconnection delay")
    delay_max_s: float = Field(default=10.0, gt=0.0, description="Reconnection delay cap")
    max_attempts: int = Field(default=5, ge=0, description="Attempts before giving up")
    jitter: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Randomization factor applied to each delay",
    )

    @model_validator(mode="after")
    def validate_delay_cap(self) -> ReconnectionConfig:
        """Ensure the cap is not below the base delay."""
        if self.delay_max_s < self.delay_s:
            raise ValueError(
                f"delay_max_s ({self.delay_max_s}) must be >= delay_s ({self.delay_s})"
            )
        return self


class CacheConfig(BaseModel):
    """Local notification cache settings."""

    model_config = ConfigDict(extra="forbid")

    capacity: int = Field(default=100, ge=1, le=10_000)
    key: str = Field(default="all_notifications", min_length=1)


class ClientConfig(BaseModel):
    """Settings consumed by the client connection manager."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the realtime endpoint (http/https or ws/wss)",
    )
    path: str = Field(default="/realtime", description="Mount path of the realtime API")
    client_type: ClientType = Field(default=ClientType.CLIENT)
    transports: list[TransportName] = Field(
        default_factory=lambda: [TransportName.WEBSOCKET, TransportName.POLLING],
        description="Transports to try, in preference order",
    )
    timeout_s: float = Field(default=20.0, gt=0.0, description="Handshake timeout")
    reconnection: ReconnectionConfig = Field(default_factory=ReconnectionConfig)
    storage_path: str = Field(
        default="realtime_client.db",
        description="SQLite file backing persisted client storage",
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Accept http(s) and ws(s) URLs only."""
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https", "ws", "wss") or not parts.netloc:
            raise ValueError(f"Invalid realtime base URL: {v}")
        return v.rstrip("/")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Normalize the mount path to a leading slash and no trailing slash."""
        v = "/" + v.strip("/")
        return "" if v == "/" else v

    @field_validator("transports")
    @classmethod
    def validate_transports(cls, v: list[TransportName]) -> list[TransportName]:
        """Require a non-empty list without duplicates."""
        if not v:
            raise ValueError("At least one transport must be configured")
        if len(set(v)) != len(v):
            raise ValueError("Transports must not be repeated")
        return v


# =============================================================================
# SERVER CONFIGURATION
# =============================================================================


class ServerConfig(BaseModel):
    """Settings for the broadcast server."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    path: str = Field(default="/realtime")
    jwt_secret: str | None = Field(
        default=None,
        description="Secret shared with the auth subsystem; ephemeral when unset",
    )
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiry_minutes: int = Field(default=60, ge=1)
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:8080",
            "http://localhost:19006",
        ]
    )
    poll_timeout_s: float = Field(
        default=25.0,
        gt=0.0,
        description="How long a long-poll request waits for frames",
    )
    session_idle_timeout_s: float = Field(
        default=60.0,
        gt=0.0,
        description="Polling sessions idle longer than this are dropped",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Normalize the mount path to a leading slash and no trailing slash."""
        v = "/" + v.strip("/")
        return "" if v == "/" else v

    @field_validator("jwt_secret")
    @classmethod
    def validate_secret(cls, v: str | None) -> str | None:
        """Reject secrets too short for HMAC signing."""
        if v is not None and len(v) < 32:
            raise ValueError("jwt_secret must be at least 32 characters long")
        return v

    @model_validator(mode="after")
    def validate_timeouts(self) -> ServerConfig:
        """A polling session must outlive a single long-poll request."""
        if self.session_idle_timeout_s <= self.poll_timeout_s:
            raise ValueError("session_idle_timeout_s must be greater than poll_timeout_s")
        return self


class LoggingConfig(BaseModel):
    """Logging settings."""

    model_config = ConfigDict(extra="forbid")

    level: str = Field(default="INFO")
    format: LogFormat = Field(default=LogFormat.CONSOLE)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level name."""
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v


class RealtimeConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field(default="1.0.0")
    client: ClientConfig = Field(default_factory=ClientConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
