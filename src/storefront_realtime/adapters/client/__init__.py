"""Realtime client adapter.

Provides:
- ConnectionManager: the single authenticated session with the server
- Transports: WebSocket with HTTP long-polling fallback
- NotificationCache: bounded, persisted notification history
"""

from storefront_realtime.adapters.client.cache import NotificationCache
from storefront_realtime.adapters.client.manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)
from storefront_realtime.adapters.client.transport import (
    HandshakeAuth,
    LongPollingTransport,
    SessionInfo,
    Transport,
    TransportClosed,
    TransportError,
    WebSocketTransport,
    create_transport,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "HandshakeAuth",
    "LongPollingTransport",
    "NotificationCache",
    "SessionInfo",
    "Transport",
    "TransportClosed",
    "TransportError",
    "WebSocketTransport",
    "create_transport",
]
