"""Realtime server adapter.

Provides:
- RealtimeHub: session registry and audience broadcast
- DomainEventPublisher: fan-out rules for backend write paths
- ClientEventRouter: inbound client events forwarded as admin analytics
- WebSocket and long-polling transports with JWT handshake authentication
"""

from storefront_realtime.adapters.server.hub import Audience, RealtimeHub
from storefront_realtime.adapters.server.inbound import ClientEventRouter
from storefront_realtime.adapters.server.publisher import DomainEventPublisher
from storefront_realtime.adapters.server.server import RealtimeServer, create_app

__all__ = [
    "Audience",
    "ClientEventRouter",
    "DomainEventPublisher",
    "RealtimeHub",
    "RealtimeServer",
    "create_app",
]
