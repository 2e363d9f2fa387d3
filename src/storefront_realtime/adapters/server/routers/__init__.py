"""API routers for the realtime server.

Provides FastAPI routers for:
- ws: WebSocket transport
- polling: HTTP long-polling transport
- monitor: Health, statistics and admin operations
"""

from storefront_realtime.adapters.server.routers import (
    monitor,
    polling,
    ws,
)

__all__ = [
    "monitor",
    "polling",
    "ws",
]
