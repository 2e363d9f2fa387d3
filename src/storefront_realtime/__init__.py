"""Storefront Realtime - event fan-out for a storefront backend and its clients.

This package provides:
- A realtime server (WebSocket with long-polling fallback) that fans domain
  mutations out to admin dashboards and mobile clients
- A client connection manager with explicit reconnection, an event
  dispatcher and a bounded, persisted notification cache
"""

__version__ = "0.1.0"

__author__ = "Storefront Realtime Team"

from storefront_realtime.domain.model.events import Envelope, EventKind, OutboundEvent

__all__ = [
    "Envelope",
    "EventKind",
    "OutboundEvent",
    "__version__",
]
