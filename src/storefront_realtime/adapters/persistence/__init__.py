"""Persistence layer for realtime clients.

Provides SQLite-based persisted storage for:
- The stored auth token and user profile
- The local notification cache
"""

from storefront_realtime.adapters.persistence.models import StorageItem
from storefront_realtime.adapters.persistence.storage import (
    NOTIFICATIONS_KEY,
    PROFILE_KEY,
    TOKEN_KEY,
    ClientStorage,
    StorageError,
    StoragePort,
)

__all__ = [
    "NOTIFICATIONS_KEY",
    "PROFILE_KEY",
    "TOKEN_KEY",
    "ClientStorage",
    "StorageError",
    "StorageItem",
    "StoragePort",
]
