"""Local notification cache.

Bounded, persisted, newest-first history of notification-worthy events,
used for offline inspection and badge counts. It only holds what this
client received while connected; it does not recover missed events.
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from storefront_realtime.adapters.persistence.storage import NOTIFICATIONS_KEY, StorageError
from storefront_realtime.domain.model.notifications import StoredNotification

if TYPE_CHECKING:
    from storefront_realtime.adapters.persistence.storage import StoragePort
    from storefront_realtime.domain.model.events import Envelope

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 100


class NotificationCache:
    """Ring buffer of stored notifications persisted under one storage key.

    Insertion is always at the head; once ``capacity`` is exceeded the
    oldest entries are dropped from the tail. Every mutation is a
    read-modify-write of the persisted list, serialized by a lock.
    """

    def __init__(
        self,
        storage: StoragePort,
        capacity: int = DEFAULT_CAPACITY,
        key: str = NOTIFICATIONS_KEY,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._storage = storage
        self._capacity = capacity
        self._key = key
        self._lock = asyncio.Lock()
        self._last_id = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def _next_id(self) -> str:
        """Receipt-time id: nanosecond timestamp, bumped to stay strictly increasing."""
        now = time.time_ns()
        if now <= self._last_id:
            now = self._last_id + 1
        self._last_id = now
        return str(now)

    async def _read(self) -> list[dict[str, Any]]:
        """Read the persisted list.

        Raises:
            StorageError: If storage cannot be read or holds invalid data
        """
        raw = await self._storage.get_item(self._key)
        if raw is None:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Notification cache is not valid JSON: {e}") from e
        if not isinstance(items, list):
            raise StorageError("Notification cache must be a JSON list")
        return [item for item in items if isinstance(item, dict)]

    async def _write(self, items: list[dict[str, Any]]) -> None:
        await self._storage.set_item(self._key, json.dumps(items[: self._capacity]))

    async def store(self, envelope: Envelope) -> StoredNotification:
        """Stamp an envelope, prepend it, truncate to capacity and persist.

        Persistence is best-effort: failures are logged and the stamped
        notification is still returned so live dispatch can proceed.
        """
        notification = StoredNotification.from_envelope(
            envelope,
            notification_id=self._next_id(),
            received_at=datetime.now(UTC),
        )

        async with self._lock:
            try:
                items = await self._read()
                items.insert(0, notification.to_dict())
                await self._write(items)
            except StorageError as e:
                logger.error(
                    "Failed to store notification",
                    event_type=envelope.type,
                    notification_id=notification.id,
                    error=str(e),
                )
                return notification

        logger.debug("Stored notification", event_type=envelope.type, notification_id=notification.id)
        return notification

    async def get_all(self) -> list[StoredNotification]:
        """Return every cached notification, newest first.

        Returns an empty list if storage cannot be read.
        """
        try:
            items = await self._read()
        except StorageError as e:
            logger.warning("Failed to read notifications", error=str(e))
            return []

        notifications: list[StoredNotification] = []
        for item in items:
            try:
                notifications.append(StoredNotification.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping corrupt notification", error=str(e))
        return notifications

    async def unread_count(self) -> int:
        """Number of cached notifications not yet marked read."""
        return sum(1 for n in await self.get_all() if not n.read)

    async def mark_read(self, notification_id: str) -> bool:
        """Mark one notification read.

        Returns:
            True if the notification was found and persisted
        """
        async with self._lock:
            try:
                items = await self._read()
                for item in items:
                    if str(item.get("id")) == notification_id:
                        item["read"] = True
                        await self._write(items)
                        return True
            except StorageError as e:
                logger.error("Failed to mark notification read", notification_id=notification_id, error=str(e))
        return False

    async def clear(self) -> None:
        """Drop every cached notification."""
        async with self._lock:
            try:
                await self._storage.remove_item(self._key)
            except StorageError as e:
                logger.error("Failed to clear notifications", error=str(e))
