"""Stored notification model.

A stored notification is an envelope captured at receipt time, stamped
with a receipt id and timestamp, and summarized into a title and message
suitable for a notification list or badge count.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from storefront_realtime.domain.model.events import Envelope, EventKind


@dataclass
class Summary:
    """Human-readable summary of a notification-worthy event."""

    title: str
    message: str
    category: str


def _from_payload(category: str, default_title: str) -> Callable[[dict[str, Any]], Summary]:
    def summarize(payload: dict[str, Any]) -> Summary:
        return Summary(
            title=str(payload.get("title") or default_title),
            message=str(payload.get("message") or ""),
            category=str(payload.get("type") or category),
        )

    return summarize


def _order_updated(payload: dict[str, Any]) -> Summary:
    return Summary(
        title="Order Updated",
        message=f"Your order #{payload.get('orderId', '')} has been updated",
        category="order",
    )


def _order_status(payload: dict[str, Any]) -> Summary:
    return Summary(
        title="Order Status Change",
        message=str(payload.get("message") or payload.get("status") or ""),
        category="order",
    )


def _wallet_balance(payload: dict[str, Any]) -> Summary:
    return Summary(
        title="Wallet Updated",
        message=f"Your wallet balance is now ₹{payload.get('newBalance')}",
        category="wallet",
    )


def _transaction_created(payload: dict[str, Any]) -> Summary:
    return Summary(
        title="Transaction Created",
        message=f"Transaction of ₹{payload.get('amount')} {payload.get('type', '')}".rstrip(),
        category="transaction",
    )


def _transaction_status(payload: dict[str, Any]) -> Summary:
    return Summary(
        title="Transaction Update",
        message=str(payload.get("message") or ""),
        category="transaction",
    )


def _admin_message(payload: dict[str, Any]) -> Summary:
    return Summary(
        title="Message from Support",
        message=str(payload.get("message") or ""),
        category="admin",
    )


# Kinds that are persisted to the local notification cache, with their summarizer
NOTIFICATION_WORTHY: dict[EventKind, Callable[[dict[str, Any]], Summary]] = {
    EventKind.ORDER_CREATED_UPDATE: _order_updated,
    EventKind.ORDER_STATUS_UPDATED: _order_status,
    EventKind.NOTIFICATION_CREATED: _from_payload("notification", "Notification"),
    EventKind.NOTIFICATION_BROADCAST: _from_payload("notification", "Announcement"),
    EventKind.WALLET_BALANCE_UPDATED: _wallet_balance,
    EventKind.TRANSACTION_CREATED: _transaction_created,
    EventKind.TRANSACTION_STATUS_UPDATED: _transaction_status,
    EventKind.ADMIN_MESSAGE: _admin_message,
    EventKind.ADMIN_NOTIFICATION: _from_payload("admin", "Admin Notification"),
}


def is_notification_worthy(envelope: Envelope) -> bool:
    """True if the envelope should be kept in the local notification cache."""
    return envelope.kind in NOTIFICATION_WORTHY


def summarize(envelope: Envelope) -> Summary:
    """Summarize an envelope; unknown kinds fall back to the raw type."""
    summarizer = NOTIFICATION_WORTHY.get(envelope.kind)
    if summarizer is None:
        return Summary(title=envelope.type, message="", category=envelope.type.split(":", 1)[0])
    return summarizer(envelope.payload)


@dataclass
class StoredNotification:
    """An envelope as persisted in the local notification cache.

    Attributes:
        id: Receipt-time unique token
        type: Wire type of the source envelope
        payload: Source payload
        title: Summary title
        message: Summary message
        category: Summary category (order, wallet, admin, ...)
        timestamp: Receipt time (UTC)
        read: Whether the user has seen it
    """

    id: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    title: str = ""
    message: str = ""
    category: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    read: bool = False

    @classmethod
    def from_envelope(
        cls,
        envelope: Envelope,
        notification_id: str,
        received_at: datetime | None = None,
    ) -> StoredNotification:
        """Stamp an envelope with receipt metadata."""
        summary = summarize(envelope)
        return cls(
            id=notification_id,
            type=envelope.type,
            payload=dict(envelope.payload),
            title=summary.title,
            message=summary.message,
            category=summary.category,
            timestamp=received_at or datetime.now(UTC),
            read=False,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredNotification:
        """Deserialize from storage.

        Raises:
            KeyError: If id or type is missing
            ValueError: If the timestamp is not ISO 8601
        """
        timestamp = data.get("timestamp")
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            payload=dict(data.get("payload") or {}),
            title=str(data.get("title", "")),
            message=str(data.get("message", "")),
            category=str(data.get("category", "")),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(UTC),
            read=bool(data.get("read", False)),
        )
