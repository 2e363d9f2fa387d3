"""Inbound client event routing.

Client sessions emit fire-and-forget interaction events. Most are
enriched with the sender's identity and a timestamp and forwarded to
every admin as an analytics event; a few act on the session itself.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from storefront_realtime.adapters.server.hub import Audience
from storefront_realtime.domain.model.events import (
    ControlFrame,
    Envelope,
    EventKind,
    MalformedEnvelopeError,
    OutboundEvent,
    decode_frame,
)

if TYPE_CHECKING:
    from storefront_realtime.adapters.server.hub import RealtimeHub, Session

logger = structlog.get_logger(__name__)

SUPPORT_SENDER = "Admin Support"


@dataclass(frozen=True)
class AnalyticsRule:
    """Forwarding rule: admin event name and payload fields copied (wire name -> admin name)."""

    kind: EventKind
    fields: dict[str, str]
    include_email: bool = False


ANALYTICS_RULES: dict[OutboundEvent, AnalyticsRule] = {
    OutboundEvent.PRODUCT_VIEW: AnalyticsRule(
        EventKind.PRODUCT_VIEWED, {"productId": "productId"}, include_email=True
    ),
    OutboundEvent.PRODUCT_SEARCH: AnalyticsRule(
        EventKind.PRODUCT_SEARCHED, {"query": "query"}, include_email=True
    ),
    OutboundEvent.PRODUCT_ADD_TO_WISHLIST: AnalyticsRule(
        EventKind.PRODUCT_WISHLISTED, {"productId": "productId"}
    ),
    OutboundEvent.ORDER_CREATE: AnalyticsRule(
        EventKind.ORDER_NEW_PENDING,
        {"orderId": "orderId", "totalAmount": "totalAmount", "items": "items"},
        include_email=True,
    ),
    OutboundEvent.ORDER_TRACK: AnalyticsRule(
        EventKind.ORDER_TRACKING_REQUESTED, {"orderId": "orderId"}
    ),
    OutboundEvent.ORDER_CANCEL_REQUEST: AnalyticsRule(
        EventKind.ORDER_CANCELLATION_REQUESTED, {"orderId": "orderId", "reason": "reason"}
    ),
    OutboundEvent.NOTIFICATION_READ: AnalyticsRule(
        EventKind.NOTIFICATION_READ_STATUS, {"notificationId": "notificationId"}
    ),
    OutboundEvent.WALLET_BALANCE_REQUEST: AnalyticsRule(EventKind.WALLET_BALANCE_REQUESTED, {}),
    OutboundEvent.WALLET_ADD_MONEY: AnalyticsRule(
        EventKind.WALLET_MONEY_ADDED, {"amount": "amount", "paymentMethod": "paymentMethod"}
    ),
    OutboundEvent.TRANSACTION_INITIATE: AnalyticsRule(
        EventKind.TRANSACTION_INITIATED,
        {"transactionId": "transactionId", "amount": "amount", "type": "type"},
    ),
    OutboundEvent.CART_ADD_ITEM: AnalyticsRule(
        EventKind.CART_ITEM_ADDED_ANALYTICS, {"productId": "productId", "quantity": "quantity"}
    ),
    OutboundEvent.CART_REMOVE_ITEM: AnalyticsRule(
        EventKind.CART_ITEM_REMOVED_ANALYTICS, {"productId": "productId"}
    ),
    OutboundEvent.CART_CHECKOUT_START: AnalyticsRule(
        EventKind.CART_CHECKOUT_INITIATED, {"total": "cartTotal", "itemCount": "itemCount"}
    ),
    OutboundEvent.USER_PROFILE_UPDATE: AnalyticsRule(
        EventKind.USER_PROFILE_UPDATED, {"changes": "changes"}
    ),
    OutboundEvent.USER_SUPPORT_REQUEST: AnalyticsRule(
        EventKind.USER_SUPPORT_REQUESTED,
        {"subject": "subject", "message": "message", "priority": "priority"},
        include_email=True,
    ),
    OutboundEvent.REVIEW_SUBMIT: AnalyticsRule(
        EventKind.REVIEW_NEW_SUBMISSION,
        {"productId": "productId", "rating": "rating", "comment": "comment"},
    ),
    OutboundEvent.FAQ_QUESTION: AnalyticsRule(
        EventKind.FAQ_USER_QUESTION,
        {"question": "question", "category": "category"},
        include_email=True,
    ),
    OutboundEvent.CATEGORY_BROWSE: AnalyticsRule(
        EventKind.CATEGORY_BROWSING_ANALYTICS,
        {"categoryId": "categoryId", "categoryName": "categoryName"},
    ),
}


class ClientEventRouter:
    """Handles frames received from client and admin sessions."""

    def __init__(self, hub: RealtimeHub) -> None:
        self._hub = hub
        self._analytics: Counter[str] = Counter()

    def analytics_summary(self) -> list[dict[str, Any]]:
        """Forwarded analytics counts per admin event type."""
        return [{"event": event, "count": count} for event, count in self._analytics.most_common()]

    async def handle(self, session: Session, raw: str | bytes | dict[str, Any]) -> None:
        """Handle one inbound frame. Malformed or unknown frames are logged and dropped."""
        session.touch()

        try:
            envelope = decode_frame(raw)
        except MalformedEnvelopeError as e:
            logger.warning("Dropping malformed client frame", sid=session.sid, error=str(e))
            return

        if envelope.type == ControlFrame.PING.value:
            await self._hub.send(session.sid, Envelope.create(ControlFrame.PONG.value))
            return

        try:
            event = OutboundEvent(envelope.type)
        except ValueError:
            logger.warning("Ignoring unknown client event", sid=session.sid, event_type=envelope.type)
            return

        if event == OutboundEvent.NOTIFICATION_SUBSCRIBE:
            await self._subscribe(session, envelope.payload)
        elif event == OutboundEvent.ADMIN_DASHBOARD_VIEW:
            await self._dashboard(session)
        elif event == OutboundEvent.ADMIN_USER_MESSAGE:
            await self._user_message(session, envelope.payload)
        else:
            await self._forward(session, event, envelope.payload)

    async def _forward(self, session: Session, event: OutboundEvent, data: dict[str, Any]) -> None:
        rule = ANALYTICS_RULES[event]
        payload: dict[str, Any] = {
            target: data.get(source) for source, target in rule.fields.items()
        }
        if event == OutboundEvent.USER_SUPPORT_REQUEST and not payload.get("priority"):
            payload["priority"] = "normal"
        payload["userId"] = session.user_id
        if rule.include_email:
            payload["userEmail"] = session.identity.email
        payload["timestamp"] = datetime.now(UTC).isoformat()

        delivered = await self._hub.broadcast(Envelope.create(rule.kind, payload), Audience.all_admins())
        self._analytics[rule.kind.value] += 1
        logger.debug(
            "Forwarded client event",
            sid=session.sid,
            event_type=event.value,
            analytics=rule.kind.value,
            delivered=delivered,
        )

    async def _subscribe(self, session: Session, data: dict[str, Any]) -> None:
        notification_type = data.get("type")
        if not isinstance(notification_type, str) or not notification_type:
            logger.warning("Notification subscribe without type", sid=session.sid)
            return
        await self._hub.join(session.sid, f"notifications_{notification_type}")
        logger.info(
            "Subscribed to notifications",
            sid=session.sid,
            user_id=session.user_id,
            notification_type=notification_type,
        )

    async def _dashboard(self, session: Session) -> None:
        if not session.is_admin:
            logger.warning("Dashboard request from non-admin session", sid=session.sid)
            return
        stats = self._hub.stats()
        await self._hub.send(
            session.sid,
            Envelope.create(
                EventKind.ADMIN_DASHBOARD_DATA,
                {
                    "connectedUsers": stats["clientConnections"],
                    "connectedAdmins": stats["adminConnections"],
                    "totalConnections": stats["totalConnections"],
                    "uptime": stats["uptime"],
                    "timestamp": datetime.now(UTC).isoformat(),
                },
            ),
        )

    async def _user_message(self, session: Session, data: dict[str, Any]) -> None:
        if not session.is_admin:
            logger.warning("User message from non-admin session", sid=session.sid)
            return
        user_id = data.get("userId")
        message = data.get("message")
        if not user_id or not message:
            logger.warning("Admin user message missing userId or message", sid=session.sid)
            return
        delivered = await self._hub.send_to_user(
            str(user_id),
            Envelope.create(
                EventKind.ADMIN_MESSAGE,
                {
                    "message": message,
                    "from": SUPPORT_SENDER,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
            ),
        )
        logger.info("Admin message sent", sid=session.sid, user_id=user_id, delivered=delivered)
