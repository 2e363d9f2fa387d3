"""Event envelope domain model.

Every message exchanged over the realtime transport is an envelope:
a namespaced ``<domain>:<action>`` type tag plus a JSON object payload.

Wire types are decoded into the closed ``EventKind`` enumeration. Kinds
with a known payload shape carry a pydantic model that is validated at
decode time; unknown wire types decode into ``EventKind.UNRECOGNIZED``
and are passed through untouched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = structlog.get_logger(__name__)


class MalformedEnvelopeError(ValueError):
    """Raised when a frame cannot be decoded into an envelope."""


class EventKind(str, Enum):
    """Server-to-client event types, plus local connection lifecycle events."""

    # Products
    PRODUCT_CREATED = "product:created"
    PRODUCT_UPDATED = "product:updated"
    PRODUCT_DELETED = "product:deleted"

    # Orders
    ORDER_CREATED_UPDATE = "order:created_update"
    ORDER_UPDATED_UPDATE = "order:updated_update"
    ORDER_STATUS_UPDATED = "order:status_updated"

    # Notifications
    NOTIFICATION_CREATED = "notification:created"
    NOTIFICATION_BROADCAST = "notification:broadcast"

    # Wallet and transactions
    WALLET_BALANCE_UPDATED = "wallet:balance_updated"
    WALLET_UPDATED = "wallet:updated"
    TRANSACTION_CREATED = "transaction:created"
    TRANSACTION_STATUS_UPDATED = "transaction:status_updated"

    # Cart
    CART_ITEM_ADDED = "cart:item_added"
    CART_ITEM_UPDATED = "cart:item_updated"
    CART_ITEM_REMOVED = "cart:item_removed"

    # Catalogue content
    USER_CREATED = "user:created"
    USER_UPDATED = "user:updated"
    REVIEW_CREATED = "review:created"
    REVIEW_UPDATED = "review:updated"
    FAQ_CREATED = "faq:created"
    FAQ_UPDATED = "faq:updated"
    CATEGORY_CREATED = "category:created"
    CATEGORY_UPDATED = "category:updated"
    CATEGORY_DELETED = "category:deleted"

    # Admin to user
    ADMIN_MESSAGE = "admin:message"
    ADMIN_NOTIFICATION = "admin:notification"
    ADMIN_CONNECTED = "admin:connected"
    ADMIN_DISCONNECTED = "admin:disconnected"

    # Admin audience: write-path acknowledgements
    PRODUCT_CREATED_ACK = "product:created_ack"
    PRODUCT_UPDATED_ACK = "product:updated_ack"
    PRODUCT_DELETED_ACK = "product:deleted_ack"
    ORDER_CREATED = "order:created"
    ORDER_UPDATED = "order:updated"
    WALLET_BALANCE_UPDATED_ADMIN = "wallet:balance_updated_admin"
    WALLET_UPDATED_ADMIN = "wallet:updated_admin"
    TRANSACTION_CREATED_ADMIN = "transaction:created_admin"
    TRANSACTION_STATUS_UPDATED_ADMIN = "transaction:status_updated_admin"
    REVIEW_CREATED_ADMIN = "review:created_admin"
    REVIEW_UPDATED_ADMIN = "review:updated_admin"

    # Admin audience: client interaction analytics
    PRODUCT_VIEWED = "product:viewed"
    PRODUCT_SEARCHED = "product:searched"
    PRODUCT_WISHLISTED = "product:wishlisted"
    ORDER_NEW_PENDING = "order:new_pending"
    ORDER_TRACKING_REQUESTED = "order:tracking_requested"
    ORDER_CANCELLATION_REQUESTED = "order:cancellation_requested"
    NOTIFICATION_READ_STATUS = "notification:read_status"
    WALLET_BALANCE_REQUESTED = "wallet:balance_requested"
    WALLET_MONEY_ADDED = "wallet:money_added"
    TRANSACTION_INITIATED = "transaction:initiated"
    CART_ITEM_ADDED_ANALYTICS = "cart:item_added_analytics"
    CART_ITEM_REMOVED_ANALYTICS = "cart:item_removed_analytics"
    CART_CHECKOUT_INITIATED = "cart:checkout_initiated"
    USER_PROFILE_UPDATED = "user:profile_updated"
    USER_SUPPORT_REQUESTED = "user:support_requested"
    REVIEW_NEW_SUBMISSION = "review:new_submission"
    FAQ_USER_QUESTION = "faq:user_question"
    CATEGORY_BROWSING_ANALYTICS = "category:browsing_analytics"
    ADMIN_DASHBOARD_DATA = "admin:dashboard_data"

    SYSTEM_TEST = "system:test"

    # Local lifecycle pseudo-events, never sent over the wire
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    CONNECT_ERROR = "connect_error"
    RECONNECT_ATTEMPT = "reconnect_attempt"
    RECONNECT_FAILED = "reconnect_failed"

    UNRECOGNIZED = "unrecognized"

    @classmethod
    def parse(cls, type_: str) -> EventKind:
        """Map a wire type string to its kind, or UNRECOGNIZED."""
        try:
            kind = cls(type_)
        except ValueError:
            return cls.UNRECOGNIZED
        if kind in LIFECYCLE_KINDS or kind is cls.UNRECOGNIZED:
            # Lifecycle names are reserved for locally generated events
            return cls.UNRECOGNIZED
        return kind


LIFECYCLE_KINDS = frozenset(
    {
        EventKind.CONNECT,
        EventKind.DISCONNECT,
        EventKind.CONNECT_ERROR,
        EventKind.RECONNECT_ATTEMPT,
        EventKind.RECONNECT_FAILED,
    }
)


class OutboundEvent(str, Enum):
    """Client-to-server interaction events (fire-and-forget)."""

    PRODUCT_VIEW = "product:view"
    PRODUCT_SEARCH = "product:search"
    PRODUCT_ADD_TO_WISHLIST = "product:add_to_wishlist"
    ORDER_CREATE = "order:create"
    ORDER_TRACK = "order:track"
    ORDER_CANCEL_REQUEST = "order:cancel_request"
    NOTIFICATION_READ = "notification:read"
    NOTIFICATION_SUBSCRIBE = "notification:subscribe"
    WALLET_BALANCE_REQUEST = "wallet:balance_request"
    WALLET_ADD_MONEY = "wallet:add_money"
    TRANSACTION_INITIATE = "transaction:initiate"
    CART_ADD_ITEM = "cart:add_item"
    CART_REMOVE_ITEM = "cart:remove_item"
    CART_CHECKOUT_START = "cart:checkout_start"
    USER_PROFILE_UPDATE = "user:profile_update"
    USER_SUPPORT_REQUEST = "user:support_request"
    REVIEW_SUBMIT = "review:submit"
    FAQ_QUESTION = "faq:question"
    CATEGORY_BROWSE = "category:browse"

    # Admin sessions only
    ADMIN_DASHBOARD_VIEW = "admin:dashboard_view"
    ADMIN_USER_MESSAGE = "admin:user_message"


class ControlFrame(str, Enum):
    """Transport-level frames handled by the connection layer itself."""

    SESSION_READY = "session:ready"
    PING = "ping"
    PONG = "pong"


# =============================================================================
# PAYLOAD MODELS
# =============================================================================


class Payload(BaseModel):
    """Base payload: documents from the data store carry arbitrary extra fields."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ProductDeletedPayload(Payload):
    product_id: str = Field(alias="productId")


class CategoryDeletedPayload(Payload):
    category_id: str = Field(alias="categoryId")


class OrderUpdatePayload(Payload):
    order_id: str | None = Field(default=None, alias="orderId")
    status: str | None = None


class OrderStatusPayload(Payload):
    order_id: str = Field(alias="orderId")
    status: str | None = None
    message: str | None = None


class NotificationPayload(Payload):
    title: str | None = None
    message: str | None = None
    type: str | None = None
    user_id: str | None = Field(default=None, alias="userId")


class WalletBalancePayload(Payload):
    new_balance: float = Field(alias="newBalance")
    user_id: str | None = Field(default=None, alias="userId")


class TransactionPayload(Payload):
    amount: float | None = None
    type: str | None = None
    message: str | None = None


class AdminMessagePayload(Payload):
    message: str
    sender: str | None = Field(default=None, alias="from")


class AdminPresencePayload(Payload):
    admin_id: str = Field(alias="adminId")


PAYLOAD_MODELS: dict[EventKind, type[Payload]] = {
    EventKind.PRODUCT_DELETED: ProductDeletedPayload,
    EventKind.CATEGORY_DELETED: CategoryDeletedPayload,
    EventKind.ORDER_CREATED_UPDATE: OrderUpdatePayload,
    EventKind.ORDER_UPDATED_UPDATE: OrderUpdatePayload,
    EventKind.ORDER_STATUS_UPDATED: OrderStatusPayload,
    EventKind.NOTIFICATION_CREATED: NotificationPayload,
    EventKind.NOTIFICATION_BROADCAST: NotificationPayload,
    EventKind.ADMIN_NOTIFICATION: NotificationPayload,
    EventKind.WALLET_BALANCE_UPDATED: WalletBalancePayload,
    EventKind.TRANSACTION_CREATED: TransactionPayload,
    EventKind.TRANSACTION_STATUS_UPDATED: TransactionPayload,
    EventKind.ADMIN_MESSAGE: AdminMessagePayload,
    EventKind.ADMIN_CONNECTED: AdminPresencePayload,
    EventKind.ADMIN_DISCONNECTED: AdminPresencePayload,
}


# =============================================================================
# ENVELOPE
# =============================================================================


@dataclass(frozen=True)
class Envelope:
    """A typed message unit exchanged over the transport.

    Attributes:
        type: Wire type string, ``<domain>:<action>``
        payload: JSON object payload
        kind: Decoded kind; UNRECOGNIZED for types outside the taxonomy
    """

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    kind: EventKind = EventKind.UNRECOGNIZED

    @classmethod
    def create(cls, type_: EventKind | str, payload: dict[str, Any] | None = None) -> Envelope:
        """Build an envelope for sending, resolving the kind from the type."""
        type_str = type_.value if isinstance(type_, Enum) else type_
        return cls(type=type_str, payload=dict(payload or {}), kind=EventKind.parse(type_str))

    @property
    def is_recognized(self) -> bool:
        """True when the type belongs to the known taxonomy."""
        return self.kind is not EventKind.UNRECOGNIZED

    def parsed_payload(self) -> Payload | None:
        """Return the typed payload model for kinds that define one."""
        model = PAYLOAD_MODELS.get(self.kind)
        if model is None:
            return None
        return model.model_validate(self.payload)

    def to_frame(self) -> dict[str, Any]:
        """Wire representation."""
        return {"type": self.type, "payload": self.payload}


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def encode_frame(type_: EventKind | OutboundEvent | ControlFrame | str, payload: dict[str, Any]) -> str:
    """Serialize a frame to JSON text."""
    type_str = type_.value if isinstance(type_, Enum) else type_
    return json.dumps({"type": type_str, "payload": payload}, default=_json_default)


def to_jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    """Normalize a payload (datetimes, enums) into plain JSON types."""
    return json.loads(json.dumps(payload, default=_json_default))


def decode_frame(raw: str | bytes | dict[str, Any]) -> Envelope:
    """Decode a raw frame into an Envelope.

    Raises:
        MalformedEnvelopeError: If the frame is not a JSON object with a string
            ``type`` and an object ``payload``, or the payload does not match
            the model registered for its kind
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedEnvelopeError(f"Frame is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise MalformedEnvelopeError(f"Frame must be a JSON object, got {type(data).__name__}")

    type_str = data.get("type")
    if not isinstance(type_str, str) or not type_str:
        raise MalformedEnvelopeError("Frame has no type")

    payload = data.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise MalformedEnvelopeError(
            f"Payload for {type_str} must be an object, got {type(payload).__name__}"
        )

    envelope = Envelope(type=type_str, payload=payload, kind=EventKind.parse(type_str))

    model = PAYLOAD_MODELS.get(envelope.kind)
    if model is not None:
        try:
            model.model_validate(payload)
        except ValidationError as e:
            raise MalformedEnvelopeError(f"Invalid payload for {type_str}: {e}") from e

    return envelope


def decode_envelope(raw: str | bytes | dict[str, Any]) -> Envelope | None:
    """Decode a frame, logging and returning None when it is malformed."""
    try:
        return decode_frame(raw)
    except MalformedEnvelopeError as e:
        logger.warning("Dropping malformed envelope", error=str(e))
        return None
