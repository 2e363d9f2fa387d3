"""Client connection manager.

Owns one transport session to the realtime server: authentication at
handshake, the reconnection loop, decoding of incoming envelopes, the
local notification cache and the outbound ``emit_*`` family.

Errors never propagate into UI code. Connection problems surface as
``connect_error`` / ``disconnect`` events on the dispatcher; everything
else is logged.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from storefront_realtime.adapters.client.cache import NotificationCache
from storefront_realtime.adapters.client.transport import (
    REASON_CLIENT_DISCONNECT,
    REASON_SERVER_DISCONNECT,
    REASON_TRANSPORT_ERROR,
    HandshakeAuth,
    SessionInfo,
    Transport,
    TransportClosed,
    TransportError,
    create_transport,
)
from storefront_realtime.adapters.persistence.storage import PROFILE_KEY, TOKEN_KEY, StorageError
from storefront_realtime.application.dispatcher import EventDispatcher, EventHandler, Subscription
from storefront_realtime.application.reconnect import ReconnectPolicy
from storefront_realtime.domain.model.events import (
    LIFECYCLE_KINDS,
    ControlFrame,
    Envelope,
    EventKind,
    OutboundEvent,
    decode_envelope,
    encode_frame,
)
from storefront_realtime.domain.model.notifications import StoredNotification, is_notification_worthy

if TYPE_CHECKING:
    from storefront_realtime.adapters.persistence.storage import StoragePort
    from storefront_realtime.config.schema import ClientConfig, TransportName

logger = structlog.get_logger(__name__)

TransportFactory = Callable[["TransportName"], Transport]

_CONTROL_TYPES = frozenset(frame.value for frame in ControlFrame)
_LIFECYCLE_TYPES = frozenset(kind.value for kind in LIFECYCLE_KINDS)


class ConnectionState(str, Enum):
    """Connection state of a manager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    """Snapshot of a manager's connection."""

    status: ConnectionState
    socket_id: str | None
    connected: bool
    user_id: str | None
    transport: str | None
    reconnect_attempts: int

    def as_dict(self) -> dict[str, Any]:
        """Wire-style representation for status endpoints and UI code."""
        return {
            "status": self.status.value,
            "socketId": self.socket_id,
            "connected": self.connected,
            "userId": self.user_id,
            "transport": self.transport,
            "reconnectAttempts": self.reconnect_attempts,
        }


class ConnectionManager:
    """Maintains exactly one authenticated realtime session.

    Construct one per process (mobile app instance or admin session),
    call ``connect()`` at start and ``disconnect()`` at shutdown, or use
    it as an async context manager.

    Lifecycle:
    - ``connect()`` is a no-op while connecting or connected
    - a single supervisor task owns the receive loop and the reconnection
      loop, so reconnect attempts never overlap
    - ``disconnect()`` cancels the supervisor, closes the transport and
      clears every handler registration
    """

    def __init__(
        self,
        config: ClientConfig,
        storage: StoragePort,
        *,
        dispatcher: EventDispatcher | None = None,
        cache: NotificationCache | None = None,
        transport_factory: TransportFactory | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
    ) -> None:
        """Initialize the connection manager.

        Args:
            config: Client configuration
            storage: Persisted client storage (token, profile, cache)
            dispatcher: Event dispatcher; a private one is created when omitted
            cache: Notification cache; built on ``storage`` when omitted
            transport_factory: Builds a transport by name; defaults to
                ``create_transport`` with this configuration
            reconnect_policy: Backoff state machine; built from config when omitted
        """
        self._config = config
        self._storage = storage
        self._dispatcher = dispatcher or EventDispatcher()
        self._cache = cache or NotificationCache(
            storage,
            capacity=config.cache.capacity,
            key=config.cache.key,
        )
        self._transport_factory: TransportFactory = transport_factory or (
            lambda name: create_transport(name, config)
        )
        self._policy = reconnect_policy or ReconnectPolicy.from_config(config.reconnection)

        self._state = ConnectionState.DISCONNECTED
        self._transport: Transport | None = None
        self._session: SessionInfo | None = None
        self._auth = HandshakeAuth(token=None, client_type=config.client_type)
        self._user_id: str | None = None
        self._last_error: Exception | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()
        # Bumped by connect/disconnect; stale loops compare and exit
        self._generation = 0

    async def __aenter__(self) -> ConnectionManager:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def cache(self) -> NotificationCache:
        return self._cache

    @property
    def reconnect_policy(self) -> ReconnectPolicy:
        return self._policy

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    def is_connected(self) -> bool:
        """True iff the state is connected and the transport agrees."""
        return (
            self._state == ConnectionState.CONNECTED
            and self._transport is not None
            and self._transport.connected
        )

    def get_connection_status(self) -> ConnectionStatus:
        """Return a snapshot of the connection."""
        return ConnectionStatus(
            status=self._state,
            socket_id=self._transport.sid if self._transport else None,
            connected=self.is_connected(),
            user_id=self._user_id,
            transport=self._transport.name.value if self._transport else None,
            reconnect_attempts=self._policy.attempts,
        )

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def on(self, event_type: EventKind | str, handler: EventHandler) -> Subscription:
        """Register a handler for an event type."""
        return self._dispatcher.on(event_type, handler)

    def off(self, target: Subscription | EventKind | str) -> int:
        """Remove one subscription, or all handlers of a type."""
        return self._dispatcher.off(target)

    async def get_all_notifications(self) -> list[StoredNotification]:
        """Return cached notifications, newest first."""
        return await self._cache.get_all()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, token: str | None = None) -> None:
        """Open the realtime session.

        Resolves the token from the argument or persisted storage; without
        one the connection is attempted unauthenticated. Failures are
        reported through ``connect_error`` and do not raise.

        Args:
            token: Bearer token; falls back to the stored ``userToken``
        """
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            logger.debug("Connect ignored", state=self._state.value)
            return

        self._state = ConnectionState.CONNECTING
        self._generation += 1
        generation = self._generation
        await self._cancel_supervisor()

        resolved = token if token is not None else await self._stored_token()
        self._auth = HandshakeAuth(token=resolved, client_type=self._config.client_type)
        self._user_id = await self._stored_user_id()
        if generation != self._generation:
            return

        self._policy.reset()
        logger.info(
            "Connecting to realtime server",
            base_url=self._config.base_url,
            transports=[t.value for t in self._config.transports],
            client_type=self._config.client_type.value,
            authenticated=resolved is not None,
        )

        opened = await self._open_transport(generation)
        if generation != self._generation:
            return

        if opened or self._config.reconnection.enabled:
            self._supervisor = asyncio.create_task(
                self._supervise(generation, opened),
                name="realtime-supervisor",
            )

    async def disconnect(self) -> None:
        """Close the session and clear all handler registrations.

        Safe to call when already disconnected.
        """
        self._generation += 1
        was_active = self._state != ConnectionState.DISCONNECTED or self._transport is not None

        await self._cancel_supervisor()
        await self._drop_transport()
        self._dispatcher.clear()
        self._policy.reset()
        self._state = ConnectionState.DISCONNECTED

        if was_active:
            logger.info("Disconnected from realtime server", reason=REASON_CLIENT_DISCONNECT)

    async def aclose(self) -> None:
        """Tear down the manager: disconnect and cancel pending writes."""
        await self.disconnect()
        for task in list(self._background_tasks):
            task.cancel()
        self._background_tasks.clear()

    async def _cancel_supervisor(self) -> None:
        task, self._supervisor = self._supervisor, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _drop_transport(self) -> None:
        transport, self._transport = self._transport, None
        self._session = None
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.warning("Error closing transport", transport=transport.name.value, error=str(e))

    async def _stored_token(self) -> str | None:
        try:
            return await self._storage.get_item(TOKEN_KEY)
        except StorageError as e:
            logger.warning("Cannot read stored token", error=str(e))
            return None

    async def _stored_user_id(self) -> str | None:
        try:
            raw = await self._storage.get_item(PROFILE_KEY)
        except StorageError as e:
            logger.warning("Cannot read stored profile", error=str(e))
            return None
        if not raw:
            return None
        try:
            profile = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored profile is not JSON")
            return None
        if not isinstance(profile, dict):
            return None
        user_id = profile.get("_id") or profile.get("id")
        return str(user_id) if user_id is not None else None

    async def _open_transport(self, generation: int) -> bool:
        """Try each configured transport in order until one completes the handshake."""
        errors: list[Exception] = []

        for name in self._config.transports:
            transport = self._transport_factory(name)
            try:
                session = await transport.open(self._auth, self._config.timeout_s)
            except TransportError as e:
                logger.warning("Transport handshake failed", transport=name.value, error=str(e))
                errors.append(e)
                await transport.close()
                continue
            except Exception as e:
                logger.exception("Unexpected transport handshake error", transport=name.value)
                errors.append(TransportError(f"{name.value} handshake failed: {e}"))
                await transport.close()
                continue

            if generation != self._generation:
                await transport.close()
                return False

            self._transport = transport
            self._session = session
            if session.user_id:
                self._user_id = str(session.user_id)
            self._state = ConnectionState.CONNECTED
            self._last_error = None
            self._policy.reset()
            logger.info(
                "Realtime connection established",
                sid=session.sid,
                transport=name.value,
                client_type=session.client_type,
            )
            self._dispatcher.dispatch(EventKind.CONNECT)
            return True

        error: Exception = errors[-1] if errors else TransportError("No transports configured")
        self._state = ConnectionState.ERROR
        self._last_error = error
        logger.error("Realtime connection failed", error=str(error), attempts=self._policy.attempts)
        self._dispatcher.dispatch(EventKind.CONNECT_ERROR, error)
        return False

    async def _supervise(self, generation: int, connected: bool) -> None:
        """Receive while connected, then reconnect; the only retry loop."""
        while generation == self._generation:
            if connected:
                reason = await self._receive_loop(generation)
                if generation != self._generation:
                    return

                await self._drop_transport()
                self._state = ConnectionState.DISCONNECTED
                logger.warning("Realtime connection lost", reason=reason)
                self._dispatcher.dispatch(EventKind.DISCONNECT, reason)

                if reason == REASON_SERVER_DISCONNECT:
                    # Server-initiated disconnects wait for an explicit connect()
                    return

            if not self._config.reconnection.enabled:
                return

            connected = await self._reconnect(generation)
            if not connected:
                return

    async def _reconnect(self, generation: int) -> bool:
        while generation == self._generation:
            delay = self._policy.next_delay()
            if delay is None:
                logger.error("Max reconnection attempts reached", attempts=self._policy.attempts)
                self._dispatcher.dispatch(EventKind.RECONNECT_FAILED, self._policy.attempts)
                return False

            logger.info(
                "Reconnecting after delay",
                delay_s=round(delay, 3),
                attempt=self._policy.attempts,
                max_attempts=self._policy.max_attempts,
            )
            await asyncio.sleep(delay)
            if generation != self._generation:
                return False

            self._state = ConnectionState.CONNECTING
            self._dispatcher.dispatch(EventKind.RECONNECT_ATTEMPT, self._policy.attempts)
            if await self._open_transport(generation):
                return True
        return False

    async def _receive_loop(self, generation: int) -> str:
        """Read frames until the transport closes; returns the disconnect reason."""
        transport = self._transport
        if transport is None:
            return REASON_TRANSPORT_ERROR

        while True:
            try:
                raw = await transport.receive()
            except TransportClosed as e:
                return e.reason
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Transport receive failed", transport=transport.name.value)
                return REASON_TRANSPORT_ERROR

            if generation != self._generation:
                return REASON_CLIENT_DISCONNECT

            await self._handle_frame(raw, generation)

    async def _handle_frame(self, raw: str | dict[str, Any], generation: int) -> None:
        envelope = decode_envelope(raw)
        if envelope is None:
            return

        if envelope.type in _CONTROL_TYPES:
            logger.debug("Control frame received", frame_type=envelope.type)
            return

        if envelope.type in _LIFECYCLE_TYPES:
            logger.warning("Dropping reserved event type from server", event_type=envelope.type)
            return

        if not envelope.is_recognized:
            logger.debug("Passing through unrecognized event", event_type=envelope.type)

        await self._deliver(envelope, generation)

    async def _deliver(self, envelope: Envelope, generation: int) -> None:
        if is_notification_worthy(envelope):
            await self._cache.store(envelope)
            if generation != self._generation:
                return
        self._dispatcher.dispatch(envelope.type, envelope.payload)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def emit(self, event: OutboundEvent | str, payload: dict[str, Any] | None = None) -> bool:
        """Send a client interaction event, fire-and-forget.

        When not connected the event is dropped with a warning; nothing is
        queued for later delivery.

        Returns:
            True if a write was scheduled
        """
        event_type = event.value if isinstance(event, Enum) else event
        if not self.is_connected() or self._transport is None:
            logger.warning("Cannot emit event, not connected", event_type=event_type)
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Cannot emit event outside an event loop", event_type=event_type)
            return False

        frame = encode_frame(event_type, payload or {})
        task = loop.create_task(self._send(self._transport, event_type, frame))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return True

    async def _send(self, transport: Transport, event_type: str, frame: str) -> None:
        try:
            await transport.send(frame)
        except TransportClosed as e:
            logger.warning("Emit failed, transport closed", event_type=event_type, reason=e.reason)
        except Exception as e:
            logger.error("Emit failed", event_type=event_type, error=str(e))

    # Product interactions
    def emit_product_view(self, product_id: str) -> bool:
        return self.emit(OutboundEvent.PRODUCT_VIEW, {"productId": product_id})

    def emit_product_search(self, query: str) -> bool:
        return self.emit(OutboundEvent.PRODUCT_SEARCH, {"query": query})

    def emit_add_to_wishlist(self, product_id: str) -> bool:
        return self.emit(OutboundEvent.PRODUCT_ADD_TO_WISHLIST, {"productId": product_id})

    # Order interactions
    def emit_order_create(self, order_data: dict[str, Any]) -> bool:
        return self.emit(OutboundEvent.ORDER_CREATE, dict(order_data))

    def emit_order_track(self, order_id: str) -> bool:
        return self.emit(OutboundEvent.ORDER_TRACK, {"orderId": order_id})

    def emit_order_cancel_request(self, order_id: str, reason: str) -> bool:
        return self.emit(OutboundEvent.ORDER_CANCEL_REQUEST, {"orderId": order_id, "reason": reason})

    # Notification interactions
    def emit_notification_read(self, notification_id: str) -> bool:
        return self.emit(OutboundEvent.NOTIFICATION_READ, {"notificationId": notification_id})

    def emit_notification_subscribe(self, notification_type: str) -> bool:
        return self.emit(OutboundEvent.NOTIFICATION_SUBSCRIBE, {"type": notification_type})

    # Wallet and transaction interactions
    def emit_wallet_balance_request(self) -> bool:
        return self.emit(OutboundEvent.WALLET_BALANCE_REQUEST, {})

    def emit_wallet_add_money(self, amount: float, payment_method: str) -> bool:
        return self.emit(
            OutboundEvent.WALLET_ADD_MONEY,
            {"amount": amount, "paymentMethod": payment_method},
        )

    def emit_transaction_initiate(self, transaction_data: dict[str, Any]) -> bool:
        return self.emit(OutboundEvent.TRANSACTION_INITIATE, dict(transaction_data))

    # Cart interactions
    def emit_cart_add_item(self, product_id: str, quantity: int) -> bool:
        return self.emit(OutboundEvent.CART_ADD_ITEM, {"productId": product_id, "quantity": quantity})

    def emit_cart_remove_item(self, product_id: str) -> bool:
        return self.emit(OutboundEvent.CART_REMOVE_ITEM, {"productId": product_id})

    def emit_cart_checkout_start(self, total: float, item_count: int) -> bool:
        return self.emit(OutboundEvent.CART_CHECKOUT_START, {"total": total, "itemCount": item_count})

    # User interactions
    def emit_profile_update(self, changes: dict[str, Any]) -> bool:
        return self.emit(OutboundEvent.USER_PROFILE_UPDATE, {"changes": changes})

    def emit_support_request(self, subject: str, message: str, priority: str = "normal") -> bool:
        return self.emit(
            OutboundEvent.USER_SUPPORT_REQUEST,
            {"subject": subject, "message": message, "priority": priority},
        )

    # Content interactions
    def emit_review_submit(self, product_id: str, rating: int, comment: str) -> bool:
        return self.emit(
            OutboundEvent.REVIEW_SUBMIT,
            {"productId": product_id, "rating": rating, "comment": comment},
        )

    def emit_faq_question(self, question: str, category: str) -> bool:
        return self.emit(OutboundEvent.FAQ_QUESTION, {"question": question, "category": category})

    def emit_category_browse(self, category_id: str, category_name: str) -> bool:
        return self.emit(
            OutboundEvent.CATEGORY_BROWSE,
            {"categoryId": category_id, "categoryName": category_name},
        )

    # Admin sessions
    def emit_admin_dashboard_view(self) -> bool:
        return self.emit(OutboundEvent.ADMIN_DASHBOARD_VIEW, {})

    def emit_admin_user_message(self, user_id: str, message: str) -> bool:
        return self.emit(OutboundEvent.ADMIN_USER_MESSAGE, {"userId": user_id, "message": message})
