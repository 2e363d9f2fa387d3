"""End-to-end tests: connection managers on the long-polling transport.

Covers the full path from a domain publish on the server to client
handlers and the notification cache, client analytics reaching admin
dashboards, and the disconnect semantics seen by the client.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fastapi import FastAPI

from storefront_realtime.adapters.client.manager import ConnectionState
from storefront_realtime.adapters.server.security.jwt import ROLE_ADMIN
from storefront_realtime.config.schema import ClientType
from storefront_realtime.domain.model.events import EventKind

pytestmark = pytest.mark.filterwarnings(
    "ignore:datetime.datetime.utcnow\\(\\) is deprecated:DeprecationWarning"
)


def _token(app: FastAPI, user_id: str, role: str = "user", email: str | None = None) -> str:
    return app.state.token_service.create_access_token(user_id, role=role, email=email)


class TestConnect:
    """Handshake over the polling transport."""

    @pytest.mark.asyncio
    async def test_anonymous_client_connects(self, app: FastAPI, make_manager) -> None:
        manager = await make_manager()
        connects: list[bool] = []
        manager.on(EventKind.CONNECT, lambda: connects.append(True))

        await manager.connect()

        status = manager.get_connection_status()
        assert status.connected
        assert status.transport == "polling"
        assert status.socket_id == app.state.hub.sessions()[0].sid
        assert connects == [True]

    @pytest.mark.asyncio
    async def test_user_bound_from_token(self, app: FastAPI, make_manager) -> None:
        manager = await make_manager()

        await manager.connect(_token(app, "u1"))

        assert manager.get_connection_status().user_id == "u1"
        assert app.state.hub.sessions()[0].user_id == "u1"

    @pytest.mark.asyncio
    async def test_admin_requires_admin_token(self, app: FastAPI, make_manager, wait_for) -> None:
        manager = await make_manager(ClientType.ADMIN, reconnect=False)
        errors: list[Exception] = []
        manager.on(EventKind.CONNECT_ERROR, errors.append)

        await manager.connect(_token(app, "u1"))

        await wait_for(lambda: bool(errors))
        assert "Handshake rejected" in str(errors[0])
        assert manager.state == ConnectionState.ERROR
        assert app.state.hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_disconnect_closes_server_session(self, app: FastAPI, make_manager, wait_for) -> None:
        manager = await make_manager()
        await manager.connect()
        assert app.state.hub.connection_count == 1

        await manager.disconnect()

        await wait_for(lambda: app.state.hub.connection_count == 0)
        assert not manager.is_connected()


class TestDelivery:
    """Server publishes reaching client handlers."""

    @pytest.mark.asyncio
    async def test_order_status_delivered_and_cached(self, app: FastAPI, make_manager, wait_for) -> None:
        manager = await make_manager()
        received: list[dict[str, Any]] = []
        manager.on(EventKind.ORDER_STATUS_UPDATED, received.append)
        await manager.connect(_token(app, "u1"))

        delivered = await app.state.publisher.publish_order_status("o1", "u1", "shipped", "On its way")

        assert delivered == 1
        await wait_for(lambda: bool(received))
        assert received[0]["status"] == "shipped"
        notifications = await manager.get_all_notifications()
        assert len(notifications) == 1
        assert notifications[0].title == "Order Status Change"
        assert notifications[0].message == "On its way"

    @pytest.mark.asyncio
    async def test_other_users_orders_not_delivered(self, app: FastAPI, make_manager, wait_for) -> None:
        manager = await make_manager()
        received: list[dict[str, Any]] = []
        manager.on(EventKind.ORDER_STATUS_UPDATED, received.append)
        await manager.connect(_token(app, "u2"))

        assert await app.state.publisher.publish_order_status("o1", "u1", "shipped", "On its way") == 0

        await asyncio.sleep(0.1)
        assert received == []
        assert await manager.get_all_notifications() == []

    @pytest.mark.asyncio
    async def test_broadcast_notification_reaches_every_client(
        self, app: FastAPI, make_manager, wait_for
    ) -> None:
        first = await make_manager()
        second = await make_manager()
        seen: list[str] = []
        first.on(EventKind.NOTIFICATION_BROADCAST, lambda payload: seen.append("first"))
        second.on(EventKind.NOTIFICATION_BROADCAST, lambda payload: seen.append("second"))
        await first.connect(_token(app, "u1"))
        await second.connect()

        delivered = await app.state.publisher.publish_notification(
            "broadcast", {"title": "Sale", "message": "20% off"}
        )

        assert delivered == 2
        await wait_for(lambda: len(seen) == 2)
        assert sorted(seen) == ["first", "second"]
        cached = await second.get_all_notifications()
        assert cached[0].title == "Sale"

    @pytest.mark.asyncio
    async def test_client_analytics_reach_admin(self, app: FastAPI, make_manager, wait_for) -> None:
        admin = await make_manager(ClientType.ADMIN)
        user = await make_manager()
        viewed: list[dict[str, Any]] = []
        admin.on(EventKind.PRODUCT_VIEWED, viewed.append)
        await admin.connect(_token(app, "a1", role=ROLE_ADMIN))
        await user.connect(_token(app, "u1", email="asha@example.com"))

        assert user.emit_product_view("p1")

        await wait_for(lambda: bool(viewed))
        assert viewed[0]["productId"] == "p1"
        assert viewed[0]["userEmail"] == "asha@example.com"

    @pytest.mark.asyncio
    async def test_admin_presence_seen_by_clients(self, app: FastAPI, make_manager, wait_for) -> None:
        user = await make_manager()
        admin = await make_manager(ClientType.ADMIN)
        presence: list[str] = []
        user.on(EventKind.ADMIN_CONNECTED, lambda payload: presence.append("connected"))
        user.on(EventKind.ADMIN_DISCONNECTED, lambda payload: presence.append("disconnected"))
        await user.connect()

        await admin.connect(_token(app, "a1", role=ROLE_ADMIN))
        await wait_for(lambda: presence == ["connected"])
        await admin.disconnect()

        await wait_for(lambda: presence == ["connected", "disconnected"])


class TestServerDisconnect:
    """Sessions dropped by the server."""

    @pytest.mark.asyncio
    async def test_server_disconnect_is_not_retried(self, app: FastAPI, make_manager, wait_for) -> None:
        manager = await make_manager()
        reasons: list[str] = []
        attempts: list[int] = []
        manager.on(EventKind.DISCONNECT, reasons.append)
        manager.on(EventKind.RECONNECT_ATTEMPT, attempts.append)
        await manager.connect()
        sid = manager.get_connection_status().socket_id

        await app.state.hub.unregister(sid, reason="kicked", close=True)

        await wait_for(lambda: bool(reasons))
        assert reasons == ["io server disconnect"]
        await asyncio.sleep(0.1)
        assert attempts == []
        assert manager.state == ConnectionState.DISCONNECTED
        assert app.state.hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_explicit_connect_after_server_disconnect(
        self, app: FastAPI, make_manager, wait_for
    ) -> None:
        manager = await make_manager()
        reasons: list[str] = []
        manager.on(EventKind.DISCONNECT, reasons.append)
        await manager.connect()
        await app.state.hub.unregister(manager.get_connection_status().socket_id, close=True)
        await wait_for(lambda: bool(reasons))

        await manager.connect()

        assert manager.is_connected()
        assert app.state.hub.connection_count == 1
