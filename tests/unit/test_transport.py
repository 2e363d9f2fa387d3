"""Tests for client transports.

Tests for:
- Handshake auth and session:ready parsing
- WebSocket URL building and close-reason mapping
- Long-polling transport against a mocked HTTP server
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from storefront_realtime.adapters.client.transport import (
    REASON_SERVER_DISCONNECT,
    REASON_TRANSPORT_CLOSE,
    REASON_TRANSPORT_ERROR,
    HandshakeAuth,
    LongPollingTransport,
    SessionInfo,
    TransportClosed,
    TransportError,
    WebSocketTransport,
    create_transport,
)
from storefront_realtime.config.schema import ClientConfig, ClientType, TransportName

BASE = "http://realtime.test"


class TestHandshakeAuth:
    """Tests for HandshakeAuth."""

    def test_query_without_token(self) -> None:
        assert HandshakeAuth(token=None).as_query() == {"client_type": "client"}

    def test_query_with_token(self) -> None:
        auth = HandshakeAuth(token="abc", client_type=ClientType.ADMIN)
        assert auth.as_query() == {"client_type": "admin", "token": "abc"}

    def test_body(self) -> None:
        assert HandshakeAuth(token="abc").as_body() == {"token": "abc", "clientType": "client"}


class TestSessionInfo:
    """Tests for SessionInfo.from_frame."""

    def test_parses_ready_frame(self) -> None:
        info = SessionInfo.from_frame(
            {
                "type": "session:ready",
                "payload": {"sid": "s1", "clientType": "client", "userId": "u1", "pollTimeout": 25},
            }
        )
        assert info == SessionInfo(sid="s1", client_type="client", user_id="u1", poll_timeout_s=25.0)

    def test_parses_json_text(self) -> None:
        info = SessionInfo.from_frame('{"type": "session:ready", "payload": {"sid": "s1"}}')
        assert info.sid == "s1"
        assert info.user_id is None
        assert info.poll_timeout_s is None

    @pytest.mark.parametrize(
        "frame",
        [
            "not json",
            {"type": "product:created", "payload": {}},
            {"type": "session:ready", "payload": {}},
            {"type": "session:ready", "payload": {"sid": ""}},
            {"type": "session:ready", "payload": ["s1"]},
            {"type": "session:ready", "payload": {"sid": "s1", "pollTimeout": "soon"}},
        ],
    )
    def test_rejects_invalid_frames(self, frame: Any) -> None:
        with pytest.raises(TransportError):
            SessionInfo.from_frame(frame)


class TestWebSocketTransport:
    """Tests for WebSocketTransport that need no server."""

    def test_http_url_becomes_ws(self) -> None:
        transport = WebSocketTransport("http://shop.test:8000", "/realtime")
        assert transport._url == "ws://shop.test:8000/realtime/ws"

    def test_https_url_becomes_wss(self) -> None:
        transport = WebSocketTransport("https://shop.test", "")
        assert transport._url == "wss://shop.test/ws"

    def test_not_connected_initially(self) -> None:
        transport = WebSocketTransport(BASE)
        assert not transport.connected
        assert transport.sid is None
        assert transport.name == TransportName.WEBSOCKET

    @pytest.mark.parametrize(
        ("code", "reason"),
        [
            (1000, REASON_SERVER_DISCONNECT),
            (4001, REASON_SERVER_DISCONNECT),
            (1001, REASON_TRANSPORT_CLOSE),
            (1012, REASON_TRANSPORT_CLOSE),
        ],
    )
    def test_close_code_mapping(self, code: int, reason: str) -> None:
        exc = ConnectionClosed(Close(code, ""), None)
        assert WebSocketTransport._reason(exc) == reason

    def test_abnormal_closure_is_transport_close(self) -> None:
        assert WebSocketTransport._reason(ConnectionClosed(None, None)) == REASON_TRANSPORT_CLOSE

    @pytest.mark.asyncio
    async def test_send_without_connection_raises(self) -> None:
        with pytest.raises(TransportClosed):
            await WebSocketTransport(BASE).send("{}")


class FakePollingServer:
    """Minimal long-polling endpoint served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.frames: list[list[dict[str, Any]]] = []
        self.posted: list[Any] = []
        self.deleted: list[str] = []
        self.handshake_status = 200
        self.poll_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path == "/realtime/poll/handshake":
            if self.handshake_status != 200:
                return httpx.Response(self.handshake_status, json={"detail": "Admin role required"})
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "type": "session:ready",
                    "payload": {"sid": "poll-1", "clientType": body["clientType"], "pollTimeout": 1},
                },
            )
        if path == "/realtime/poll/poll-1":
            if request.method == "GET":
                if self.poll_status != 200:
                    return httpx.Response(self.poll_status, json={"detail": "Session not found"})
                batch = self.frames.pop(0) if self.frames else []
                return httpx.Response(200, json=batch)
            if request.method == "POST":
                self.posted.extend(json.loads(request.content))
                return httpx.Response(200, json={"accepted": 1})
            if request.method == "DELETE":
                self.deleted.append("poll-1")
                return httpx.Response(204)
        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def polling_server() -> FakePollingServer:
    return FakePollingServer()


@pytest.fixture
async def polling_transport(polling_server: FakePollingServer) -> LongPollingTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(polling_server.handler))
    transport = LongPollingTransport(BASE, "/realtime", client=client)
    yield transport
    await transport.close()
    await client.aclose()


class TestLongPollingTransport:
    """Tests for LongPollingTransport."""

    @pytest.mark.asyncio
    async def test_handshake(self, polling_transport: LongPollingTransport) -> None:
        info = await polling_transport.open(HandshakeAuth(token="t"), timeout=1.0)

        assert info.sid == "poll-1"
        assert info.poll_timeout_s == 1.0
        assert polling_transport.connected
        assert polling_transport.sid == "poll-1"

    @pytest.mark.asyncio
    async def test_rejected_handshake(
        self, polling_server: FakePollingServer, polling_transport: LongPollingTransport
    ) -> None:
        polling_server.handshake_status = 401

        with pytest.raises(TransportError, match="Admin role required"):
            await polling_transport.open(HandshakeAuth(token=None, client_type=ClientType.ADMIN), 1.0)
        assert not polling_transport.connected

    @pytest.mark.asyncio
    async def test_server_error_handshake(
        self, polling_server: FakePollingServer, polling_transport: LongPollingTransport
    ) -> None:
        polling_server.handshake_status = 500
        with pytest.raises(TransportError, match="HTTP 500"):
            await polling_transport.open(HandshakeAuth(token=None), 1.0)

    @pytest.mark.asyncio
    async def test_non_json_handshake_response(self) -> None:
        mock = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>captive portal</html>"))
        async with httpx.AsyncClient(transport=mock) as client:
            transport = LongPollingTransport(BASE, client=client)

            with pytest.raises(TransportError, match="not JSON"):
                await transport.open(HandshakeAuth(token="t"), 1.0)

            assert not transport.connected

    @pytest.mark.asyncio
    async def test_owned_client_closed_after_rejected_handshake(
        self, polling_server: FakePollingServer
    ) -> None:
        polling_server.handshake_status = 403
        transport = LongPollingTransport(BASE)
        owned = httpx.AsyncClient(transport=httpx.MockTransport(polling_server.handler))
        transport._client = owned

        with pytest.raises(TransportError, match="Handshake rejected"):
            await transport.open(HandshakeAuth(token="t", client_type=ClientType.ADMIN), 1.0)

        assert owned.is_closed
        assert transport._client is None

    @pytest.mark.asyncio
    async def test_receive_buffers_batches(
        self, polling_server: FakePollingServer, polling_transport: LongPollingTransport
    ) -> None:
        polling_server.frames = [
            [],
            [
                {"type": "product:created", "payload": {"_id": "p1"}},
                {"type": "faq:created", "payload": {}},
            ],
        ]
        await polling_transport.open(HandshakeAuth(token=None), 1.0)

        first = await polling_transport.receive()
        second = await polling_transport.receive()

        assert first["type"] == "product:created"
        assert second["type"] == "faq:created"

    @pytest.mark.asyncio
    async def test_send_posts_batch(
        self, polling_server: FakePollingServer, polling_transport: LongPollingTransport
    ) -> None:
        await polling_transport.open(HandshakeAuth(token=None), 1.0)

        await polling_transport.send('{"type": "product:view", "payload": {"productId": "p1"}}')

        assert polling_server.posted == [{"type": "product:view", "payload": {"productId": "p1"}}]

    @pytest.mark.asyncio
    async def test_missing_session_is_server_disconnect(
        self, polling_server: FakePollingServer, polling_transport: LongPollingTransport
    ) -> None:
        await polling_transport.open(HandshakeAuth(token=None), 1.0)
        polling_server.poll_status = 404

        with pytest.raises(TransportClosed) as exc_info:
            await polling_transport.receive()

        assert exc_info.value.reason == REASON_SERVER_DISCONNECT
        assert not polling_transport.connected

    @pytest.mark.asyncio
    async def test_server_error_is_transport_error(
        self, polling_server: FakePollingServer, polling_transport: LongPollingTransport
    ) -> None:
        await polling_transport.open(HandshakeAuth(token=None), 1.0)
        polling_server.poll_status = 503

        with pytest.raises(TransportClosed) as exc_info:
            await polling_transport.receive()
        assert exc_info.value.reason == REASON_TRANSPORT_ERROR

    @pytest.mark.asyncio
    async def test_close_deletes_session(
        self, polling_server: FakePollingServer, polling_transport: LongPollingTransport
    ) -> None:
        await polling_transport.open(HandshakeAuth(token=None), 1.0)

        await polling_transport.close()
        await polling_transport.close()

        assert polling_server.deleted == ["poll-1"]
        assert not polling_transport.connected

    @pytest.mark.asyncio
    async def test_receive_after_close_raises(self, polling_transport: LongPollingTransport) -> None:
        with pytest.raises(TransportClosed):
            await polling_transport.receive()


class TestCreateTransport:
    """Tests for the transport factory."""

    def test_builds_each_transport(self) -> None:
        config = ClientConfig(base_url=BASE)
        assert isinstance(create_transport(TransportName.WEBSOCKET, config), WebSocketTransport)
        assert isinstance(create_transport(TransportName.POLLING, config), LongPollingTransport)

    @pytest.mark.parametrize(
        ("base_url", "expected"),
        [
            ("ws://shop.test:8000", "http://shop.test:8000/realtime/poll"),
            ("wss://shop.test", "https://shop.test/realtime/poll"),
            ("https://shop.test", "https://shop.test/realtime/poll"),
        ],
    )
    def test_polling_uses_http_scheme(self, base_url: str, expected: str) -> None:
        transport = create_transport(TransportName.POLLING, ClientConfig(base_url=base_url))
        assert transport._base == expected
