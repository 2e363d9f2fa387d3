"""Client transports for the realtime bridge.

Defines the Transport protocol the connection manager drives, plus two
implementations tried in preference order:

- WebSocketTransport: persistent streaming connection (websockets)
- LongPollingTransport: HTTP long-polling fallback (httpx)

A transport opens exactly one session, completes the handshake by waiting
for the server's ``session:ready`` frame, and reports loss by raising
TransportClosed. Transports never reconnect on their own.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx
import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from storefront_realtime.config.schema import ClientType, TransportName
from storefront_realtime.domain.model.events import ControlFrame

if TYPE_CHECKING:
    from storefront_realtime.config.schema import ClientConfig

logger = structlog.get_logger(__name__)

# Disconnect reasons reported with the local "disconnect" event
REASON_SERVER_DISCONNECT = "io server disconnect"
REASON_CLIENT_DISCONNECT = "io client disconnect"
REASON_TRANSPORT_CLOSE = "transport close"
REASON_TRANSPORT_ERROR = "transport error"

WS_CLOSE_UNAUTHORIZED = 4001


class TransportError(Exception):
    """Raised when a transport cannot open or complete its handshake."""


class TransportClosed(Exception):
    """Raised when an open transport is lost.

    Attributes:
        reason: Disconnect reason string surfaced to handlers
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class HandshakeAuth:
    """Authentication carried in the handshake."""

    token: str | None
    client_type: ClientType = ClientType.CLIENT

    def as_query(self) -> dict[str, str]:
        query = {"client_type": self.client_type.value}
        if self.token:
            query["token"] = self.token
        return query

    def as_body(self) -> dict[str, Any]:
        return {"token": self.token, "clientType": self.client_type.value}


@dataclass(frozen=True)
class SessionInfo:
    """Session details announced by the server's session:ready frame."""

    sid: str
    client_type: str
    user_id: str | None = None
    poll_timeout_s: float | None = None

    @classmethod
    def from_frame(cls, frame: Any) -> SessionInfo:
        """Parse a session:ready frame.

        Raises:
            TransportError: If the frame is not a session:ready frame
        """
        if isinstance(frame, (str, bytes)):
            try:
                frame = json.loads(frame)
            except json.JSONDecodeError as e:
                raise TransportError(f"Invalid handshake frame: {e}") from e
        if not isinstance(frame, dict) or frame.get("type") != ControlFrame.SESSION_READY.value:
            raise TransportError(f"Expected {ControlFrame.SESSION_READY.value} frame")
        payload = frame.get("payload") or {}
        if not isinstance(payload, dict):
            raise TransportError("Handshake payload must be an object")
        sid = payload.get("sid")
        if not isinstance(sid, str) or not sid:
            raise TransportError("Handshake frame has no session id")
        poll_timeout = payload.get("pollTimeout")
        try:
            poll_timeout_s = float(poll_timeout) if poll_timeout is not None else None
        except (TypeError, ValueError) as e:
            raise TransportError(f"Invalid pollTimeout in handshake: {poll_timeout!r}") from e
        return cls(
            sid=sid,
            client_type=str(payload.get("clientType", ClientType.CLIENT.value)),
            user_id=payload.get("userId"),
            poll_timeout_s=poll_timeout_s,
        )


@runtime_checkable
class Transport(Protocol):
    """Interface for a single bidirectional session with the server."""

    @property
    def name(self) -> TransportName:
        """Transport identifier."""
        ...

    @property
    def connected(self) -> bool:
        """True while the underlying session is open."""
        ...

    @property
    def sid(self) -> str | None:
        """Server-assigned session id, once the handshake completed."""
        ...

    async def open(self, auth: HandshakeAuth, timeout: float) -> SessionInfo:
        """Open the session and complete the handshake.

        Raises:
            TransportError: On connect failure, rejection or timeout
        """
        ...

    async def send(self, frame: str) -> None:
        """Write one JSON frame.

        Raises:
            TransportClosed: If the session is gone
        """
        ...

    async def receive(self) -> str | dict[str, Any]:
        """Wait for the next frame.

        Raises:
            TransportClosed: If the session is gone
        """
        ...

    async def close(self) -> None:
        """Close the session. Safe to call more than once."""
        ...


def _join(base_url: str, path: str, suffix: str) -> str:
    return f"{base_url.rstrip('/')}{path}{suffix}"


class WebSocketTransport:
    """Streaming transport over a WebSocket connection."""

    def __init__(self, base_url: str, path: str = "/realtime") -> None:
        parts = urlsplit(base_url)
        scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
        self._url = _join(urlunsplit((scheme, parts.netloc, parts.path, "", "")), path, "/ws")
        self._ws: ClientConnection | None = None
        self._sid: str | None = None

    @property
    def name(self) -> TransportName:
        return TransportName.WEBSOCKET

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    @property
    def sid(self) -> str | None:
        return self._sid

    async def open(self, auth: HandshakeAuth, timeout: float) -> SessionInfo:
        url = f"{self._url}?{urlencode(auth.as_query())}"
        try:
            info = await asyncio.wait_for(self._handshake(url), timeout=timeout)
        except TimeoutError as e:
            await self.close()
            raise TransportError(f"Handshake timed out after {timeout}s") from e
        except ConnectionClosed as e:
            await self.close()
            reason = e.rcvd.reason if e.rcvd is not None else ""
            raise TransportError(f"Handshake rejected: {reason or 'connection closed'}") from e
        except (OSError, WebSocketException) as e:
            await self.close()
            raise TransportError(f"WebSocket connect failed: {e}") from e
        except TransportError:
            await self.close()
            raise

        self._sid = info.sid
        return info

    async def _handshake(self, url: str) -> SessionInfo:
        self._ws = await connect(url, open_timeout=None)
        return SessionInfo.from_frame(await self._ws.recv())

    async def send(self, frame: str) -> None:
        if self._ws is None:
            raise TransportClosed(REASON_TRANSPORT_CLOSE)
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            raise TransportClosed(self._reason(e)) from e

    async def receive(self) -> str | dict[str, Any]:
        if self._ws is None:
            raise TransportClosed(REASON_TRANSPORT_CLOSE)
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportClosed(self._reason(e)) from e
        return raw if isinstance(raw, str) else raw.decode("utf-8", errors="replace")

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(OSError, WebSocketException):
                await ws.close()

    @staticmethod
    def _reason(exc: ConnectionClosed) -> str:
        # Normal closure and application codes mean the server chose to drop us;
        # going-away / restart codes are treated as a lost transport
        if exc.rcvd is not None and (exc.rcvd.code == 1000 or exc.rcvd.code >= 4000):
            return REASON_SERVER_DISCONNECT
        return REASON_TRANSPORT_CLOSE


class LongPollingTransport:
    """Fallback transport: frames are fetched with repeated long-poll requests."""

    def __init__(
        self,
        base_url: str,
        path: str = "/realtime",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        parts = urlsplit(base_url)
        scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
        self._base = _join(urlunsplit((scheme, parts.netloc, parts.path, "", "")), path, "/poll")
        self._client = client
        self._owns_client = client is None
        self._sid: str | None = None
        self._poll_timeout_s = 25.0
        self._buffer: deque[dict[str, Any]] = deque()

    @property
    def name(self) -> TransportName:
        return TransportName.POLLING

    @property
    def connected(self) -> bool:
        return self._sid is not None

    @property
    def sid(self) -> str | None:
        return self._sid

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def open(self, auth: HandshakeAuth, timeout: float) -> SessionInfo:
        try:
            info = await self._handshake(auth, timeout)
        except TransportError:
            await self.close()
            raise

        self._sid = info.sid
        if info.poll_timeout_s:
            self._poll_timeout_s = info.poll_timeout_s
        return info

    async def _handshake(self, auth: HandshakeAuth, timeout: float) -> SessionInfo:
        try:
            response = await self._http().post(
                f"{self._base}/handshake",
                json=auth.as_body(),
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Handshake timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Polling handshake failed: {e}") from e

        if response.status_code in (401, 403):
            raise TransportError(f"Handshake rejected: {self._detail(response)}")
        if response.is_error:
            raise TransportError(f"Polling handshake failed with HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError("Polling handshake response is not JSON") from e
        return SessionInfo.from_frame(body)

    async def send(self, frame: str) -> None:
        if self._sid is None:
            raise TransportClosed(REASON_TRANSPORT_CLOSE)
        try:
            response = await self._http().post(
                f"{self._base}/{self._sid}",
                content=f"[{frame}]",
                headers={"content-type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TransportClosed(REASON_TRANSPORT_ERROR) from e
        self._check_session(response)

    async def receive(self) -> str | dict[str, Any]:
        while not self._buffer:
            if self._sid is None:
                raise TransportClosed(REASON_TRANSPORT_CLOSE)
            try:
                response = await self._http().get(
                    f"{self._base}/{self._sid}",
                    timeout=httpx.Timeout(10.0, read=self._poll_timeout_s + 10.0),
                )
            except httpx.HTTPError as e:
                self._sid = None
                raise TransportClosed(REASON_TRANSPORT_ERROR) from e
            self._check_session(response)
            frames = response.json()
            if isinstance(frames, list):
                self._buffer.extend(f for f in frames if isinstance(f, dict))
        return self._buffer.popleft()

    async def close(self) -> None:
        sid, self._sid = self._sid, None
        self._buffer.clear()
        if sid is not None and self._client is not None:
            with contextlib.suppress(httpx.HTTPError):
                await self._client.delete(f"{self._base}/{sid}")
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _check_session(self, response: httpx.Response) -> None:
        if response.status_code in (404, 410):
            self._sid = None
            raise TransportClosed(REASON_SERVER_DISCONNECT)
        if response.is_error:
            self._sid = None
            raise TransportClosed(REASON_TRANSPORT_ERROR)

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            return str(response.json().get("detail", response.reason_phrase))
        except (ValueError, AttributeError):
            return response.reason_phrase


def create_transport(name: TransportName, config: ClientConfig) -> Transport:
    """Factory function to create a transport from client configuration.

    Raises:
        ValueError: If the transport name is not supported
    """
    if name == TransportName.WEBSOCKET:
        return WebSocketTransport(config.base_url, config.path)
    elif name == TransportName.POLLING:
        return LongPollingTransport(config.base_url, config.path)
    else:
        raise ValueError(f"Unsupported transport: {name}")
