"""Realtime session hub.

Registry of connected admin and client sessions across both transports,
with audience-based fan-out. Delivery is best-effort: a frame is offered
to every member of the audience connected at call time, sessions whose
sink fails are unregistered, and nothing is replayed to late joiners.
"""

from __future__ import annotations

import asyncio
import contextlib
import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from storefront_realtime.config.schema import ClientType, TransportName
from storefront_realtime.domain.model.events import ControlFrame, Envelope, EventKind, to_jsonable

if TYPE_CHECKING:
    from storefront_realtime.adapters.server.security.jwt import SessionIdentity

logger = structlog.get_logger(__name__)

ADMIN_ROOM = "admin_room"
CLIENT_ROOM = "client_room"

WS_CLOSE_NORMAL = 1000
WS_CLOSE_SERVICE_RESTART = 1012


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


class AudienceKind(str, Enum):
    """Target set of a broadcast."""

    ALL_ADMINS = "all_admins"
    ALL_USERS = "all_users"
    USER = "user"
    ROOM = "room"


@dataclass(frozen=True)
class Audience:
    """Broadcast target: every admin, every client, one user, or one room."""

    kind: AudienceKind
    target: str | None = None

    @classmethod
    def all_admins(cls) -> Audience:
        return cls(AudienceKind.ALL_ADMINS)

    @classmethod
    def all_users(cls) -> Audience:
        return cls(AudienceKind.ALL_USERS)

    @classmethod
    def user(cls, user_id: str) -> Audience:
        return cls(AudienceKind.USER, str(user_id))

    @classmethod
    def room(cls, name: str) -> Audience:
        return cls(AudienceKind.ROOM, name)

    def __str__(self) -> str:
        if self.target is None:
            return self.kind.value
        return f"{self.kind.value}:{self.target}"


class SinkClosedError(Exception):
    """Raised when writing to a session sink that can no longer deliver."""


class SessionSink(Protocol):
    """Outbound side of one session, independent of transport."""

    async def open(self, ready: dict[str, Any]) -> None:
        """Deliver the session:ready frame that completes the handshake."""
        ...

    async def send(self, frame: dict[str, Any]) -> None:
        """Deliver one frame."""
        ...

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        """Close the session from the server side."""
        ...


class WebSocketSink:
    """Sink writing JSON frames to an accepted FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def open(self, ready: dict[str, Any]) -> None:
        await self._websocket.send_json(ready)

    async def send(self, frame: dict[str, Any]) -> None:
        try:
            await self._websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError) as e:
            raise SinkClosedError(str(e)) from e

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


class PollingSink:
    """Sink buffering frames until the client's next long-poll request."""

    def __init__(self, max_pending: int = 1000) -> None:
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._max_pending = max_pending
        self._closed = False
        self.handshake: dict[str, Any] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def open(self, ready: dict[str, Any]) -> None:
        # Returned as the handshake response body rather than queued
        self.handshake = ready

    async def send(self, frame: dict[str, Any]) -> None:
        if self._closed:
            raise SinkClosedError("Polling session closed")
        if self._queue.qsize() >= self._max_pending:
            raise SinkClosedError("Polling buffer overflow")
        self._queue.put_nowait(frame)

    async def drain(self, timeout: float) -> list[dict[str, Any]]:
        """Wait up to ``timeout`` for frames, then return everything buffered."""
        frames: list[dict[str, Any]] = []
        if self._queue.empty() and not self._closed:
            try:
                first = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except TimeoutError:
                return frames
            if first is not None:
                frames.append(first)

        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not None:
                frames.append(item)
        return frames

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        if not self._closed:
            self._closed = True
            # Wake a pending long-poll
            self._queue.put_nowait(None)


@dataclass
class Session:
    """A registered connection and its identity."""

    sid: str
    identity: SessionIdentity
    sink: SessionSink
    transport: TransportName
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_seen: float = field(default_factory=time.monotonic)

    @property
    def client_type(self) -> ClientType:
        return self.identity.client_type

    @property
    def is_admin(self) -> bool:
        return self.identity.client_type == ClientType.ADMIN

    @property
    def user_id(self) -> str | None:
        return self.identity.user_id

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def describe(self) -> dict[str, Any]:
        return {
            "sid": self.sid,
            "clientType": self.client_type.value,
            "userId": self.user_id,
            "transport": self.transport.value,
            "rooms": sorted(self.rooms),
            "connectedAt": self.connected_at.isoformat(),
        }


class RealtimeHub:
    """Registry and broadcast router for realtime sessions.

    Handles:
    - Session lifecycle (register, unregister, idle expiry of polling sessions)
    - Rooms (admin, client, per-user and opt-in notification rooms)
    - Audience fan-out with removal of failed sessions
    - Admin presence announcements to clients
    """

    def __init__(self, poll_timeout_s: float = 25.0, idle_timeout_s: float = 60.0) -> None:
        """Initialize the hub.

        Args:
            poll_timeout_s: Long-poll hold time announced to polling clients
            idle_timeout_s: Polling sessions silent for longer are dropped
        """
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._poll_timeout_s = poll_timeout_s
        self._idle_timeout_s = idle_timeout_s
        self._started_at = time.monotonic()
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    @property
    def poll_timeout_s(self) -> float:
        return self._poll_timeout_s

    @property
    def uptime_s(self) -> float:
        return time.monotonic() - self._started_at

    async def start(self) -> None:
        """Start the idle-session sweeper."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="realtime-hub-sweeper")
            logger.info("Realtime hub started", idle_timeout_s=self._idle_timeout_s)

    async def stop(self) -> None:
        """Stop the sweeper and close every session."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            await session.sink.close(code=WS_CLOSE_SERVICE_RESTART, reason="Server shutting down")

        logger.info("Realtime hub stopped", closed_sessions=len(sessions))

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def ready_frame(self, session: Session) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sid": session.sid,
            "clientType": session.client_type.value,
            "userId": session.user_id,
        }
        if session.transport == TransportName.POLLING:
            payload["pollTimeout"] = self._poll_timeout_s
        return {"type": ControlFrame.SESSION_READY.value, "payload": payload}

    async def register(
        self,
        sink: SessionSink,
        identity: SessionIdentity,
        transport: TransportName,
    ) -> Session:
        """Register a new session and complete its handshake.

        The session:ready frame is delivered before the session becomes
        visible to broadcasts, so it is always the first frame a client sees.
        """
        session = Session(
            sid=secrets.token_urlsafe(16),
            identity=identity,
            sink=sink,
            transport=transport,
        )
        if session.is_admin:
            session.rooms.add(ADMIN_ROOM)
        else:
            session.rooms.add(CLIENT_ROOM)
            if session.user_id:
                session.rooms.add(user_room(session.user_id))

        await sink.open(self.ready_frame(session))

        async with self._lock:
            self._sessions[session.sid] = session

        logger.info(
            "Session connected",
            sid=session.sid,
            client_type=session.client_type.value,
            user_id=session.user_id,
            transport=transport.value,
        )

        if session.is_admin:
            await self.broadcast(
                Envelope.create(EventKind.ADMIN_CONNECTED, {"adminId": session.sid}),
                Audience.all_users(),
            )

        return session

    async def unregister(
        self,
        sid: str,
        reason: str = "transport close",
        *,
        close: bool = False,
    ) -> Session | None:
        """Remove a session.

        Args:
            sid: Session to remove
            reason: Logged disconnect reason
            close: Also close the sink from the server side

        Returns:
            The removed session, or None if it was not registered
        """
        async with self._lock:
            session = self._sessions.pop(sid, None)

        if session is None:
            return None

        logger.info(
            "Session disconnected",
            sid=sid,
            client_type=session.client_type.value,
            user_id=session.user_id,
            reason=reason,
        )

        if close:
            await session.sink.close(code=WS_CLOSE_NORMAL, reason=reason)

        if session.is_admin:
            await self.broadcast(
                Envelope.create(EventKind.ADMIN_DISCONNECTED, {"adminId": sid}),
                Audience.all_users(),
            )

        return session

    def get(self, sid: str) -> Session | None:
        return self._sessions.get(sid)

    def sessions(self, client_type: ClientType | None = None) -> list[Session]:
        return [
            s for s in self._sessions.values() if client_type is None or s.client_type == client_type
        ]

    async def join(self, sid: str, room: str) -> bool:
        """Add a session to a room."""
        async with self._lock:
            session = self._sessions.get(sid)
            if session is None:
                return False
            session.rooms.add(room)

        logger.debug("Session joined room", sid=sid, room=room)
        return True

    async def leave(self, sid: str, room: str) -> bool:
        """Remove a session from a room."""
        async with self._lock:
            session = self._sessions.get(sid)
            if session is None or room not in session.rooms:
                return False
            session.rooms.discard(room)
            return True

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def _is_member(self, session: Session, audience: Audience) -> bool:
        if audience.kind == AudienceKind.ALL_ADMINS:
            return session.is_admin
        if audience.kind == AudienceKind.ALL_USERS:
            return not session.is_admin
        if audience.kind == AudienceKind.USER:
            return not session.is_admin and session.user_id == audience.target
        return audience.target in session.rooms

    async def send(self, sid: str, envelope: Envelope) -> bool:
        """Send an envelope to one session.

        Returns:
            True if the frame was handed to the session's sink
        """
        session = self._sessions.get(sid)
        if session is None:
            return False

        try:
            await session.sink.send(self._frame(envelope))
            return True
        except Exception as e:
            logger.warning("Failed to send to session", sid=sid, event_type=envelope.type, error=str(e))
            await self.unregister(sid, reason="send failed", close=True)
            return False

    async def broadcast(
        self,
        envelope: Envelope,
        audience: Audience,
        exclude_sid: str | None = None,
    ) -> int:
        """Broadcast an envelope to every connected member of an audience.

        Args:
            envelope: Envelope to deliver
            audience: Target audience
            exclude_sid: Optional session to skip

        Returns:
            Number of sessions that received the frame
        """
        frame = self._frame(envelope)
        sent_count = 0
        failed_sessions: list[str] = []

        async with self._lock:
            for sid, session in self._sessions.items():
                if sid == exclude_sid or not self._is_member(session, audience):
                    continue
                try:
                    await session.sink.send(frame)
                    sent_count += 1
                except Exception as e:
                    logger.warning("Failed to send to session", sid=sid, error=str(e))
                    failed_sessions.append(sid)

        # Clean up failed sessions outside the lock
        for sid in failed_sessions:
            await self.unregister(sid, reason="send failed", close=True)

        logger.debug(
            "Broadcast",
            event_type=envelope.type,
            audience=str(audience),
            delivered=sent_count,
        )
        return sent_count

    async def send_to_user(self, user_id: str, envelope: Envelope) -> int:
        """Send an envelope to every client session of one user."""
        return await self.broadcast(envelope, Audience.user(user_id))

    @staticmethod
    def _frame(envelope: Envelope) -> dict[str, Any]:
        return {"type": envelope.type, "payload": to_jsonable(envelope.payload)}

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def rooms(self) -> list[str]:
        names: set[str] = set()
        for session in self._sessions.values():
            names.update(session.rooms)
        return sorted(names)

    def stats(self) -> dict[str, Any]:
        """Connection statistics for monitoring endpoints."""
        admins = self.sessions(ClientType.ADMIN)
        clients = self.sessions(ClientType.CLIENT)
        return {
            "totalConnections": len(admins) + len(clients),
            "adminConnections": len(admins),
            "clientConnections": len(clients),
            "authenticatedUsers": len({s.user_id for s in clients if s.user_id}),
            "rooms": self.rooms(),
            "uptime": round(self.uptime_s, 3),
        }

    async def sweep_idle(self) -> int:
        """Drop polling sessions that stopped polling.

        Returns:
            Number of sessions removed
        """
        now = time.monotonic()
        expired = [
            s.sid
            for s in list(self._sessions.values())
            if s.transport == TransportName.POLLING and now - s.last_seen > self._idle_timeout_s
        ]
        for sid in expired:
            await self.unregister(sid, reason="idle timeout", close=True)
        return len(expired)

    async def _sweep_loop(self) -> None:
        interval = max(self._idle_timeout_s / 2, 1.0)
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await self.sweep_idle()
                if removed:
                    logger.info("Expired idle polling sessions", count=removed)
            except Exception:
                logger.exception("Idle session sweep failed")
