"""Test doubles for storage, transports and server session sinks."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from storefront_realtime.adapters.client.transport import (
    REASON_TRANSPORT_CLOSE,
    HandshakeAuth,
    SessionInfo,
    TransportClosed,
    TransportError,
)
from storefront_realtime.adapters.persistence.storage import StorageError
from storefront_realtime.adapters.server.hub import SinkClosedError
from storefront_realtime.config.schema import TransportName


class MemoryStorage:
    """In-memory StoragePort with switchable failures."""

    def __init__(self) -> None:
        self.items: dict[str, str] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    async def get_item(self, key: str) -> str | None:
        if self.fail_reads:
            raise StorageError("read failed")
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise StorageError("write failed")
        self.writes += 1
        self.items[key] = value

    async def remove_item(self, key: str) -> None:
        if self.fail_writes:
            raise StorageError("write failed")
        self.items.pop(key, None)


class FakeTransport:
    """Scriptable transport: frames and disconnects are pushed by the test."""

    def __init__(
        self,
        name: TransportName = TransportName.WEBSOCKET,
        *,
        fail: Exception | None = None,
        sid: str = "sid-1",
        user_id: str | None = None,
    ) -> None:
        self._name = name
        self._fail = fail
        self._sid_value = sid
        self._user_id = user_id
        self._connected = False
        self.auth: HandshakeAuth | None = None
        self.sent: list[dict[str, Any]] = []
        self.incoming: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    @property
    def name(self) -> TransportName:
        return self._name

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def sid(self) -> str | None:
        return self._sid_value if self._connected else None

    async def open(self, auth: HandshakeAuth, timeout: float) -> SessionInfo:
        self.auth = auth
        if self._fail is not None:
            raise self._fail
        self._connected = True
        return SessionInfo(sid=self._sid_value, client_type=auth.client_type.value, user_id=self._user_id)

    async def send(self, frame: str) -> None:
        if not self._connected:
            raise TransportClosed(REASON_TRANSPORT_CLOSE)
        self.sent.append(json.loads(frame))

    async def receive(self) -> str | dict[str, Any]:
        item = await self.incoming.get()
        if isinstance(item, TransportClosed):
            self._connected = False
            raise item
        return item

    async def close(self) -> None:
        self._connected = False
        self.closed = True

    def push(self, type_: str, payload: dict[str, Any] | None = None) -> None:
        self.incoming.put_nowait({"type": type_, "payload": payload or {}})

    def push_raw(self, raw: Any) -> None:
        self.incoming.put_nowait(raw)

    def drop(self, reason: str = REASON_TRANSPORT_CLOSE) -> None:
        self.incoming.put_nowait(TransportClosed(reason))


class TransportFactory:
    """Hands out scripted transports in order, then healthy defaults."""

    def __init__(self) -> None:
        self.scripted: list[FakeTransport] = []
        self.created: list[FakeTransport] = []

    def __call__(self, name: TransportName) -> FakeTransport:
        if self.scripted:
            transport = self.scripted.pop(0)
        else:
            transport = FakeTransport(name, sid=f"sid-{len(self.created) + 1}")
        self.created.append(transport)
        return transport

    def fail_next(self, count: int = 1, name: TransportName = TransportName.WEBSOCKET) -> None:
        for _ in range(count):
            self.scripted.append(FakeTransport(name, fail=TransportError("Handshake rejected: refused")))

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class RecordingSink:
    """Server-side SessionSink that records frames in memory."""

    def __init__(self, *, fail: bool = False) -> None:
        self.ready: dict[str, Any] | None = None
        self.frames: list[dict[str, Any]] = []
        self.closed_with: tuple[int, str] | None = None
        self.fail = fail

    async def open(self, ready: dict[str, Any]) -> None:
        self.ready = ready

    async def send(self, frame: dict[str, Any]) -> None:
        if self.fail:
            raise SinkClosedError("peer gone")
        self.frames.append(frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.frames]
