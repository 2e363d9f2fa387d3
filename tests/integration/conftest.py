"""Integration fixtures: client connection managers against the in-process server.

The server app is mounted on an httpx ASGI transport, so the long-polling
client path runs end to end without opening sockets.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI

from storefront_realtime.adapters.client.manager import ConnectionManager
from storefront_realtime.adapters.client.transport import LongPollingTransport
from storefront_realtime.adapters.persistence.storage import ClientStorage
from storefront_realtime.adapters.server.server import create_app
from storefront_realtime.config.schema import (
    ClientConfig,
    ClientType,
    ReconnectionConfig,
    ServerConfig,
    TransportName,
)

SECRET = "integration-secret-that-is-at-least-32-characters"
BASE_URL = "http://testserver"

_HERE = Path(__file__).parent


# Auto-mark all tests in this package as integration tests
def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if item.path.is_relative_to(_HERE):
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def app() -> FastAPI:
    return create_app(
        ServerConfig(
            jwt_secret=SECRET,
            cors_origins=[],
            poll_timeout_s=0.2,
            session_idle_timeout_s=5.0,
        )
    )


@pytest.fixture
async def http_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL) as client:
        yield client


ManagerFactory = Callable[..., Awaitable[ConnectionManager]]


@pytest.fixture
async def make_manager(http_client: httpx.AsyncClient) -> AsyncIterator[ManagerFactory]:
    """Build polling connection managers with in-memory storage; all are closed on teardown."""
    created: list[tuple[ConnectionManager, ClientStorage]] = []

    async def _make(
        client_type: ClientType = ClientType.CLIENT,
        *,
        reconnect: bool = True,
    ) -> ConnectionManager:
        config = ClientConfig(
            base_url=BASE_URL,
            client_type=client_type,
            transports=[TransportName.POLLING],
            timeout_s=2.0,
            reconnection=ReconnectionConfig(
                enabled=reconnect,
                delay_s=0.01,
                delay_max_s=0.05,
                max_attempts=2,
                jitter=0.0,
            ),
        )
        storage = ClientStorage(":memory:")
        await storage.initialize()
        manager = ConnectionManager(
            config,
            storage,
            transport_factory=lambda _name: LongPollingTransport(
                config.base_url, config.path, client=http_client
            ),
        )
        created.append((manager, storage))
        return manager

    yield _make

    for manager, storage in created:
        await manager.aclose()
        await storage.close()


@pytest.fixture
def wait_for() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds or the timeout expires."""

    async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait_for
