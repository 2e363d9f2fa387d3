from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest
from fakes import MemoryStorage, TransportFactory

from storefront_realtime.config.schema import ClientConfig, ReconnectionConfig, TransportName


_HERE = Path(__file__).parent


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if item.path.is_relative_to(_HERE):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def transport_factory() -> TransportFactory:
    return TransportFactory()


@pytest.fixture
def client_config() -> ClientConfig:
    """Single-transport config with fast, deterministic reconnection."""
    return ClientConfig(
        transports=[TransportName.WEBSOCKET],
        timeout_s=1.0,
        reconnection=ReconnectionConfig(delay_s=0.01, delay_max_s=0.05, max_attempts=3, jitter=0.0),
    )


@pytest.fixture
def wait_for() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds or the timeout expires."""

    async def _wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_for
