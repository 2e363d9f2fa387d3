"""Main entry point for the realtime server runtime."""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

import structlog

from storefront_realtime.adapters.server.server import RealtimeServer
from storefront_realtime.config.loader import load_config
from storefront_realtime.observability.logging import setup_logging

if TYPE_CHECKING:
    from pathlib import Path

    from storefront_realtime.config.schema import RealtimeConfig

logger = structlog.get_logger(__name__)


class RealtimeRuntime:
    """Runtime orchestrator for the realtime server.

    Coordinates the lifecycle of the uvicorn-hosted application and
    waits for a shutdown request.
    """

    def __init__(self, config: RealtimeConfig) -> None:
        self.config = config
        self._shutdown_event = asyncio.Event()
        self._server: RealtimeServer | None = None

    async def start(self) -> None:
        """Start the realtime runtime."""
        logger.info(
            "Starting storefront realtime",
            host=self.config.server.host,
            port=self.config.server.port,
            path=self.config.server.path,
        )
        self._server = RealtimeServer(self.config.server)
        await self._server.start()

    async def stop(self) -> None:
        """Stop the realtime runtime gracefully."""
        logger.info("Stopping storefront realtime")
        if self._server:
            await self._server.stop()
            self._server = None
        logger.info("Storefront realtime stopped")

    async def run_until_shutdown(self) -> None:
        """Run until shutdown signal received."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


async def run_server(config_path: Path | None = None, override_path: Path | None = None) -> None:
    """Main entry point for running the realtime server."""
    config = load_config(config_path, override_path=override_path)
    setup_logging(config.logging.level, config.logging.format.value, role="server")

    runtime = RealtimeRuntime(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runtime.request_shutdown)

    try:
        await runtime.start()
        await runtime.run_until_shutdown()
    finally:
        await runtime.stop()


def main() -> None:
    """CLI entry point - delegates to typer app."""
    from storefront_realtime.cli.app import app  # noqa: PLC0415

    app()


if __name__ == "__main__":
    main()
