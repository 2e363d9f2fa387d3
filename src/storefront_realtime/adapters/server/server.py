"""FastAPI realtime server.

Hosts both transports (WebSocket and long-polling) and the monitoring
endpoints, and owns the hub, publisher and inbound router that back them.
"""

from __future__ import annotations

import asyncio
import contextlib
import secrets
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront_realtime import __version__
from storefront_realtime.adapters.server.hub import RealtimeHub
from storefront_realtime.adapters.server.inbound import ClientEventRouter
from storefront_realtime.adapters.server.publisher import DomainEventPublisher
from storefront_realtime.adapters.server.routers import monitor, polling, ws
from storefront_realtime.adapters.server.security.jwt import TokenService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from storefront_realtime.config.schema import ServerConfig

logger = structlog.get_logger(__name__)


def create_token_service(config: ServerConfig) -> TokenService:
    """Create the JWT token service from config."""
    secret = config.jwt_secret
    if not secret:
        logger.warning(
            "No JWT secret configured. Using ephemeral secret; tokens will reset on restart."
        )
        secret = secrets.token_urlsafe(32)

    return TokenService(
        secret=secret,
        algorithm=config.jwt_algorithm,
        expiry_minutes=config.jwt_expiry_minutes,
    )


def create_app(
    config: ServerConfig,
    token_service: TokenService | None = None,
    hub: RealtimeHub | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration
        token_service: Token service; built from config when omitted
        hub: Session hub; a new one is created when omitted

    Returns:
        Application with hub, publisher, inbound router and token service
        stored on ``app.state``
    """
    hub = hub or RealtimeHub(
        poll_timeout_s=config.poll_timeout_s,
        idle_timeout_s=config.session_idle_timeout_s,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application lifecycle."""
        logger.info("Realtime application starting", path=config.path)
        await hub.start()
        yield
        await hub.stop()
        logger.info("Realtime application shutting down")

    app = FastAPI(
        title="Storefront Realtime",
        description="Realtime event fan-out for storefront clients and admin dashboards",
        version=__version__,
        lifespan=lifespan,
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Store dependencies for injection
    app.state.server_config = config
    app.state.token_service = token_service or create_token_service(config)
    app.state.hub = hub
    app.state.publisher = DomainEventPublisher(hub)
    app.state.inbound = ClientEventRouter(hub)

    app.include_router(ws.router, prefix=config.path, tags=["websocket"])
    app.include_router(polling.router, prefix=f"{config.path}/poll", tags=["polling"])
    app.include_router(monitor.router, prefix=config.path, tags=["monitoring"])

    return app


class RealtimeServer:
    """Runs the realtime application under uvicorn inside an existing event loop."""

    def __init__(self, config: ServerConfig, token_service: TokenService | None = None) -> None:
        self._config = config
        self._token_service = token_service or create_token_service(config)
        self._app: FastAPI | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._running = False

    async def start(self) -> None:
        """Start serving in the background."""
        if self._running:
            return

        logger.info("Starting realtime server", host=self._config.host, port=self._config.port)

        self._app = create_app(self._config, token_service=self._token_service)
        uvicorn_config = uvicorn.Config(
            app=self._app,
            host=self._config.host,
            port=self._config.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(uvicorn_config)
        self._serve_task = asyncio.create_task(self._server.serve())
        self._running = True

        logger.info(
            "Realtime server started",
            host=self._config.host,
            port=self._config.port,
            ws_url=f"ws://{self._config.host}:{self._config.port}{self._config.path}/ws",
        )

    async def stop(self) -> None:
        """Stop the server, closing every session."""
        if not self._running:
            return

        logger.info("Stopping realtime server")

        if self._server:
            self._server.should_exit = True

        if self._serve_task:
            try:
                await asyncio.wait_for(self._serve_task, timeout=5.0)
            except TimeoutError:
                self._serve_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._serve_task

        self._server = None
        self._serve_task = None
        self._running = False

        logger.info("Realtime server stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def app(self) -> FastAPI | None:
        return self._app

    @property
    def token_service(self) -> TokenService:
        return self._token_service
