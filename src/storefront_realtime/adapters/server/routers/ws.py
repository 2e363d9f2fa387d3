"""WebSocket endpoint router.

Provides the streaming transport for realtime sessions.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from storefront_realtime.adapters.server.hub import RealtimeHub, WebSocketSink
from storefront_realtime.adapters.server.inbound import ClientEventRouter
from storefront_realtime.adapters.server.security.jwt import AuthenticationError, TokenService
from storefront_realtime.config.schema import ClientType, TransportName
from storefront_realtime.observability.logging import session_context

logger = structlog.get_logger(__name__)

router = APIRouter()

WS_CLOSE_UNAUTHORIZED = 4001


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str | None = Query(default=None, description="JWT access token"),
    client_type: ClientType = Query(default=ClientType.CLIENT, description="client or admin"),
) -> None:
    """WebSocket endpoint for realtime sessions.

    Connect with the token and client type as query parameters:
    ws://host:port/realtime/ws?token=<jwt>&client_type=client

    The first frame sent by the server is always
    {"type": "session:ready", "payload": {"sid": "...", "clientType": "...", "userId": ...}}.
    Afterwards both sides exchange {"type": "<domain>:<action>", "payload": {...}} frames.
    """
    hub: RealtimeHub = websocket.app.state.hub
    inbound: ClientEventRouter = websocket.app.state.inbound
    token_service: TokenService = websocket.app.state.token_service

    try:
        identity = token_service.authenticate(token, client_type)
    except AuthenticationError as e:
        logger.warning("WebSocket auth failed", client_type=client_type.value, error=str(e))
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason=str(e))
        return

    await websocket.accept()
    session = await hub.register(WebSocketSink(websocket), identity, TransportName.WEBSOCKET)
    reason = "transport close"

    with session_context(session.sid, session.client_type.value, session.user_id):
        try:
            while True:
                data = await websocket.receive_text()
                await inbound.handle(session, data)

        except WebSocketDisconnect:
            reason = "client disconnect"

        except Exception:
            logger.exception("WebSocket error")
            reason = "transport error"

        finally:
            await hub.unregister(session.sid, reason=reason)
