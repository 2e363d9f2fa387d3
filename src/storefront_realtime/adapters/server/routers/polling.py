"""Long-polling endpoints router.

Fallback transport for clients that cannot hold a WebSocket open.
A session is created by the handshake, frames are collected with
repeated GET requests and client frames are posted in batches.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, HTTPException, Response, status

from storefront_realtime.adapters.server.dependencies import HubDep, InboundRouterDep, TokenServiceDep
from storefront_realtime.adapters.server.hub import PollingSink, Session
from storefront_realtime.adapters.server.schemas import HandshakeRequest, PollAcceptedResponse
from storefront_realtime.adapters.server.security.jwt import AuthenticationError
from storefront_realtime.config.schema import TransportName
from storefront_realtime.observability.logging import session_context

logger = structlog.get_logger(__name__)

router = APIRouter()


def _polling_session(hub: HubDep, sid: str) -> tuple[Session, PollingSink]:
    session = hub.get(sid)
    if session is None or not isinstance(session.sink, PollingSink):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session, session.sink


@router.post("/handshake")
async def handshake(
    request: HandshakeRequest,
    hub: HubDep,
    token_service: TokenServiceDep,
) -> dict[str, Any]:
    """Open a polling session.

    Returns the session:ready frame. Admin sessions without a valid
    admin token are rejected with 401.
    """
    try:
        identity = token_service.authenticate(request.token, request.client_type)
    except AuthenticationError as e:
        logger.warning("Polling auth failed", client_type=request.client_type.value, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    sink = PollingSink()
    session = await hub.register(sink, identity, TransportName.POLLING)
    return sink.handshake or hub.ready_frame(session)


@router.get("/{sid}")
async def poll(sid: str, hub: HubDep) -> list[dict[str, Any]]:
    """Long-poll for frames.

    Holds the request until at least one frame is available or the poll
    timeout elapses. Returns 404 once the session is gone.
    """
    session, sink = _polling_session(hub, sid)
    session.touch()
    frames = await sink.drain(timeout=hub.poll_timeout_s)
    session.touch()

    if not frames and sink.closed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session closed")
    return frames


@router.post("/{sid}", response_model=PollAcceptedResponse)
async def post_frames(
    sid: str,
    hub: HubDep,
    inbound: InboundRouterDep,
    frames: list[Any] = Body(...),
) -> PollAcceptedResponse:
    """Deliver a batch of client frames."""
    session, _ = _polling_session(hub, sid)
    with session_context(sid, session.client_type.value, session.user_id):
        for frame in frames:
            await inbound.handle(session, frame)
    return PollAcceptedResponse(accepted=len(frames))


@router.delete("/{sid}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(sid: str, hub: HubDep) -> Response:
    """Close a polling session. Unknown sessions are ignored."""
    await hub.unregister(sid, reason="client disconnect", close=True)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
