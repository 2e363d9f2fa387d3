"""Monitoring and administration endpoints.

Provides health and statistics for the realtime layer, plus admin
operations: broadcast to every client and publish a domain mutation.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, HTTPException, status

from storefront_realtime.adapters.server.dependencies import (
    AdminDep,
    HubDep,
    InboundRouterDep,
    PublisherDep,
)
from storefront_realtime.adapters.server.hub import Audience
from storefront_realtime.adapters.server.schemas import (
    ApiResponse,
    BroadcastRequest,
    HealthResponse,
    PublishRequest,
)
from storefront_realtime.domain.model.events import Envelope, EventKind

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(hub: HubDep) -> HealthResponse:
    """Check realtime layer health. Use for load balancer health checks."""
    stats = hub.stats()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC).isoformat(),
        uptime=stats["uptime"],
        connections={
            "total": stats["totalConnections"],
            "admins": stats["adminConnections"],
            "clients": stats["clientConnections"],
            "rooms": stats["rooms"],
        },
    )


@router.get("/stats", response_model=ApiResponse)
async def get_stats(hub: HubDep, inbound: InboundRouterDep, _admin: AdminDep) -> ApiResponse:
    """Detailed connection and analytics statistics (admin only)."""
    summary = inbound.analytics_summary()
    return ApiResponse(
        message="Realtime statistics",
        data={
            "connections": hub.stats(),
            "analytics": {
                "totalEvents": sum(item["count"] for item in summary),
                "eventSummary": summary,
            },
        },
    )


@router.get("/clients", response_model=ApiResponse)
async def list_clients(hub: HubDep, _admin: AdminDep) -> ApiResponse:
    """Connected sessions (admin only)."""
    stats = hub.stats()
    return ApiResponse(
        message="Connected clients",
        data={
            "totalClients": stats["clientConnections"],
            "totalAdmins": stats["adminConnections"],
            "rooms": stats["rooms"],
            "sessions": [session.describe() for session in hub.sessions()],
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )


@router.post("/admin/broadcast", response_model=ApiResponse)
async def admin_broadcast(request: BroadcastRequest, hub: HubDep, admin: AdminDep) -> ApiResponse:
    """Broadcast an admin notification to every connected client (admin only)."""
    if not request.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

    notification = {
        "message": request.message,
        "type": request.type,
        "timestamp": datetime.now(UTC).isoformat(),
        "from": f"Admin ({admin.email or admin.sub})",
    }
    delivered = await hub.broadcast(
        Envelope.create(EventKind.ADMIN_NOTIFICATION, notification),
        Audience.all_users(),
    )
    logger.info("Admin broadcast", admin=admin.sub, delivered=delivered)
    return ApiResponse(
        message="Message broadcasted to all clients",
        data={**notification, "delivered": delivered},
    )


@router.post("/admin/publish", response_model=ApiResponse)
async def admin_publish(request: PublishRequest, publisher: PublisherDep, admin: AdminDep) -> ApiResponse:
    """Publish a domain mutation on behalf of a backend write path (admin only)."""
    try:
        delivered = await publisher.publish(request.domain, request.action, request.data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    logger.info(
        "Published domain event",
        admin=admin.sub,
        domain=request.domain,
        action=request.action,
        delivered=delivered,
    )
    return ApiResponse(
        message="Event published",
        data={"domain": request.domain, "action": request.action, "delivered": delivered},
    )


@router.post("/test", response_model=ApiResponse)
async def test_event(hub: HubDep) -> ApiResponse:
    """Broadcast a test event to every connected client."""
    event = {
        "type": "test",
        "message": "Realtime test event",
        "timestamp": datetime.now(UTC).isoformat(),
        "testId": time.time_ns() // 1_000_000,
    }
    delivered = await hub.broadcast(Envelope.create(EventKind.SYSTEM_TEST, event), Audience.all_users())
    return ApiResponse(message="Test event broadcasted", data={**event, "delivered": delivered})
