"""FastAPI dependencies for the realtime server.

Provides dependency injection for:
- Hub, publisher and inbound router access
- JWT bearer authentication
- Admin role checking
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from storefront_realtime.adapters.server.hub import RealtimeHub
from storefront_realtime.adapters.server.inbound import ClientEventRouter
from storefront_realtime.adapters.server.publisher import DomainEventPublisher
from storefront_realtime.adapters.server.security.jwt import TokenPayload, TokenService
from storefront_realtime.config.schema import ServerConfig

logger = structlog.get_logger(__name__)

# HTTP Bearer token security scheme
bearer_scheme = HTTPBearer(auto_error=False)


def get_hub(request: Request) -> RealtimeHub:
    """Get the RealtimeHub from app state."""
    return request.app.state.hub


def get_publisher(request: Request) -> DomainEventPublisher:
    """Get the DomainEventPublisher from app state."""
    return request.app.state.publisher


def get_inbound_router(request: Request) -> ClientEventRouter:
    """Get the ClientEventRouter from app state."""
    return request.app.state.inbound


def get_token_service(request: Request) -> TokenService:
    """Get TokenService from app state."""
    return request.app.state.token_service


def get_server_config(request: Request) -> ServerConfig:
    """Get ServerConfig from app state."""
    return request.app.state.server_config


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
) -> TokenPayload:
    """Validate the bearer token and return its payload.

    Raises:
        HTTPException: If token is missing or invalid
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return token_service.decode_token(credentials.credentials)
    except JWTError as e:
        logger.debug("Token validation failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def require_admin(
    token: Annotated[TokenPayload, Depends(get_current_token)],
) -> TokenPayload:
    """Require the admin role.

    Raises:
        HTTPException: 403 if the caller is not an admin
    """
    if not token.is_admin:
        logger.warning("Admin access denied", user_id=token.sub, role=token.role)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return token


# Type aliases for cleaner route signatures
HubDep = Annotated[RealtimeHub, Depends(get_hub)]
PublisherDep = Annotated[DomainEventPublisher, Depends(get_publisher)]
InboundRouterDep = Annotated[ClientEventRouter, Depends(get_inbound_router)]
TokenServiceDep = Annotated[TokenService, Depends(get_token_service)]
ServerConfigDep = Annotated[ServerConfig, Depends(get_server_config)]
AdminDep = Annotated[TokenPayload, Depends(require_admin)]
