"""Security module for the realtime server.

Provides:
- JWT token creation and validation
- Handshake authentication rules
"""

from storefront_realtime.adapters.server.security.jwt import (
    AuthenticationError,
    SessionIdentity,
    TokenPayload,
    TokenService,
    strip_bearer,
)

__all__ = [
    "AuthenticationError",
    "SessionIdentity",
    "TokenPayload",
    "TokenService",
    "strip_bearer",
]
