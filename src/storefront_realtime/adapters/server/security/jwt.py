"""JWT token handling for realtime sessions.

Provides token creation and validation for storefront users and admins,
plus the handshake authentication rules applied to every new session.
Uses python-jose for JWT operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from storefront_realtime.config.schema import ClientType

logger = structlog.get_logger(__name__)

ROLE_ADMIN = "admin"
ROLE_USER = "user"


class AuthenticationError(Exception):
    """Raised when a handshake must be rejected."""


class TokenPayload(BaseModel):
    """JWT token payload.

    Attributes:
        sub: Subject (user id)
        exp: Expiration timestamp
        iat: Issued at timestamp
        role: User role ("user" or "admin")
        email: Optional user email
    """

    sub: str
    exp: datetime
    iat: datetime
    role: str = ROLE_USER
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_jwt_claims(self) -> dict[str, Any]:
        """Convert payload to JWT claims with Unix timestamps."""
        claims: dict[str, Any] = {
            "sub": self.sub,
            "exp": int(self.exp.timestamp()),
            "iat": int(self.iat.timestamp()),
            "role": self.role,
        }
        if self.email:
            claims["email"] = self.email
        return claims


@dataclass(frozen=True)
class SessionIdentity:
    """Who a session belongs to, as established at handshake."""

    client_type: ClientType
    user_id: str | None = None
    role: str | None = None
    email: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


def strip_bearer(token: str | None) -> str | None:
    """Remove an optional ``Bearer`` prefix and surrounding whitespace."""
    if token is None:
        return None
    cleaned = token.strip()
    scheme, _, rest = cleaned.partition(" ")
    if scheme.lower() == "bearer":
        cleaned = rest.strip()
    return cleaned or None


class TokenService:
    """Service for creating and validating JWT tokens.

    Attributes:
        secret: Secret key for signing tokens
        algorithm: JWT signing algorithm (default: HS256)
        expiry_minutes: Token validity period
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        expiry_minutes: int = 60,
    ) -> None:
        """Initialize token service.

        Args:
            secret: Secret key for signing tokens. Must be kept secure.
            algorithm: JWT signing algorithm (default: HS256)
            expiry_minutes: Token validity in minutes (default: 60)

        Raises:
            ValueError: If secret is empty or too short
        """
        if not secret or len(secret) < 32:
            raise ValueError("Secret must be at least 32 characters long")

        self._secret = secret
        self._algorithm = algorithm
        self._expiry_minutes = expiry_minutes

    def create_access_token(
        self,
        user_id: str,
        role: str = ROLE_USER,
        email: str | None = None,
        expires_in: timedelta | None = None,
    ) -> str:
        """Create a new access token.

        Args:
            user_id: User id encoded as the subject
            role: User role
            email: Optional email claim
            expires_in: Override of the configured validity

        Returns:
            Encoded JWT access token string
        """
        now = datetime.now(UTC)
        expires = now + (expires_in or timedelta(minutes=self._expiry_minutes))

        payload = TokenPayload(sub=user_id, exp=expires, iat=now, role=role, email=email)
        token: str = jwt.encode(payload.to_jwt_claims(), self._secret, algorithm=self._algorithm)

        logger.debug("Created access token", user_id=user_id, role=role, expires=expires.isoformat())
        return token

    def decode_token(self, token: str) -> TokenPayload:
        """Decode and validate a token.

        Tokens minted by the storefront backend carry the user id in an
        ``_id`` claim instead of ``sub``; both are accepted.

        Raises:
            JWTError: If token is invalid, expired, or has wrong signature
        """
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError:
            logger.warning("Failed to decode token", error_type="jwt_decode_error")
            raise

        if "sub" not in claims and "_id" in claims:
            claims["sub"] = str(claims["_id"])
        if "iat" not in claims:
            claims["iat"] = claims.get("exp", 0)

        try:
            claims["exp"] = datetime.fromtimestamp(claims["exp"], tz=UTC)
            claims["iat"] = datetime.fromtimestamp(claims["iat"], tz=UTC)
            payload = TokenPayload.model_validate(claims)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise JWTError(f"Invalid token claims: {e}") from e

        logger.debug("Decoded token", user_id=payload.sub, role=payload.role)
        return payload

    def is_token_valid(self, token: str) -> bool:
        """Check if token is valid without raising exceptions."""
        try:
            self.decode_token(token)
            return True
        except JWTError:
            return False

    def authenticate(self, token: str | None, client_type: ClientType) -> SessionIdentity:
        """Apply handshake authentication rules.

        - admin sessions require a valid token with the admin role
        - client sessions with a valid token are bound to its user
        - client sessions without a token, or with an invalid one, are
          accepted as anonymous

        Raises:
            AuthenticationError: If an admin session cannot be authenticated
        """
        cleaned = strip_bearer(token)

        if client_type == ClientType.ADMIN:
            if cleaned is None:
                raise AuthenticationError("Admin authentication required")
            try:
                payload = self.decode_token(cleaned)
            except JWTError as e:
                raise AuthenticationError("Invalid or expired token") from e
            if not payload.is_admin:
                raise AuthenticationError("Admin role required")
            return SessionIdentity(
                client_type=ClientType.ADMIN,
                user_id=payload.sub,
                role=payload.role,
                email=payload.email,
            )

        if cleaned is None:
            return SessionIdentity(client_type=ClientType.CLIENT)

        try:
            payload = self.decode_token(cleaned)
        except JWTError as e:
            logger.warning("Client token rejected, continuing anonymously", error=str(e))
            return SessionIdentity(client_type=ClientType.CLIENT)

        return SessionIdentity(
            client_type=ClientType.CLIENT,
            user_id=payload.sub,
            role=payload.role,
            email=payload.email,
        )
