"""
JWT utilities for identifying the acting user.

Token issuance belongs to the authentication service; this module only
verifies bearer tokens presented to the fulfillment API and extracts the
acting user's ID. ``create_access_token`` is kept for service-to-service
calls and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID

from jose import ExpiredSignatureError, JWTError, jwt

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60


class TokenError(Exception):
    """Exception raised for token-related errors."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


def create_access_token(
    subject: UUID,
    expires_delta: Optional[timedelta] = None,
    **claims: Any,
) -> str:
    """
    Create a signed access token for a user.

    Args:
        subject: User ID stored in the ``sub`` claim
        expires_delta: Optional custom lifetime
        **claims: Extra claims to embed

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        **claims,
        "sub": str(subject),
        "iat": now,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode

    Returns:
        Dictionary of decoded token claims

    Raises:
        TokenError: If token is empty, invalid, or expired
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e), error_type=type(e).__name__)
        raise TokenError(
            "Invalid token",
            code="TOKEN_INVALID",
            original_error=str(e),
        ) from e


def get_token_user_id(token: str) -> UUID:
    """
    Extract the acting user's ID from a token.

    Raises:
        TokenError: If the token is invalid or its subject is not a UUID
    """
    payload = decode_token(token)
    subject = payload.get("sub")
    if not subject:
        raise TokenError("Token missing subject", code="TOKEN_NO_SUBJECT")
    try:
        return UUID(str(subject))
    except ValueError as e:
        raise TokenError(
            "Token subject is not a user id",
            code="TOKEN_BAD_SUBJECT",
            subject=subject,
        ) from e


def get_security_headers() -> dict[str, str]:
    """Security headers added to every API response."""
    settings = get_settings()
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    }
    if settings.is_production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers
