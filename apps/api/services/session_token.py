"""Access token helpers for scoping research requests to a user."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import require_jwt_secret, settings


DEFAULT_TOKEN_TTL_HOURS = 24


class TokenConfigurationError(RuntimeError):
    """Raised when tokens must be verified but no secret is configured."""


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a signed access token for API authentication."""
    try:
        secret = require_jwt_secret()
    except ValueError as exc:
        raise TokenConfigurationError(str(exc)) from exc

    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=max(int(expires_hours or DEFAULT_TOKEN_TTL_HOURS), 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email

    token = jwt.encode(claims, secret, algorithm=settings.JWT_ALGORITHM)
    return {
        "token": token,
        "expires_at": int(expires_at.timestamp()),
    }


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode an access token and return its claims.

    The signature is verified with ``JWT_SECRET`` unless
    ``RESEARCH_TRUST_UPSTREAM_JWT`` is set, in which case a gateway in front
    of the API has already verified it and only the payload is read.

    Raises ValueError for tokens that are malformed, invalid, expired or lack
    a subject, and TokenConfigurationError when verification is required but
    impossible.
    """
    if not token or not token.strip():
        raise ValueError("Missing access token.")

    if settings.RESEARCH_TRUST_UPSTREAM_JWT:
        try:
            payload = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise ValueError("Malformed access token.") from exc
    else:
        try:
            secret = require_jwt_secret()
        except ValueError as exc:
            raise TokenConfigurationError(str(exc)) from exc
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[settings.JWT_ALGORITHM],
                options={"verify_aud": False},
            )
        except JWTError as exc:
            raise ValueError("Invalid or expired access token.") from exc

    if not isinstance(payload, dict):
        raise ValueError("Malformed access token.")

    subject = str(payload.get("sub", "") or "").strip()
    if not subject:
        raise ValueError("Access token missing subject.")

    return payload
