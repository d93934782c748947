"""Authentication dependencies for API user scoping."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.research_intake import resolve_user_id


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str


def bearer_token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Return the raw Bearer token, if one was sent."""
    if not credentials or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user from Bearer access token."""
    token = bearer_token(credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Missing Bearer access token.")
    return AuthContext(user_id=resolve_user_id(token))
