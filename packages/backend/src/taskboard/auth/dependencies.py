"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers. Two callers hit
the gateway over HTTP, and each authenticates differently:

1. Browsers / clients — Bearer JWT issued by the main application
   (channel authorization requests)
2. The main application itself — shared key in X-Api-Key
   (publishing committed mutations)
"""

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from taskboard.auth.jwt import TokenError, user_id_from_token
from taskboard.config import settings


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated end user making the request."""

    user_id: int


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentUser]:
    """Soft auth — None when no Bearer token is present."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        return CurrentUser(user_id=user_id_from_token(authorization[7:]))
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
) -> CurrentUser:
    """Hard auth — 401 if no valid token."""
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_broadcast_key(
    x_api_key: Optional[str] = Header(None),
) -> None:
    """Only the main application may publish mutations."""
    if not x_api_key or not hmac.compare_digest(
        x_api_key.encode(), settings.broadcast_api_key.encode()
    ):
        raise HTTPException(status_code=401, detail="Invalid API key")
