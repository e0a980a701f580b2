"""Access token verification (and minting, for development and tests).

Learn: The gateway does not log anyone in. The main application issues
short-lived access tokens signed with the shared secret; we only verify
them to learn which user is opening a socket or asking for a channel.
``sub`` is the application's integer user id, encoded as a string.

Tokens are minted on a different host, so expiry is checked with a small
leeway (TASKBOARD_JWT_LEEWAY_SECONDS) to absorb clock skew.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from taskboard.config import settings


class TokenError(Exception):
    """The token is missing, malformed, expired, or not an access token."""


def create_access_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    """Mint a token the way the main application does (CLI and tests)."""
    now = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    claims = {"sub": str(user_id), "type": "access", "iat": now, "exp": now + lifetime}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Return the verified claims, or raise TokenError."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            leeway=settings.jwt_leeway_seconds,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    if claims.get("type") != "access":
        raise TokenError("Not an access token")
    return claims


def user_id_from_token(token: str) -> int:
    """Verify a token and return its integer user id."""
    sub = verify_token(token)["sub"]
    try:
        return int(sub)
    except (TypeError, ValueError):
        raise TokenError("Token subject is not a user id")
