"""
Operator session handling.

Operators authenticate against the managed backend and present its
access token (an HS256 JWT with audience "authenticated"). The token is
verified here and carried along so gateway calls can forward it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from jose import JWTError, jwt

from errors import SessionExpired

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class OperatorSession:
    """Verified operator identity plus the token to forward."""
    user_id: str
    access_token: str
    expires_at: int  # epoch seconds

    def is_expired(self, now_s: float | None = None) -> bool:
        now = time.time() if now_s is None else now_s
        return now >= self.expires_at


def verify_access_token(token: str | None, *, secret: str | None) -> OperatorSession:
    """
    Verify a backend access token.

    Raises SessionExpired for a missing, malformed, expired or
    wrongly-signed token.
    """
    if not token:
        raise SessionExpired()
    if not secret:
        raise RuntimeError("SUPABASE_JWT_SECRET is not configured")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
        )
    except JWTError as exc:
        raise SessionExpired() from exc

    user_id = claims.get("sub")
    expires_at = claims.get("exp")
    if not user_id or expires_at is None:
        raise SessionExpired()

    return OperatorSession(
        user_id=str(user_id),
        access_token=token,
        expires_at=int(expires_at),
    )


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an 'Authorization: Bearer <token>' header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
