"""Bearer token verification.

Tokens are issued by the external identity provider and signed with a
shared HS256 secret. The ``sub`` claim carries the user id.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from wellquest.config import Settings, get_settings


def create_access_token(user_id: int, *, expires_in: timedelta = timedelta(hours=1), settings: Settings | None = None) -> str:
    """Create a signed access token for ``user_id`` (local tooling and tests)."""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + expires_in,
    }
    if settings.jwt_issuer:
        payload["iss"] = settings.jwt_issuer
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """
    Verify and decode a bearer token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no usable subject.
    """
    settings = settings or get_settings()
    payload: dict[str, Any] = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
        options={"require": ["sub", "exp"]},
    )
    if not str(payload["sub"]).isdigit():
        raise jwt.InvalidTokenError("Subject is not a user id")
    return payload
