"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from wellquest.auth.jwt import verify_token

_bearer = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> int:
    """Extract and verify the bearer JWT, return the user id. Raises 401 on failure."""
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    return int(payload["sub"])
