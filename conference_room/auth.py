"""Authentication dependencies for the admin and room-display endpoints.

Admin endpoints use require_admin_token() (Bearer token in Authorization header).

Behavior matrix:
  ADMIN_API_KEY set + valid token   -> allow
  ADMIN_API_KEY set + wrong/missing -> 401 Unauthorized
  ADMIN_API_KEY empty + DEBUG=true  -> allow (local dev convenience)
  ADMIN_API_KEY empty + DEBUG=false -> 403 Forbidden (locked in production)

Room-level rights are a separate concern: callers identify themselves
with the ``X-Security-Key`` header, checked by the room service.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from conference_room.config import settings

log = logging.getLogger("conference_room.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency: protect HTTP admin endpoints with a bearer token."""
    key = settings.admin_api_key

    if not key:
        if settings.debug:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API key not configured. Set ADMIN_API_KEY in .env.",
        )

    if credentials is None or credentials.credentials != key:
        log.warning("Rejected admin request with invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def security_key_header(
    x_security_key: str | None = Header(default=None),
) -> str | None:
    """The room-display security key, if the caller sent one."""
    return x_security_key
