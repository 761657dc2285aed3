"""
FastAPI dependencies guarding the realtime admin API.

401 when the bearer token is missing or fails verification, 403 when a valid
token lacks the scope a route needs.
"""

from typing import Awaitable, Callable, Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from zenith.auth.jwt import (
    REALTIME_READ_SCOPE,
    REALTIME_WRITE_SCOPE,
    AdminClaims,
    decode_admin_token,
)
from zenith.utils.logging import get_logger

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_scope(scope: str) -> Callable[..., Awaitable[AdminClaims]]:
    """
    Build a dependency that admits tokens granting ``scope``.

    Example:
        >>> @router.post("/aggregate")
        ... async def run(admin: AdminClaims = Depends(require_scope("realtime:write"))):
        ...     ...
    """

    async def dependency(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ) -> AdminClaims:
        if not credentials:
            logger.warning("auth_failed", reason="missing_token", scope=scope)
            raise _unauthorized("Missing authentication token")

        try:
            claims = decode_admin_token(credentials.credentials)
        except JWTError as e:
            logger.warning("auth_failed", reason="invalid_token", error=str(e))
            raise _unauthorized("Invalid authentication token")

        if not claims.has_scope(scope):
            logger.warning("auth_forbidden", admin_id=claims.subject, scope=scope)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Token lacks the {scope} scope",
            )

        structlog.contextvars.bind_contextvars(admin_id=claims.subject)
        return claims

    return dependency


require_realtime_read = require_scope(REALTIME_READ_SCOPE)
require_realtime_write = require_scope(REALTIME_WRITE_SCOPE)
