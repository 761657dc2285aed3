"""
Admin access token verification.

Tokens are issued by the operator's identity provider; this service only
verifies them. A valid token:
- is signed with ``jwt_secret`` using ``jwt_algorithm``
- carries ``sub`` (the operator id) and ``exp``
- matches ``jwt_issuer`` / ``jwt_audience`` when those are configured
- lists its grants in ``scope`` as a space-separated string

Uses python-jose for signature and registered-claim checks.
"""

from typing import Any, Dict, FrozenSet

from jose import JWTError, jwt
from pydantic import BaseModel

from zenith.config import get_settings

REALTIME_READ_SCOPE = "realtime:read"
REALTIME_WRITE_SCOPE = "realtime:write"


class AdminClaims(BaseModel):
    """Verified identity of the operator calling the admin API."""

    subject: str
    scopes: FrozenSet[str] = frozenset()

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


def _parse_scopes(raw: Any) -> FrozenSet[str]:
    if isinstance(raw, str):
        return frozenset(raw.split())
    if isinstance(raw, (list, tuple)):
        return frozenset(str(s) for s in raw)
    return frozenset()


def decode_admin_token(token: str) -> AdminClaims:
    """
    Verify a bearer token and return its claims.

    Raises:
        JWTError: If the signature, expiry, issuer, audience or subject is invalid
    """
    settings = get_settings()

    payload: Dict[str, Any] = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        options={
            "require_exp": True,
            "require_sub": True,
            "verify_aud": settings.jwt_audience is not None,
        },
    )

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise JWTError("Token subject is empty")

    return AdminClaims(subject=subject, scopes=_parse_scopes(payload.get("scope")))
