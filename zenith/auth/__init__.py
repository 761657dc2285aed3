"""Bearer-token verification for the realtime admin API."""

from zenith.auth.dependencies import require_realtime_read, require_realtime_write, require_scope
from zenith.auth.jwt import AdminClaims, decode_admin_token

__all__ = [
    "AdminClaims",
    "decode_admin_token",
    "require_realtime_read",
    "require_realtime_write",
    "require_scope",
]
