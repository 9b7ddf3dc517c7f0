"""
JWT access tokens.

Every token carries the username in `sub`, the numeric `user_id` and a
random `jti`. The `jti` is what the revocation list stores, so logging out
one session never touches a token issued later in the same second.
"""

import math
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from globetrotter.app.core.config import settings

REQUIRED_CLAIMS = ("sub", "user_id", "jti", "exp")


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an access token for `data` (expects `sub` and `user_id`).

    Example payload:
        {"sub": "alice", "user_id": 123, "jti": "9f2c...", "iat": 1700000000, "exp": 1700001800}
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)

    claims = {
        **data,
        "jti": secrets.token_hex(16),
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry and return the claims.

    Returns None for a bad signature, an expired token, or a token missing
    any required claim.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if any(not payload.get(claim) for claim in REQUIRED_CLAIMS):
        return None

    return payload


def token_ttl_seconds(payload: Dict[str, Any]) -> int:
    """Seconds until the token expires on its own (at least 1)."""
    remaining = payload["exp"] - datetime.now(timezone.utc).timestamp()
    return max(1, math.ceil(remaining))
