"""
Token revocation list in Redis.

A logged-out token stops working immediately instead of at expiry. Entries
are keyed by the token's `jti` and expire together with the token, so the
list never outgrows the set of still-valid tokens.
"""

import logging

from redis.exceptions import RedisError

from globetrotter.app.core.jwt import token_ttl_seconds
from globetrotter.app.core.redis_client import get_redis

logger = logging.getLogger("globetrotter.auth")

REVOKED_TOKEN_PREFIX = "revoked:jti:"


def _revocation_key(payload: dict) -> str:
    return f"{REVOKED_TOKEN_PREFIX}{payload['jti']}"


async def revoke_token(payload: dict) -> bool:
    """
    Revoke the token described by its decoded `payload`.

    Returns:
        True if the revocation was stored, False if Redis failed
    """
    redis_client = await get_redis()
    try:
        await redis_client.setex(_revocation_key(payload), token_ttl_seconds(payload), str(payload["user_id"]))
        return True
    except RedisError as e:
        logger.error("Error revoking token for user %s: %s", payload["user_id"], e)
        return False


async def is_token_revoked(payload: dict) -> bool:
    redis_client = await get_redis()
    try:
        return await redis_client.exists(_revocation_key(payload)) > 0
    except RedisError as e:
        # Fail open: an unreachable Redis must not lock every user out
        logger.warning("Error checking token revocation: %s", e)
        return False
