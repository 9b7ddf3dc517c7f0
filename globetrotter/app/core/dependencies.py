"""
Authentication dependencies.

HTTP routes get the caller through `get_current_user`; the chat WebSocket
runs the same `authenticate_token` check on its `?token=` handshake
parameter. Both surfaces therefore accept and reject exactly the same
tokens.
"""

from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from starlette.requests import HTTPConnection
from globetrotter.app.core.exceptions import AuthenticationError, TokenRevokedError
from globetrotter.app.core.jwt import decode_access_token
from globetrotter.app.core.token_revocation import is_token_revoked
from globetrotter.app.db.session import get_db
from globetrotter.app.models.user import User
from globetrotter.app.services.chat_registry import ChatRoomRegistry

# Missing credentials are reported by get_current_user as a 401
security = HTTPBearer(auto_error=False)


async def authenticate_token(token: Optional[str], db: AsyncSession) -> dict:
    """
    Validate a bearer token end to end.

    Checks signature and expiry, the revocation list, and that the user
    still exists and is active.

    Returns:
        The decoded claims plus the raw token under "token"

    Raises:
        AuthenticationError: Missing, malformed or expired token, or unknown/inactive user
        TokenRevokedError: Token was logged out
    """
    if not token:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    if await is_token_revoked(payload):
        raise TokenRevokedError()

    result = await db.execute(select(User.is_active).where(User.id == payload["user_id"]))
    is_active = result.scalar_one_or_none()
    if not is_active:
        raise AuthenticationError("Could not validate credentials")

    payload["token"] = token
    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """Claims of the authenticated caller; any failure is a 401."""
    return await authenticate_token(credentials.credentials if credentials else None, db)


def get_chat_registry(connection: HTTPConnection) -> ChatRoomRegistry:
    """Return the application's chat room registry (HTTP and WebSocket)."""
    return connection.app.state.chat_registry
