"""
Trip chat API endpoints.

REST history and polling fallback, plus the WebSocket for live chat.

WebSocket protocol (JSON frames):
    -> {"action": "join", "trip_id": 7}
    -> {"action": "send", "trip_id": 7, "body": "hi"}
    -> {"action": "leave"}
    <- {"event": "joined", "trip_id": 7, "messages": [...]}
    <- {"event": "message" | "member_joined" | "member_left" | "system", "trip_id": 7, "message": {...}}
    <- {"event": "left"}
    <- {"event": "error", "error_code": "...", "message": "..."}

The handshake is authenticated with `?token=<jwt>`; a missing or invalid
token closes the socket with code 4401 before it is accepted.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from globetrotter.app.db.session import get_db, get_session_factory
from globetrotter.app.core.dependencies import authenticate_token, get_chat_registry, get_current_user
from globetrotter.app.core.exceptions import AppException, ValidationFailedError
from globetrotter.app.schemas.chat import (
    ChatAction,
    ChatActionRequest,
    ChatActionResponse,
    ChatHistoryResponse,
)
from globetrotter.app.services.chat import ChatService, error_event, serialize_message
from globetrotter.app.services.chat_registry import ChatRoomRegistry
from globetrotter.app.services.trips import get_trip_by_display_id

logger = logging.getLogger("globetrotter.chat")

router = APIRouter(prefix="/trips/{display_id}/chat", tags=["Chat"])
ws_router = APIRouter(tags=["Chat"])

WS_CLOSE_UNAUTHORIZED = 4401


@router.get("", response_model=ChatHistoryResponse)
async def get_chat_history(
    display_id: int = Path(..., gt=0),
    limit: Optional[int] = Query(None, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    registry: ChatRoomRegistry = Depends(get_chat_registry)
):
    """Recent messages, oldest first. Requires view access."""
    trip = await get_trip_by_display_id(db, display_id)
    messages = await ChatService(registry).history(db, trip, current_user["user_id"], limit)
    return ChatHistoryResponse(
        trip_id=display_id,
        messages=[serialize_message(m) for m in messages]
    )


@router.post("", response_model=ChatActionResponse)
async def post_chat_action(
    action_in: ChatActionRequest,
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    registry: ChatRoomRegistry = Depends(get_chat_registry)
):
    """
    Polling fallback for clients without a socket.

    `join` is idempotent. `send` requires membership and is broadcast to
    every socket in the trip's room.
    """
    trip = await get_trip_by_display_id(db, display_id)
    chat = ChatService(registry)
    user_id = current_user["user_id"]

    if action_in.action == ChatAction.JOIN:
        await chat.join(db, trip, user_id)
        return ChatActionResponse(trip_id=display_id, action=action_in.action, is_member=True)

    if action_in.action == ChatAction.SEND:
        message = await chat.send(db, trip, user_id, action_in.body)
        return ChatActionResponse(
            trip_id=display_id,
            action=action_in.action,
            is_member=True,
            message=serialize_message(message)
        )

    raise ValidationFailedError("Unsupported chat action", details={"action": action_in.action.value})


@ws_router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    registry: ChatRoomRegistry = Depends(get_chat_registry)
):
    try:
        async with session_factory() as db:
            payload = await authenticate_token(token, db)
    except AppException as exc:
        logger.info("Chat socket rejected: %s", exc.message)
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    await websocket.accept()

    chat = ChatService(registry)
    connection = registry.connect(websocket.send_json, payload["user_id"])
    username = payload["sub"]

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await websocket.send_json(error_event(ValidationFailedError("Frames must be valid JSON")))
                continue

            async with session_factory() as db:
                await chat.handle_frame(db, connection, frame, username)
    except WebSocketDisconnect:
        logger.debug("Chat socket of user %s disconnected", connection.user_id)
    finally:
        async with session_factory() as db:
            await chat.disconnect(db, connection, username)
