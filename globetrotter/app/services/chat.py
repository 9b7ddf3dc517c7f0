"""
Trip chat service.

Ties the access checks, the message log and the room registry together
for both transports: the REST polling fallback and the WebSocket session.

Ordering:
    The message log's append is the only ordering authority. For each trip
    the append and the broadcast that follows run under the room's send
    lock, so every connection in a room receives messages in sequence
    order even when two sends race.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.core.config import settings
from globetrotter.app.core.exceptions import (
    AppException,
    ConflictError,
    ValidationFailedError,
)
from globetrotter.app.core.guards import trip_guard
from globetrotter.app.models.chat_message import ChatMessage
from globetrotter.app.models.enums import MessageKind
from globetrotter.app.models.trip import Trip
from globetrotter.app.schemas.chat import ChatMessageResponse
from globetrotter.app.services import membership, message_log
from globetrotter.app.services.access import AccessContext
from globetrotter.app.services.chat_registry import ChatConnection, ChatRoomRegistry
from globetrotter.app.services.trips import get_trip_by_display_id

logger = logging.getLogger("globetrotter.chat")


# Wire event for every message kind. Adding a kind without an event fails at import.
EVENT_FOR_KIND: dict[MessageKind, str] = {
    MessageKind.TEXT: "message",
    MessageKind.SYSTEM: "system",
    MessageKind.JOIN: "member_joined",
    MessageKind.LEAVE: "member_left",
}

_unmapped = set(MessageKind) - set(EVENT_FOR_KIND)
if _unmapped:
    raise RuntimeError(f"No chat event for message kinds: {sorted(k.value for k in _unmapped)}")


def event_for_kind(kind: MessageKind) -> str:
    return EVENT_FOR_KIND[kind]


def serialize_message(message: ChatMessage) -> ChatMessageResponse:
    return ChatMessageResponse(
        id=message.id,
        sequence=message.sequence,
        kind=message.kind,
        body=message.body,
        sender_id=message.sender_id,
        sender_username=message.sender.username if message.sender else None,
        created_at=message.created_at,
    )


def message_event(message: ChatMessage, trip_display_id: int) -> dict:
    return {
        "event": event_for_kind(message.kind),
        "trip_id": trip_display_id,
        "message": serialize_message(message).model_dump(mode="json"),
    }


def error_event(exc: AppException) -> dict:
    return {"event": "error", **exc.to_dict()}


def clean_body(body: Optional[str]) -> str:
    """
    Validate a message body.

    Raises:
        ValidationFailedError: If the body is missing, blank or too long
    """
    text = (body or "").strip()
    if not text:
        raise ValidationFailedError("Message body cannot be empty")
    if len(text) > settings.chat_message_max_length:
        raise ValidationFailedError(
            f"Message body exceeds {settings.chat_message_max_length} characters",
            details={"max_length": settings.chat_message_max_length}
        )
    return text


class ChatService:
    """
    Chat operations over one room registry.

    Usage:
        chat = ChatService(registry)
        messages = await chat.history(db, trip, user_id)
        message = await chat.send(db, trip, user_id, "hi")
    """

    def __init__(self, registry: ChatRoomRegistry):
        self.registry = registry

    async def history(
        self,
        db: AsyncSession,
        trip: Trip,
        user_id: int,
        limit: Optional[int] = None
    ) -> list[ChatMessage]:
        """
        Recent messages of a trip, oldest first (view access).

        Opening the chat counts as a member action, so a pending invite is
        accepted here.
        """
        access = await membership.resolve_access(db, trip, user_id)
        await db.commit()

        trip_guard.enforce_view(access)
        return await message_log.recent(db, trip.id, limit or settings.chat_history_limit)

    async def join(self, db: AsyncSession, trip: Trip, user_id: int) -> AccessContext:
        """
        Join a trip (idempotent) and commit.

        Raises:
            InsufficientPermissionsError: Private trip without membership or invite
        """
        access = await membership.join_trip(db, trip, user_id)
        await db.commit()
        return access

    async def send(self, db: AsyncSession, trip: Trip, user_id: int, body: Optional[str]) -> ChatMessage:
        """
        Post a text message and broadcast it to the trip's room.

        Authorization comes first, so a non-member never reaches the log.

        Raises:
            InsufficientPermissionsError: If the user may not post
            ValidationFailedError: If the body is invalid
        """
        trip_id = trip.id
        display_id = trip.display_id

        access = await membership.resolve_access(db, trip, user_id)
        trip_guard.enforce_post(access)
        await db.commit()

        text = clean_body(body)

        async with self.registry.send_lock(trip_id):
            message = await message_log.append(db, trip_id, user_id, text, MessageKind.TEXT)
            await self.registry.broadcast(trip_id, message_event(message, display_id))

        logger.info("User %s posted message %s on trip %s", user_id, message.sequence, trip_id)
        return message

    async def announce(
        self,
        db: AsyncSession,
        trip_id: int,
        user_id: Optional[int],
        kind: MessageKind,
        body: str
    ) -> Optional[ChatMessage]:
        """
        Append and broadcast a server-generated message.

        Best-effort: a failure is logged and rolled back, never blocking the
        join or leave that triggered it.
        """
        try:
            display_id = (
                await db.execute(select(Trip.display_id).where(Trip.id == trip_id))
            ).scalar_one_or_none()
            if display_id is None:
                return None

            async with self.registry.send_lock(trip_id):
                message = await message_log.append(db, trip_id, user_id, body, kind)
                await self.registry.broadcast(trip_id, message_event(message, display_id))
            return message
        except (AppException, SQLAlchemyError) as e:
            logger.warning("Could not record %s message on trip %s: %s", kind.value, trip_id, e)
            # A failed flush leaves the session unusable for the rest of the frame
            await db.rollback()
            return None

    # WebSocket session

    async def handle_frame(
        self,
        db: AsyncSession,
        connection: ChatConnection,
        frame: Any,
        username: str
    ) -> None:
        """
        Process one client frame.

        Application errors become an `error` event on the same connection;
        the connection stays open and keeps its state.
        """
        try:
            if not isinstance(frame, dict):
                raise ValidationFailedError("Frames must be JSON objects")

            action = frame.get("action")
            if action == "join":
                await self._join_room(db, connection, frame.get("trip_id"), username)
            elif action == "send":
                await self._send_to_room(db, connection, frame.get("trip_id"), frame.get("body"))
            elif action == "leave":
                await self._leave_room(db, connection, username)
            else:
                raise ValidationFailedError("Unknown action", details={"action": action})
        except AppException as exc:
            await connection.send_json(error_event(exc))

    async def disconnect(self, db: AsyncSession, connection: ChatConnection, username: str) -> None:
        trip_id = self.registry.disconnect(connection)
        if trip_id is not None:
            await self.announce(db, trip_id, connection.user_id, MessageKind.LEAVE, f"{username} left the chat")
        logger.info("Chat connection %s of user %s closed", connection.connection_id, connection.user_id)

    async def _load_room_trip(self, db: AsyncSession, display_id: Any) -> Trip:
        if isinstance(display_id, bool) or not isinstance(display_id, int):
            raise ValidationFailedError("trip_id must be an integer", details={"trip_id": display_id})
        return await get_trip_by_display_id(db, display_id)

    async def _join_room(self, db: AsyncSession, connection: ChatConnection, display_id: Any, username: str) -> None:
        trip = await self._load_room_trip(db, display_id)
        trip_id = trip.id

        if not self.registry.is_joined(connection, trip_id):
            # Raises before any registry change, so a refused join keeps the old room
            await self.join(db, trip, connection.user_id)

            previous = self.registry.join(connection, trip_id)
            if previous is not None:
                await self.announce(db, previous, connection.user_id, MessageKind.LEAVE, f"{username} left the chat")
            announce = True
        else:
            announce = False

        history = await message_log.recent(db, trip_id, settings.chat_history_limit)
        await connection.send_json({
            "event": "joined",
            "trip_id": display_id,
            "messages": [serialize_message(m).model_dump(mode="json") for m in history],
        })
        logger.info("User %s joined chat room of trip %s", connection.user_id, trip_id)

        if announce:
            await self.announce(db, trip_id, connection.user_id, MessageKind.JOIN, f"{username} joined the chat")

    async def _send_to_room(self, db: AsyncSession, connection: ChatConnection, display_id: Any, body: Any) -> None:
        trip = await self._load_room_trip(db, display_id)

        if not self.registry.is_joined(connection, trip.id):
            raise ConflictError("Join the trip chat before sending messages", details={"trip_id": display_id})
        if body is not None and not isinstance(body, str):
            raise ValidationFailedError("body must be a string")

        await self.send(db, trip, connection.user_id, body)

    async def _leave_room(self, db: AsyncSession, connection: ChatConnection, username: str) -> None:
        trip_id = self.registry.leave(connection)
        if trip_id is None:
            raise ConflictError("Not in a trip chat")

        await self.announce(db, trip_id, connection.user_id, MessageKind.LEAVE, f"{username} left the chat")
        await connection.send_json({"event": "left"})
        logger.info("User %s left chat room of trip %s", connection.user_id, trip_id)
