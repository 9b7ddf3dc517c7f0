"""
Chat message log.

Append-only, per-trip ordered storage of chat messages. The sequence
assigned by `append` is the single ordering authority for a trip's chat:
history reads and live broadcasts both follow it.
"""

import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.core.exceptions import ConflictError, ResourceNotFoundError
from globetrotter.app.models.chat_message import ChatMessage
from globetrotter.app.models.enums import MessageKind
from globetrotter.app.models.trip import Trip
from globetrotter.app.services.access import utcnow

logger = logging.getLogger("globetrotter.chat")

APPEND_ATTEMPTS = 5


async def _get_message(db: AsyncSession, message_id: int) -> ChatMessage:
    result = await db.execute(select(ChatMessage).where(ChatMessage.id == message_id))
    return result.unique().scalar_one()


async def append(
    db: AsyncSession,
    trip_id: int,
    sender_id: int | None,
    body: str,
    kind: MessageKind = MessageKind.TEXT
) -> ChatMessage:
    """
    Append a message to a trip's log and commit it.

    Assigns the next per-trip sequence number. Two appends racing for the
    same number collide on the (trip_id, sequence) unique constraint; the
    loser re-reads the tail and tries again.

    Args:
        db: Database session
        trip_id: Internal trip ID
        sender_id: Author, or None for server-generated messages
        body: Message text
        kind: Message kind

    Returns:
        The committed message, sender loaded

    Raises:
        ResourceNotFoundError: If the trip no longer exists
    """
    for attempt in range(1, APPEND_ATTEMPTS + 1):
        trip_exists = (await db.execute(select(Trip.id).where(Trip.id == trip_id))).scalar_one_or_none()
        if trip_exists is None:
            raise ResourceNotFoundError("Trip", trip_id)

        next_sequence = (
            await db.execute(
                select(func.coalesce(func.max(ChatMessage.sequence), 0)).where(ChatMessage.trip_id == trip_id)
            )
        ).scalar() + 1

        message = ChatMessage(
            trip_id=trip_id,
            sender_id=sender_id,
            body=body,
            kind=kind,
            sequence=next_sequence,
            created_at=utcnow()
        )
        db.add(message)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info("Sequence %s on trip %s taken, retrying (attempt %s)", next_sequence, trip_id, attempt)
            continue

        return await _get_message(db, message.id)

    raise ConflictError("Could not append message, please retry", details={"trip_id": trip_id})


async def recent(db: AsyncSession, trip_id: int, limit: int = 50) -> list[ChatMessage]:
    """
    Return the latest `limit` messages of a trip, oldest first.

    Args:
        db: Database session
        trip_id: Internal trip ID
        limit: Maximum number of messages

    Returns:
        Messages in ascending sequence order
    """
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.trip_id == trip_id)
        .order_by(ChatMessage.sequence.desc())
        .limit(limit)
    )
    messages = list(result.unique().scalars().all())
    messages.reverse()
    return messages
