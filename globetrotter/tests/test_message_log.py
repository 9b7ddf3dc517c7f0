"""
Message log tests: per-trip sequencing and history reads.
"""

import pytest
from sqlalchemy import delete

from globetrotter.app.core.exceptions import ResourceNotFoundError
from globetrotter.app.models.chat_message import ChatMessage
from globetrotter.app.models.enums import MessageKind
from globetrotter.app.models.trip import Trip
from globetrotter.app.services import message_log
from globetrotter.app.services.access import utcnow
from globetrotter.app.services.trips import create_trip


@pytest.mark.asyncio
async def test_append_assigns_increasing_sequence(db_session, alice, bob):
    trip = await create_trip(db_session, alice.id, "Lisbon")
    trip_id, alice_id, bob_id = trip.id, alice.id, bob.id

    first = await message_log.append(db_session, trip_id, bob_id, "hi")
    second = await message_log.append(db_session, trip_id, alice_id, "hello")
    third = await message_log.append(db_session, trip_id, None, "bob joined the chat", MessageKind.JOIN)

    assert [first.sequence, second.sequence, third.sequence] == [1, 2, 3]
    assert first.sender.username == "bob"
    assert third.sender is None
    assert third.kind == MessageKind.JOIN


@pytest.mark.asyncio
async def test_sequences_are_per_trip(db_session, alice):
    lisbon = await create_trip(db_session, alice.id, "Lisbon")
    porto = await create_trip(db_session, alice.id, "Porto")
    lisbon_id, porto_id, alice_id = lisbon.id, porto.id, alice.id

    await message_log.append(db_session, lisbon_id, alice_id, "one")
    await message_log.append(db_session, lisbon_id, alice_id, "two")
    other = await message_log.append(db_session, porto_id, alice_id, "elsewhere")

    assert other.sequence == 1


@pytest.mark.asyncio
async def test_recent_returns_latest_oldest_first(db_session, alice):
    trip = await create_trip(db_session, alice.id, "Lisbon")
    trip_id, alice_id = trip.id, alice.id

    for i in range(1, 6):
        await message_log.append(db_session, trip_id, alice_id, f"message {i}")

    messages = await message_log.recent(db_session, trip_id, limit=3)

    assert [m.body for m in messages] == ["message 3", "message 4", "message 5"]
    assert [m.sequence for m in messages] == [3, 4, 5]


@pytest.mark.asyncio
async def test_recent_is_empty_for_new_trip(db_session, alice):
    trip = await create_trip(db_session, alice.id, "Lisbon")
    assert await message_log.recent(db_session, trip.id) == []


@pytest.mark.asyncio
async def test_append_to_deleted_trip_fails(db_session, alice):
    trip = await create_trip(db_session, alice.id, "Lisbon")
    trip_id, alice_id = trip.id, alice.id

    await db_session.execute(delete(Trip).where(Trip.id == trip_id))
    await db_session.commit()

    with pytest.raises(ResourceNotFoundError):
        await message_log.append(db_session, trip_id, alice_id, "anyone there?")


@pytest.mark.asyncio
async def test_append_retries_when_another_sender_takes_the_sequence(db_session, alice, bob, mocker):
    """
    Bob commits the next sequence number between Alice's read of the log
    tail and her insert; her append collides, re-reads and takes the one after.
    """
    trip = await create_trip(db_session, alice.id, "Lisbon")
    trip_id, alice_id, bob_id = trip.id, alice.id, bob.id
    await message_log.append(db_session, trip_id, alice_id, "first")

    real_execute = db_session.execute
    tail_reads = []

    async def execute_with_competing_writer(statement, *args, **kwargs):
        result = await real_execute(statement, *args, **kwargs)
        if "max(chat_messages.sequence)" in str(statement):
            tail_reads.append(statement)
            if len(tail_reads) == 1:
                taken = (await real_execute(statement, *args, **kwargs)).scalar() + 1
                db_session.add(ChatMessage(
                    trip_id=trip_id, sender_id=bob_id, body="from bob",
                    sequence=taken, created_at=utcnow()
                ))
                await db_session.commit()
        return result

    mocker.patch.object(db_session, "execute", new=execute_with_competing_writer)

    message = await message_log.append(db_session, trip_id, alice_id, "from alice")

    assert len(tail_reads) == 2
    assert message.sequence == 3

    history = await message_log.recent(db_session, trip_id)
    assert [(m.sequence, m.body) for m in history] == [(1, "first"), (2, "from bob"), (3, "from alice")]


@pytest.mark.asyncio
async def test_appends_from_many_senders_share_no_sequence(db_session, alice, bob, carol):
    trip = await create_trip(db_session, alice.id, "Lisbon")
    trip_id = trip.id
    senders = [alice.id, bob.id, carol.id] * 4

    for i, sender_id in enumerate(senders):
        await message_log.append(db_session, trip_id, sender_id, f"message {i}")

    sequences = [m.sequence for m in await message_log.recent(db_session, trip_id, limit=100)]
    assert sequences == list(range(1, len(senders) + 1))
