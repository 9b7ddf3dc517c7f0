"""
Chat room registry and chat service tests.

Sockets are replaced by FakeConnection recorders; the registry only ever
needs their `send_json`.
"""

import asyncio
import itertools
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from conftest import FakeConnection
from globetrotter.app.core.exceptions import InsufficientPermissionsError
from globetrotter.app.models.chat_message import ChatMessage
from globetrotter.app.models.enums import MessageKind, TripVisibility
from globetrotter.app.models.trip import Trip
from globetrotter.app.services import membership, message_log
from globetrotter.app.services.access import AccessContext, utcnow
from globetrotter.app.services.chat import ChatService, EVENT_FOR_KIND, event_for_kind
from globetrotter.app.services.chat_registry import ChatRoomRegistry, ConnectionState
from globetrotter.app.services.trips import create_trip


# Registry

def test_connect_then_join_single_room():
    registry = ChatRoomRegistry()
    conn = registry.connect(FakeConnection().send_json, user_id=1)

    assert conn.state == ConnectionState.CONNECTED
    assert registry.join(conn, 10) is None
    assert conn.state == ConnectionState.JOINED
    assert registry.is_joined(conn, 10)

    # Joining another trip leaves the first room
    assert registry.join(conn, 20) == 10
    assert not registry.is_joined(conn, 10)
    assert registry.room_connections(10) == []
    assert registry.room_connections(20) == [conn]


def test_leave_keeps_connection_open():
    registry = ChatRoomRegistry()
    conn = registry.connect(FakeConnection().send_json, user_id=1)
    registry.join(conn, 10)

    assert registry.leave(conn) == 10
    assert conn.state == ConnectionState.CONNECTED
    assert registry.connection_count == 1
    assert registry.leave(conn) is None


def test_disconnect_forgets_connection():
    registry = ChatRoomRegistry()
    conn = registry.connect(FakeConnection().send_json, user_id=1)
    registry.join(conn, 10)

    assert registry.disconnect(conn) == 10
    assert conn.state == ConnectionState.DISCONNECTED
    assert registry.connection_count == 0
    assert registry.room_user_ids(10) == set()


@pytest.mark.asyncio
async def test_broadcast_reaches_room_and_drops_dead_connections():
    registry = ChatRoomRegistry()
    alive, dead, elsewhere = FakeConnection(), FakeConnection(fail=True), FakeConnection()

    alive_conn = registry.connect(alive.send_json, user_id=1)
    dead_conn = registry.connect(dead.send_json, user_id=2)
    other_conn = registry.connect(elsewhere.send_json, user_id=3)
    registry.join(alive_conn, 10)
    registry.join(dead_conn, 10)
    registry.join(other_conn, 20)

    delivered = await registry.broadcast(10, {"event": "message"})

    assert delivered == 1
    assert alive.sent == [{"event": "message"}]
    assert elsewhere.sent == []
    assert dead_conn.state == ConnectionState.DISCONNECTED
    assert registry.room_user_ids(10) == {1}
    assert registry.connection_count == 2
    # The dropped connection still reports its room when its socket closes
    assert registry.disconnect(dead_conn) == 10


@pytest.mark.asyncio
async def test_send_locks_are_released_with_their_room():
    registry = ChatRoomRegistry()
    conn = registry.connect(FakeConnection().send_json, user_id=1)
    registry.join(conn, 10)

    async with registry.send_lock(10):
        pass
    assert registry.lock_count == 1

    async with registry.send_lock(10):
        registry.leave(conn)
        # Still held
        assert registry.lock_count == 1
    assert registry.lock_count == 0

    # Sends to a trip nobody is connected to leave nothing behind
    async with registry.send_lock(20):
        assert registry.lock_count == 1
    assert registry.lock_count == 0


def test_every_message_kind_has_an_event():
    assert set(EVENT_FOR_KIND) == set(MessageKind)
    assert event_for_kind(MessageKind.TEXT) == "message"
    assert event_for_kind(MessageKind.JOIN) == "member_joined"


# Ordering

@pytest.mark.asyncio
async def test_racing_sends_broadcast_in_sequence_order(mocker):
    """
    The first send is slow to append; the second must still be delivered
    after it because the append result decides the order.
    """
    registry = ChatRoomRegistry()
    listener = FakeConnection()
    registry.join(registry.connect(listener.send_json, user_id=2), 10)

    trip = Trip(id=10, display_id=1, owner_id=1, name="Lisbon", visibility=TripVisibility.PUBLIC)
    sequence = itertools.count(1)

    async def slow_first_append(db, trip_id, sender_id, body, kind=MessageKind.TEXT):
        seq = next(sequence)
        await asyncio.sleep(0.05 if seq == 1 else 0)
        return SimpleNamespace(
            id=seq, sequence=seq, kind=kind, body=body,
            sender_id=sender_id, sender=None, created_at=utcnow()
        )

    async def member_access(db, trip, user_id):
        return AccessContext(trip=trip, user_id=user_id, has_membership=True)

    mocker.patch.object(message_log, "append", new=slow_first_append)
    mocker.patch.object(membership, "resolve_access", new=member_access)

    db = MagicMock()
    db.commit = AsyncMock()
    chat = ChatService(registry)

    await asyncio.gather(
        chat.send(db, trip, 1, "first"),
        chat.send(db, trip, 2, "second"),
    )

    received = [event["message"]["sequence"] for event in listener.events("message")]
    assert received == [1, 2]


# Socket sessions against the database

async def _session_setup(db_session, owner, guest, visibility=TripVisibility.PRIVATE):
    trip = await create_trip(db_session, owner.id, "Lisbon")
    trip.visibility = visibility
    await db_session.commit()
    return trip


@pytest.mark.asyncio
async def test_socket_join_private_trip_is_refused_without_disconnect(db_session, alice, bob):
    trip = await _session_setup(db_session, alice, bob)
    registry = ChatRoomRegistry()
    chat = ChatService(registry)
    socket = FakeConnection()
    conn = registry.connect(socket.send_json, bob.id)

    await chat.handle_frame(db_session, conn, {"action": "join", "trip_id": trip.display_id}, "bob")

    [error] = socket.events("error")
    assert error["error_code"] == "ERR_PERM_001"
    assert conn.state == ConnectionState.CONNECTED
    assert registry.connection_count == 1


@pytest.mark.asyncio
async def test_socket_join_send_leave_flow(db_session, alice, bob):
    trip = await _session_setup(db_session, alice, bob, TripVisibility.PUBLIC)
    display_id, trip_id = trip.display_id, trip.id
    alice_id, bob_id = alice.id, bob.id
    registry = ChatRoomRegistry()
    chat = ChatService(registry)

    alice_socket, bob_socket = FakeConnection(), FakeConnection()
    alice_conn = registry.connect(alice_socket.send_json, alice_id)
    bob_conn = registry.connect(bob_socket.send_json, bob_id)

    await chat.handle_frame(db_session, alice_conn, {"action": "join", "trip_id": display_id}, "alice")
    await chat.handle_frame(db_session, bob_conn, {"action": "join", "trip_id": display_id}, "bob")

    assert bob_socket.events("joined")[0]["trip_id"] == display_id
    # Alice sees Bob arrive
    assert [e["message"]["body"] for e in alice_socket.events("member_joined")] == [
        "alice joined the chat", "bob joined the chat"
    ]
    # Joining over the socket made Bob a member of the public trip
    assert await membership.get_membership(db_session, trip_id, bob_id) is not None

    await chat.handle_frame(db_session, bob_conn, {"action": "send", "trip_id": display_id, "body": "hi"}, "bob")

    # Sender gets the server-confirmed copy too
    for socket in (alice_socket, bob_socket):
        [message] = socket.events("message")
        assert message["message"]["body"] == "hi"
        assert message["message"]["sender_username"] == "bob"

    await chat.handle_frame(db_session, bob_conn, {"action": "leave"}, "bob")

    assert bob_socket.events("left")
    assert alice_socket.events("member_left")[0]["message"]["body"] == "bob left the chat"
    assert not registry.is_joined(bob_conn, trip_id)

    kinds = (await db_session.execute(
        select(ChatMessage.kind).where(ChatMessage.trip_id == trip_id).order_by(ChatMessage.sequence)
    )).scalars().all()
    assert kinds == [MessageKind.JOIN, MessageKind.JOIN, MessageKind.TEXT, MessageKind.LEAVE]


@pytest.mark.asyncio
async def test_socket_send_requires_joined_room(db_session, alice, bob):
    trip = await _session_setup(db_session, alice, bob, TripVisibility.PUBLIC)
    registry = ChatRoomRegistry()
    chat = ChatService(registry)
    socket = FakeConnection()
    conn = registry.connect(socket.send_json, alice.id)

    await chat.handle_frame(db_session, conn, {"action": "send", "trip_id": trip.display_id, "body": "hi"}, "alice")

    [error] = socket.events("error")
    assert error["error_code"] == "ERR_CONFLICT_001"
    assert await message_log.recent(db_session, trip.id) == []


@pytest.mark.asyncio
async def test_socket_rejects_malformed_frames(db_session, alice):
    registry = ChatRoomRegistry()
    chat = ChatService(registry)
    socket = FakeConnection()
    conn = registry.connect(socket.send_json, alice.id)

    await chat.handle_frame(db_session, conn, ["join"], "alice")
    await chat.handle_frame(db_session, conn, {"action": "dance"}, "alice")
    await chat.handle_frame(db_session, conn, {"action": "join", "trip_id": "1"}, "alice")
    await chat.handle_frame(db_session, conn, {"action": "join", "trip_id": 404}, "alice")

    codes = [e["error_code"] for e in socket.events("error")]
    assert codes == ["ERR_VALIDATION", "ERR_VALIDATION", "ERR_VALIDATION", "ERR_NOT_FOUND_001"]


@pytest.mark.asyncio
async def test_disconnect_announces_leave(db_session, alice, bob):
    trip = await _session_setup(db_session, alice, bob, TripVisibility.PUBLIC)
    display_id = trip.display_id
    registry = ChatRoomRegistry()
    chat = ChatService(registry)

    alice_socket = FakeConnection()
    alice_conn = registry.connect(alice_socket.send_json, alice.id)
    bob_conn = registry.connect(FakeConnection().send_json, bob.id)
    await chat.handle_frame(db_session, alice_conn, {"action": "join", "trip_id": display_id}, "alice")
    await chat.handle_frame(db_session, bob_conn, {"action": "join", "trip_id": display_id}, "bob")

    await chat.disconnect(db_session, bob_conn, "bob")

    assert bob_conn.state == ConnectionState.DISCONNECTED
    assert alice_socket.events("member_left")[0]["message"]["body"] == "bob left the chat"


@pytest.mark.asyncio
async def test_failed_announcement_does_not_block_join(db_session, alice, mocker):
    trip = await _session_setup(db_session, alice, alice)
    display_id = trip.display_id
    registry = ChatRoomRegistry()
    chat = ChatService(registry)
    socket = FakeConnection()
    conn = registry.connect(socket.send_json, alice.id)

    mocker.patch.object(message_log, "append", side_effect=InsufficientPermissionsError("boom"))

    await chat.handle_frame(db_session, conn, {"action": "join", "trip_id": display_id}, "alice")

    assert socket.events("joined")
    assert socket.events("error") == []
    assert conn.state == ConnectionState.JOINED


@pytest.mark.asyncio
async def test_dropped_connection_still_announces_leave(db_session, alice, bob):
    trip = await _session_setup(db_session, alice, bob, TripVisibility.PUBLIC)
    display_id, trip_id = trip.display_id, trip.id
    registry = ChatRoomRegistry()
    chat = ChatService(registry)

    alice_socket, bob_socket = FakeConnection(), FakeConnection()
    alice_conn = registry.connect(alice_socket.send_json, alice.id)
    bob_conn = registry.connect(bob_socket.send_json, bob.id)
    await chat.handle_frame(db_session, alice_conn, {"action": "join", "trip_id": display_id}, "alice")
    await chat.handle_frame(db_session, bob_conn, {"action": "join", "trip_id": display_id}, "bob")

    # Bob's socket dies while Alice's message goes out
    bob_socket.fail = True
    await chat.handle_frame(db_session, alice_conn, {"action": "send", "trip_id": display_id, "body": "hi"}, "alice")

    assert bob_conn.state == ConnectionState.DISCONNECTED
    assert registry.room_user_ids(trip_id) == {alice_conn.user_id}

    await chat.disconnect(db_session, bob_conn, "bob")

    assert [e["message"]["body"] for e in alice_socket.events("member_left")] == ["bob left the chat"]
    kinds = (await db_session.execute(
        select(ChatMessage.kind).where(ChatMessage.trip_id == trip_id).order_by(ChatMessage.sequence)
    )).scalars().all()
    assert kinds == [MessageKind.JOIN, MessageKind.JOIN, MessageKind.TEXT, MessageKind.LEAVE]


@pytest.mark.asyncio
async def test_switching_rooms_survives_failed_leave_flush(db_session, alice, mocker):
    lisbon = await create_trip(db_session, alice.id, "Lisbon")
    porto = await create_trip(db_session, alice.id, "Porto")
    lisbon_id, lisbon_display = lisbon.id, lisbon.display_id
    porto_id, porto_display = porto.id, porto.display_id
    registry = ChatRoomRegistry()
    chat = ChatService(registry)
    socket = FakeConnection()
    conn = registry.connect(socket.send_json, alice.id)

    await chat.handle_frame(db_session, conn, {"action": "join", "trip_id": lisbon_display}, "alice")

    real_append = message_log.append

    async def append_with_broken_leave(db, trip_id, sender_id, body, kind=MessageKind.TEXT):
        if kind == MessageKind.LEAVE:
            # Reuses a taken sequence, so the flush fails
            db.add(ChatMessage(
                trip_id=trip_id, sender_id=sender_id, body=body, kind=kind,
                sequence=1, created_at=utcnow()
            ))
            await db.flush()
        return await real_append(db, trip_id, sender_id, body, kind)

    mocker.patch.object(message_log, "append", new=append_with_broken_leave)

    await chat.handle_frame(db_session, conn, {"action": "join", "trip_id": porto_display}, "alice")

    assert [e["trip_id"] for e in socket.events("joined")] == [lisbon_display, porto_display]
    assert socket.events("error") == []
    assert registry.is_joined(conn, porto_id)

    async def kinds_of(trip_id):
        return (await db_session.execute(
            select(ChatMessage.kind).where(ChatMessage.trip_id == trip_id).order_by(ChatMessage.sequence)
        )).scalars().all()

    assert await kinds_of(lisbon_id) == [MessageKind.JOIN]
    assert await kinds_of(porto_id) == [MessageKind.JOIN]
