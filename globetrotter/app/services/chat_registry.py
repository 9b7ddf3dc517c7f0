"""
Chat room registry.

Process-local map of live chat connections per trip. State is held in
memory only: a restart drops every connection and clients re-join,
recovering history through the REST history endpoint. There is no
cross-process backplane, so one process serves chat per environment.

The registry does no I/O while mutating its maps and nothing awaits in
the middle of a mutation, so the event loop serializes join/leave/disconnect
without a lock. A threaded host would need explicit mutual exclusion here.
"""

import asyncio
import enum
import itertools
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("globetrotter.chat")

SendJson = Callable[[dict], Awaitable[Any]]

_connection_ids = itertools.count(1)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    JOINED = "joined"


class ChatConnection:
    """
    One live client connection.

    `send_json` is the only transport handle the registry needs; a
    WebSocket passes its own `send_json`, tests pass a recorder.
    `trip_id` is the internal trip id of the joined room, or None.
    """

    def __init__(self, send_json: SendJson):
        self.connection_id = next(_connection_ids)
        self.send_json = send_json
        self.user_id: Optional[int] = None
        self.trip_id: Optional[int] = None
        self.state = ConnectionState.AUTHENTICATING

    def __repr__(self) -> str:
        return f"<ChatConnection id={self.connection_id} user={self.user_id} state={self.state.value} trip={self.trip_id}>"


class ChatRoomRegistry:
    """
    Owner of the trip -> connections mapping.

    Usage:
        registry = ChatRoomRegistry()
        conn = registry.connect(websocket.send_json, user_id)
        registry.join(conn, trip.id)
        await registry.broadcast(trip.id, {"event": "message", ...})
        registry.disconnect(conn)
    """

    def __init__(self):
        self._rooms: dict[int, dict[int, ChatConnection]] = {}
        self._connections: dict[int, ChatConnection] = {}
        self._send_locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}

    def connect(self, send_json: SendJson, user_id: int) -> ChatConnection:
        """Register an authenticated connection. It is not in any room yet."""
        connection = ChatConnection(send_json)
        connection.user_id = user_id
        connection.state = ConnectionState.CONNECTED
        self._connections[connection.connection_id] = connection
        logger.debug("Chat connection %s opened for user %s", connection.connection_id, user_id)
        return connection

    def join(self, connection: ChatConnection, trip_id: int) -> Optional[int]:
        """
        Put a connection in a trip's room.

        A connection sits in at most one room; joining another trip leaves
        the previous one first.

        Returns:
            The internal id of the room that was left, if any
        """
        previous = None
        if connection.trip_id is not None and connection.trip_id != trip_id:
            previous = self.leave(connection)

        self._rooms.setdefault(trip_id, {})[connection.connection_id] = connection
        self._connections[connection.connection_id] = connection
        connection.trip_id = trip_id
        connection.state = ConnectionState.JOINED
        return previous

    def leave(self, connection: ChatConnection) -> Optional[int]:
        """
        Take a connection out of its room; the connection stays open.

        Also called on connections `broadcast` already dropped, which are
        out of the room but still remember it.

        Returns:
            The internal id of the room that was left, or None
        """
        trip_id = connection.trip_id
        if trip_id is None:
            return None

        self._remove_from_room(connection)
        connection.trip_id = None
        if connection.state == ConnectionState.JOINED:
            connection.state = ConnectionState.CONNECTED
        return trip_id

    def disconnect(self, connection: ChatConnection) -> Optional[int]:
        """
        Forget a connection entirely.

        Returns:
            The internal id of the room it was in, or None
        """
        trip_id = self.leave(connection)
        self._connections.pop(connection.connection_id, None)
        connection.state = ConnectionState.DISCONNECTED
        return trip_id

    def is_joined(self, connection: ChatConnection, trip_id: int) -> bool:
        return (
            connection.state == ConnectionState.JOINED
            and connection.trip_id == trip_id
            and connection.connection_id in self._rooms.get(trip_id, {})
        )

    def room_connections(self, trip_id: int) -> list[ChatConnection]:
        return list(self._rooms.get(trip_id, {}).values())

    def room_user_ids(self, trip_id: int) -> set[int]:
        return {c.user_id for c in self.room_connections(trip_id) if c.user_id is not None}

    @asynccontextmanager
    async def send_lock(self, trip_id: int):
        """
        Hold a trip's send lock across append and broadcast so a room sees
        messages in sequence order.

        The lock lives while its room has connections or anyone holds or
        waits for it.
        """
        lock = self._send_locks.get(trip_id)
        if lock is None:
            lock = self._send_locks[trip_id] = asyncio.Lock()
        self._lock_users[trip_id] = self._lock_users.get(trip_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[trip_id] -= 1
            if not self._lock_users[trip_id]:
                del self._lock_users[trip_id]
                self._discard_idle_lock(trip_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def lock_count(self) -> int:
        return len(self._send_locks)

    async def broadcast(self, trip_id: int, payload: dict) -> int:
        """
        Send a payload to every connection in a trip's room, sender included.

        A connection whose send fails is dropped from the registry but keeps
        its `trip_id`, so the `disconnect` that follows when its socket loop
        ends still reports the room and a leave gets announced.

        Returns:
            Number of connections that received the payload
        """
        delivered = 0
        for connection in self.room_connections(trip_id):
            try:
                await connection.send_json(payload)
            except Exception as e:
                logger.warning(
                    "Dropping chat connection %s on trip %s after failed send: %s",
                    connection.connection_id, trip_id, e
                )
                self._remove_from_room(connection)
                self._connections.pop(connection.connection_id, None)
                connection.state = ConnectionState.DISCONNECTED
                continue
            delivered += 1
        return delivered

    def _remove_from_room(self, connection: ChatConnection) -> None:
        trip_id = connection.trip_id
        room = self._rooms.get(trip_id)
        if room is None:
            return
        room.pop(connection.connection_id, None)
        if not room:
            del self._rooms[trip_id]
            self._discard_idle_lock(trip_id)

    def _discard_idle_lock(self, trip_id: int) -> None:
        if trip_id not in self._rooms and trip_id not in self._lock_users:
            self._send_locks.pop(trip_id, None)
