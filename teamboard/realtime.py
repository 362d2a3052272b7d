"""
Room-scoped fan-out for realtime events.

The hub knows nothing about Socket.IO: anything that implements
``Connection`` can join rooms. Publishing never suspends; each connection
delivers its events in the order they were published to it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)


def room_key(team_id: Any) -> str:
    return f"team-{team_id}"


class Connection(Protocol):
    """A subscriber the hub can deliver events to."""

    sid: str
    rooms: set[str]

    def subscribe(self, room: str) -> None:
        ...

    def unsubscribe(self, room: str) -> None:
        ...

    def send(self, event: str, payload: Any) -> None:
        ...

    async def close(self) -> None:
        ...


@dataclass
class InMemoryConnection:
    """Test double that records every delivered event."""

    sid: str
    rooms: set[str] = field(default_factory=set)
    received: list[tuple[str, Any]] = field(default_factory=list)
    closed: bool = False

    def subscribe(self, room: str) -> None:
        self.rooms.add(room)

    def unsubscribe(self, room: str) -> None:
        self.rooms.discard(room)

    def send(self, event: str, payload: Any) -> None:
        self.received.append((event, payload))

    async def close(self) -> None:
        self.closed = True

    def events(self, name: str) -> list[Any]:
        return [payload for event, payload in self.received if event == name]


class SocketIOConnection:
    """
    One Socket.IO client. Events queue in an outbox drained by a single task,
    so a slow client never holds up the publisher.
    """

    def __init__(self, server, sid: str):
        self.server = server
        self.sid = sid
        self.rooms: set[str] = set()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._drain())

    def subscribe(self, room: str) -> None:
        self.rooms.add(room)

    def unsubscribe(self, room: str) -> None:
        self.rooms.discard(room)

    def send(self, event: str, payload: Any) -> None:
        self._outbox.put_nowait((event, payload))

    async def _drain(self) -> None:
        while True:
            event, payload = await self._outbox.get()
            try:
                await self.server.emit(event, payload, to=self.sid)
            except Exception:
                logger.exception("Failed to deliver %s to %s", event, self.sid)
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued event has been handed to the server."""
        await self._outbox.join()

    async def close(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class RoomHub:
    """Maps room keys to the connections subscribed to them."""

    def __init__(self):
        self._rooms: Dict[str, Dict[str, Connection]] = {}
        self._lock = threading.Lock()

    def subscribe(self, connection: Connection, room: str) -> None:
        with self._lock:
            self._rooms.setdefault(room, {})[connection.sid] = connection
        connection.subscribe(room)

    def unsubscribe(self, connection: Connection, room: str) -> None:
        with self._lock:
            members = self._rooms.get(room)
            if members is not None:
                members.pop(connection.sid, None)
                if not members:
                    del self._rooms[room]
        connection.unsubscribe(room)

    def unsubscribe_all(self, connection: Connection) -> None:
        for room in list(connection.rooms):
            self.unsubscribe(connection, room)

    def subscribers(self, room: str) -> list[Connection]:
        with self._lock:
            return list(self._rooms.get(room, {}).values())

    def rooms(self) -> list[str]:
        with self._lock:
            return list(self._rooms)

    def publish(self, room: str, event: str, payload: Any) -> int:
        """Hand ``payload`` to every subscriber of ``room``; returns the count."""
        delivered = 0
        for connection in self.subscribers(room):
            try:
                connection.send(event, payload)
                delivered += 1
            except Exception:
                logger.exception(
                    "Dropping %s for %s in %s", event, connection.sid, room
                )
        logger.debug("Published %s to %s (%d subscribers)", event, room, delivered)
        return delivered

    def reset(self) -> None:
        """Forget every subscription (useful in tests)."""
        with self._lock:
            self._rooms.clear()


@dataclass
class Broadcast:
    """An event to publish once the write it describes has succeeded."""

    room: str
    event: str
    payload: Any


async def publish_all(hub: RoomHub, broadcasts: Iterable[Broadcast]) -> None:
    """Notify phase: best-effort, one broadcast failing does not stop the rest."""
    for broadcast in broadcasts:
        try:
            hub.publish(broadcast.room, broadcast.event, broadcast.payload)
        except Exception:
            logger.exception(
                "Broadcast of %s to %s failed", broadcast.event, broadcast.room
            )
