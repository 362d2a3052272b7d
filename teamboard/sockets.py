"""
Socket.IO event handlers for team chat and board sync.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import socketio

from teamboard.config import Settings
from teamboard.db import Store
from teamboard.errors import TeamboardError
from teamboard.realtime import Connection, RoomHub, SocketIOConnection, room_key
from teamboard.repository import messages

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[Any, str], Connection]


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _open_socketio_connection(server, sid: str) -> Connection:
    connection = SocketIOConnection(server, sid)
    connection.start()
    return connection


def create_socket_server(settings: Settings) -> socketio.AsyncServer:
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=settings.cors_origins,
        logger=False,
        engineio_logger=False,
    )


class RealtimeHandlers:
    """Binds chat and sync events to the room hub and the message store."""

    def __init__(
        self,
        server,
        hub: RoomHub,
        get_store: Callable[[], Store],
        connection_factory: ConnectionFactory = _open_socketio_connection,
    ):
        self.server = server
        self.hub = hub
        self._get_store = get_store
        self._connection_factory = connection_factory
        self.connections: Dict[str, Connection] = {}

    def register(self) -> None:
        self.server.on("connect", self.connect)
        self.server.on("disconnect", self.disconnect)
        self.server.on("join-team-chat", self.join_team_chat)
        self.server.on("join-team-sync", self.join_team_sync)
        self.server.on("send-message", self.send_message)
        self.server.on("get-messages", self.get_messages)
        self.server.on("task-added", self.task_added)
        self.server.on("task-moved", self.task_moved)

    def _connection(self, sid: str) -> Optional[Connection]:
        connection = self.connections.get(sid)
        if connection is None:
            logger.warning("Event from unknown connection %s", sid)
        return connection

    async def connect(self, sid: str, environ: dict, auth: Any = None) -> None:
        self.connections[sid] = self._connection_factory(self.server, sid)
        logger.info("Client connected: %s", sid)

    async def disconnect(self, sid: str, *args) -> None:
        connection = self.connections.pop(sid, None)
        if connection is None:
            return
        self.hub.unsubscribe_all(connection)
        await connection.close()
        logger.info("Client disconnected: %s", sid)

    async def join_team_chat(self, sid: str, team_id: Any) -> None:
        self._join(sid, team_id, "chat")

    async def join_team_sync(self, sid: str, team_id: Any) -> None:
        self._join(sid, team_id, "sync")

    def _join(self, sid: str, team_id: Any, purpose: str) -> None:
        connection = self._connection(sid)
        if connection is None or _as_id(team_id) is None:
            return
        room = room_key(team_id)
        self.hub.subscribe(connection, room)
        logger.info("Client %s joined %s for %s", sid, room, purpose)

    async def send_message(self, sid: str, data: Any) -> None:
        connection = self._connection(sid)
        if connection is None:
            return
        if not isinstance(data, dict):
            connection.send("message-error", {"error": "Failed to send message"})
            return
        try:
            message = await asyncio.to_thread(
                messages.save_message,
                self._get_store(),
                data.get("message"),
                _as_id(data.get("userId")),
                data.get("userName"),
                _as_id(data.get("teamId")),
            )
        except TeamboardError as exc:
            logger.warning("Rejected message from %s: %s", sid, exc.message)
            connection.send("message-error", {"error": "Failed to send message"})
            return
        except Exception:
            logger.exception("Error processing message from %s", sid)
            connection.send("message-error", {"error": "Failed to send message"})
            return

        payload = message.as_dict()
        self.hub.publish(room_key(message.team_id), "new-message", payload)
        connection.send("message-sent", payload)

    async def get_messages(self, sid: str, team_id: Any) -> None:
        connection = self._connection(sid)
        if connection is None:
            return
        try:
            history = await asyncio.to_thread(
                messages.list_messages, self._get_store(), _as_id(team_id)
            )
        except Exception:
            logger.exception("Error fetching messages for team %s", team_id)
            connection.send("messages-history", [])
            return
        logger.debug("Sending %d messages to %s", len(history), sid)
        connection.send("messages-history", [m.as_dict() for m in history])

    async def task_added(self, sid: str, data: Any) -> None:
        self._relay_task_event(sid, "task-added", data)

    async def task_moved(self, sid: str, data: Any) -> None:
        self._relay_task_event(sid, "task-moved", data)

    def _relay_task_event(self, sid: str, event: str, data: Any) -> None:
        # Client-side board changes are passed on untouched.
        if not isinstance(data, dict) or _as_id(data.get("teamId")) is None:
            logger.warning("Ignoring %s without teamId from %s", event, sid)
            return
        self.hub.publish(room_key(data["teamId"]), "task-updated", data)
