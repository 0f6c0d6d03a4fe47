# taskcollab/services/realtime.py
"""
Realtime fan-out over authenticated websocket connections.

Each connection is bound to one user at handshake time and auto-joined to that
user's personal room (``user:<id>``). Task lifecycle events are broadcast to
every connection; notifications and assignments go to the target user's room.

All methods run on the event loop; room membership is only mutated there.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from fastapi import WebSocketDisconnect

logger = logging.getLogger(__name__)


class RealtimeEvent(str, Enum):
    CONNECTION = "connection"

    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"

    NOTIFICATION = "notification"
    TASK_ASSIGNED = "task:assigned"

    JOIN_ROOM = "room:join"
    LEAVE_ROOM = "room:leave"

    ERROR = "error"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


class RoomAccessError(Exception):
    """Raised when a connection asks for a room it may not join."""


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


@dataclass
class _Member:
    connection: Connection
    user_id: int
    rooms: set[str] = field(default_factory=set)


class RealtimeHub:
    def __init__(self) -> None:
        self._members: dict[str, _Member] = {}
        self._rooms: dict[str, set[str]] = {}

    # -----------------------------
    # Membership
    # -----------------------------
    def register(self, connection: Connection, user_id: int) -> str:
        connection_id = uuid.uuid4().hex
        self._members[connection_id] = _Member(connection=connection, user_id=user_id)
        self._join(connection_id, user_room(user_id))
        logger.info("User connected: %s (connection=%s)", user_id, connection_id)
        return connection_id

    def join(self, connection_id: str, room: str) -> None:
        member = self._members[connection_id]
        room = (room or "").strip()
        if not room:
            raise RoomAccessError("Room name is required")
        # Personal rooms carry targeted notifications; only their owner may listen.
        if room.startswith("user:") and room != user_room(member.user_id):
            raise RoomAccessError("Cannot join another user's room")
        self._join(connection_id, room)
        logger.info("User %s joined room: %s", member.user_id, room)

    def leave(self, connection_id: str, room: str) -> None:
        member = self._members[connection_id]
        member.rooms.discard(room)
        listeners = self._rooms.get(room)
        if listeners is not None:
            listeners.discard(connection_id)
            if not listeners:
                del self._rooms[room]
        logger.info("User %s left room: %s", member.user_id, room)

    def disconnect(self, connection_id: str) -> None:
        member = self._members.pop(connection_id, None)
        if member is None:
            return
        for room in list(member.rooms):
            listeners = self._rooms.get(room)
            if listeners is None:
                continue
            listeners.discard(connection_id)
            if not listeners:
                del self._rooms[room]
        logger.info("User disconnected: %s (connection=%s)", member.user_id, connection_id)

    def rooms_for(self, connection_id: str) -> set[str]:
        member = self._members.get(connection_id)
        return set(member.rooms) if member else set()

    def connection_count(self) -> int:
        return len(self._members)

    def _join(self, connection_id: str, room: str) -> None:
        self._members[connection_id].rooms.add(room)
        self._rooms.setdefault(room, set()).add(connection_id)

    # -----------------------------
    # Delivery
    # -----------------------------
    async def _send(self, connection_id: str, event: RealtimeEvent, data: Any) -> bool:
        member = self._members.get(connection_id)
        if member is None:
            return False
        try:
            await member.connection.send_json({"event": event.value, "data": data})
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.info("Dropping connection %s after failed send: %s", connection_id, exc)
            self.disconnect(connection_id)
            return False
        return True

    async def broadcast(self, event: RealtimeEvent, data: Any) -> int:
        delivered = 0
        for connection_id in list(self._members):
            if await self._send(connection_id, event, data):
                delivered += 1
        return delivered

    async def emit_to_room(self, room: str, event: RealtimeEvent, data: Any) -> int:
        delivered = 0
        for connection_id in list(self._rooms.get(room, ())):
            if await self._send(connection_id, event, data):
                delivered += 1
        return delivered

    async def emit_task_created(self, payload: dict[str, Any]) -> int:
        count = await self.broadcast(RealtimeEvent.TASK_CREATED, payload)
        logger.info("Emitted task:created for task %s", payload.get("taskId"))
        return count

    async def emit_task_updated(self, payload: dict[str, Any]) -> int:
        count = await self.broadcast(RealtimeEvent.TASK_UPDATED, payload)
        logger.info("Emitted task:updated for task %s", payload.get("taskId"))
        return count

    async def emit_task_deleted(self, task_id: str) -> int:
        count = await self.broadcast(RealtimeEvent.TASK_DELETED, {"taskId": task_id})
        logger.info("Emitted task:deleted for task %s", task_id)
        return count

    async def send_notification_to_user(self, user_id: int, notification: dict[str, Any]) -> int:
        count = await self.emit_to_room(user_room(user_id), RealtimeEvent.NOTIFICATION, notification)
        logger.info("Sent notification to user %s", user_id)
        return count

    async def notify_task_assigned(self, user_id: int, payload: dict[str, Any]) -> int:
        count = await self.emit_to_room(user_room(user_id), RealtimeEvent.TASK_ASSIGNED, payload)
        logger.info("Notified user %s of task assignment", user_id)
        return count
