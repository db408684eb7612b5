"""
Live notification push.

Each WebSocket connection gets an id; after a `join` message it belongs to
the room of one user id. Several connections may share a room (one user on
several devices). Delivery is at-most-once: nothing is queued for users who
are offline, and sends that fail or exceed the send timeout are dropped.
"""

import asyncio
import json
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Optional, Protocol, Set

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

router = APIRouter()


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ConnectionRegistry:
    def __init__(self, send_timeout: float = 2.0):
        self.send_timeout = send_timeout
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = defaultdict(set)
        self._membership: Dict[str, str] = {}

    def connect(self, connection_id: str, connection: Connection) -> None:
        self._connections[connection_id] = connection

    def join(self, connection_id: str, user_id: str) -> None:
        if connection_id not in self._connections:
            raise KeyError(f"Unknown connection {connection_id}")

        # A connection lives in one room; re-joining moves it
        previous = self._membership.get(connection_id)
        if previous is not None and previous != user_id:
            self._discard(connection_id, previous)

        self._membership[connection_id] = user_id
        self._rooms[user_id].add(connection_id)
        logger.info("Connection %s joined room %s", connection_id, user_id)

    def leave(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        user_id = self._membership.pop(connection_id, None)
        if user_id is not None:
            self._discard(connection_id, user_id)

    def _discard(self, connection_id: str, user_id: str) -> None:
        room = self._rooms.get(user_id)
        if room is None:
            return
        room.discard(connection_id)
        if not room:
            del self._rooms[user_id]

    def room(self, user_id: str) -> Set[str]:
        return set(self._rooms.get(user_id, ()))

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._membership.get(connection_id)

    async def publish(self, user_id: str, event: str, payload: Any) -> int:
        """Send to every connection in the room. Returns the number delivered."""
        delivered = 0
        for connection_id in list(self._rooms.get(user_id, ())):
            connection = self._connections.get(connection_id)
            if connection is None:
                continue
            try:
                await asyncio.wait_for(
                    connection.send_json({"event": event, "data": payload}),
                    timeout=self.send_timeout,
                )
                delivered += 1
            except Exception:
                logger.warning("Dropping %s for connection %s", event, connection_id, exc_info=True)
        return delivered


def get_registry(connection: HTTPConnection) -> ConnectionRegistry:
    return connection.app.state.registry


@router.websocket("/ws")
async def notifications_socket(
    websocket: WebSocket,
    registry: ConnectionRegistry = Depends(get_registry),
):
    await websocket.accept()
    connection_id = uuid.uuid4().hex
    registry.connect(connection_id, websocket)
    logger.info("User connected: %s", connection_id)

    try:
        while True:
            try:
                message = json.loads(await websocket.receive_text())
            except (ValueError, KeyError):
                # Non-JSON text or a binary frame
                logger.info("Ignoring malformed frame on %s", connection_id)
                continue
            if not isinstance(message, dict):
                continue
            if message.get("event") == "join" and message.get("userId"):
                user_id = str(message["userId"])
                registry.join(connection_id, user_id)
                await websocket.send_json({"event": "joined", "data": {"userId": user_id}})
    except WebSocketDisconnect:
        pass
    finally:
        registry.leave(connection_id)
        logger.info("User disconnected: %s", connection_id)
