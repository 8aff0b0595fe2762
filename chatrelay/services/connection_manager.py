# chatrelay/services/connection_manager.py

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from fastapi import WebSocket

from chatrelay.services.room_registry import RoomRegistry

logger = logging.getLogger(__name__)

# bytes -> binary chat frame, dict -> JSON control message
Outbound = Union[bytes, Dict[str, Any]]


@dataclass(eq=False)
class Connection:
    id: str
    websocket: WebSocket
    username: str
    queue: asyncio.Queue = field(repr=False)
    writer: Optional[asyncio.Task] = field(default=None, repr=False)

# ============================================================================
# WEBSOCKET CONNECTION MANAGER
# ============================================================================

class ConnectionManager:
    """
    Owns the live WebSocket connections of this relay instance.

    Each connection gets a relay-assigned id, a bounded outbound queue and a
    writer task draining that queue onto the socket. Fan-out only ever does
    a non-blocking put on the queue, so a stalled client fills up its own
    queue and loses its own messages without slowing down anyone else.

    Data Structures:
        connections: Maps connection id -> Connection
                     Example: {"3f2a...": Connection(username="alice", ...)}

    Room membership lives in the RoomRegistry; disconnect() clears it.
    """

    def __init__(self, registry: RoomRegistry, queue_size: int = 256) -> None:
        self.connections: Dict[str, Connection] = {}
        self.registry = registry
        self.queue_size = queue_size
        self.dropped_queue_full = 0

    async def connect(self, websocket: WebSocket, username: str = "anonymous") -> Connection:
        """
        Accept a new WebSocket connection.

        Note:
            The connection is not joined to any room. Clients send "join"
            actions for the rooms they want.
        """
        await websocket.accept()

        connection = Connection(
            id=uuid.uuid4().hex,
            websocket=websocket,
            username=username,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        connection.writer = asyncio.create_task(self._writer(connection))
        self.connections[connection.id] = connection

        logger.info("✓ User %s connected as %s. Total: %d", username, connection.id, len(self.connections))
        return connection

    def disconnect(self, connection_id: str) -> None:
        """
        Cleanup after a connection goes away. Runs once per connection;
        later calls are no-ops.

        Cleanup:
            1. Remove from all rooms
            2. Stop the writer task
            3. Remove from tracking dict
        """
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return

        rooms = self.registry.leave_all(connection_id)

        if connection.writer is not None and connection.writer is not asyncio.current_task():
            connection.writer.cancel()

        logger.info(
            "✗ User %s disconnected (%s), left %d rooms. Total: %d",
            connection.username, connection_id, len(rooms), len(self.connections),
        )

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def join_room(self, connection_id: str, room_name: str) -> Optional[int]:
        """
        Subscribe a live connection to a room.

        Returns:
            The room's member count, or None if the connection is already
            closed (nothing is added to the registry then)
        """
        if connection_id not in self.connections:
            return None  # Connection already closed
        self.registry.join(room_name, connection_id)
        return len(self.registry.members(room_name))

    def leave_room(self, connection_id: str, room_name: str) -> Optional[int]:
        """
        Unsubscribe a connection from a room.

        Returns:
            The room's remaining member count, or None if the connection
            is already closed
        """
        if connection_id not in self.connections:
            return None  # Connection already closed
        self.registry.leave(room_name, connection_id)
        return len(self.registry.members(room_name))

    def username_of(self, connection_id: str) -> str:
        connection = self.connections.get(connection_id)
        return connection.username if connection else "unknown"

    def enqueue(self, connection_id: str, item: Outbound) -> bool:
        """
        Queue an outbound frame without waiting.

        Returns:
            False if the connection is gone or its queue is full
        """
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        try:
            connection.queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped_queue_full += 1
            logger.warning("Outbound queue full for %s (%s) - dropping frame", connection.username, connection_id)
            return False
        return True

    def send_event(self, connection_id: str, event: Dict[str, Any]) -> bool:
        """Queue a JSON control message for one client."""
        return self.enqueue(connection_id, event)

    async def _writer(self, connection: Connection) -> None:
        websocket = connection.websocket
        while True:
            item = await connection.queue.get()
            try:
                if isinstance(item, bytes):
                    await websocket.send_bytes(item)
                else:
                    await websocket.send_json(item)
            except Exception as e:
                logger.error("Send error to %s (%s): %s", connection.username, connection.id, e)
                self.disconnect(connection.id)
                # Ends the endpoint's receive loop as well
                try:
                    await websocket.close()
                except Exception as close_error:
                    logger.debug("Close after send error failed for %s: %s", connection.id, close_error)
                return
