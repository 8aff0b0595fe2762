# chatrelay/services/broadcast_relay.py

from __future__ import annotations

import logging

from chatrelay.services.backplane import Backplane
from chatrelay.services.codec import extract_room
from chatrelay.services.connection_manager import ConnectionManager
from chatrelay.services.room_registry import RoomRegistry

logger = logging.getLogger(__name__)


class BroadcastRelay:
    """
    Routes chat payloads to the other members of their room.

    Flow:
        1. handle_chat() reads the target room out of the payload
        2. The payload goes out on the backplane, untouched
        3. deliver() runs on every instance and queues the same bytes for
           each local member of the room except the sender

    The sender never gets its own message back. Payloads that name no room
    are dropped and the sender's connection stays open.
    """

    def __init__(self, registry: RoomRegistry, connections: ConnectionManager, backplane: Backplane) -> None:
        self.registry = registry
        self.connections = connections
        self.backplane = backplane

        # Metrics
        self.messages_received = 0
        self.messages_delivered = 0
        self.dropped_unroutable = 0

    async def handle_chat(self, connection_id: str, payload: bytes) -> bool:
        """
        Accept a chat payload from a connection.

        Returns:
            True if the payload was routed, False if it was dropped
        """
        self.messages_received += 1
        username = self.connections.username_of(connection_id)

        room = extract_room(payload)
        if room is None:
            self.dropped_unroutable += 1
            logger.warning("Dropping message from %s (%s): no target room", username, connection_id)
            return False

        logger.info("📨 %s -> '%s' (%d bytes)", username, room, len(payload))
        try:
            await self.backplane.publish(room, connection_id, payload)
        except Exception as e:
            logger.error("Publish to '%s' failed on %s backplane: %s", room, self.backplane.name, e)
            return False
        return True

    def deliver(self, room: str, origin_id: str, payload: bytes) -> int:
        """
        Queue a payload for every local member of the room except its origin.

        Returns:
            Number of connections the payload was queued for
        """
        recipients = self.registry.members_excluding(room, origin_id)
        if not recipients:
            logger.debug("[routing] Skipped broadcast: room=%s has no other members", room)
            return 0

        delivered = 0
        for connection_id in recipients:
            if self.connections.enqueue(connection_id, payload):
                delivered += 1

        self.messages_delivered += delivered
        logger.debug("[routing] room=%s delivered to %d/%d members", room, delivered, len(recipients))
        return delivered
