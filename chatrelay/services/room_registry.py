# chatrelay/services/room_registry.py

from __future__ import annotations

import logging
import threading
from typing import Dict, FrozenSet, Set

logger = logging.getLogger(__name__)

# ============================================================================
# ROOM REGISTRY
# ============================================================================

class RoomRegistry:
    """
    Authoritative mapping of room name -> member connection ids.

    Rooms are implicit: a room exists while it has at least one member.
    The entry is created on the first join and deleted as soon as the last
    member leaves, so empty rooms are never retained.

    Data Structures:
        rooms: Maps room name -> Set of connection ids in that room
               Example: {"lobby": {"3f2a...", "91bc..."}}

        connection_rooms: Maps connection id -> Set of room names it joined
               Example: {"3f2a...": {"lobby", "random"}}

    Concurrency:
        Every read and mutation holds the same lock. Readers receive frozen
        snapshots, so a join or leave running alongside a broadcast never
        exposes a half-updated member set.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rooms: Dict[str, Set[str]] = {}
        self._connection_rooms: Dict[str, Set[str]] = {}

    def join(self, room_name: str, connection_id: str) -> bool:
        """
        Add a connection to a room. Idempotent.

        Returns:
            True if the connection was newly added, False if already a member
        """
        with self._lock:
            members = self._rooms.setdefault(room_name, set())
            if connection_id in members:
                return False
            members.add(connection_id)
            self._connection_rooms.setdefault(connection_id, set()).add(room_name)
            logger.debug("%s joined '%s' (%d members)", connection_id, room_name, len(members))
            return True

    def leave(self, room_name: str, connection_id: str) -> bool:
        """
        Remove a connection from a single room.

        Returns:
            True if the connection was a member
        """
        with self._lock:
            members = self._rooms.get(room_name)
            if not members or connection_id not in members:
                return False
            self._discard(room_name, connection_id)
            joined = self._connection_rooms.get(connection_id)
            if joined is not None:
                joined.discard(room_name)
                if not joined:
                    del self._connection_rooms[connection_id]
            return True

    def leave_all(self, connection_id: str) -> Set[str]:
        """
        Remove a connection from every room it belongs to.

        Called on disconnect. Calling it again for the same id is a no-op.

        Returns:
            The names of the rooms that were left
        """
        with self._lock:
            joined = self._connection_rooms.pop(connection_id, set())
            for room_name in joined:
                self._discard(room_name, connection_id)
            return joined

    def _discard(self, room_name: str, connection_id: str) -> None:
        # Caller holds the lock
        members = self._rooms.get(room_name)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room_name]

    def members_excluding(self, room_name: str, connection_id: str) -> FrozenSet[str]:
        """Every member of the room except the given connection."""
        with self._lock:
            members = self._rooms.get(room_name)
            if not members:
                return frozenset()
            return frozenset(members - {connection_id})

    def members(self, room_name: str) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._rooms.get(room_name, ()))

    def rooms_of(self, connection_id: str) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._connection_rooms.get(connection_id, ()))

    def room_counts(self) -> Dict[str, int]:
        """Snapshot of room name -> member count, for /rooms and /health."""
        with self._lock:
            return {name: len(members) for name, members in self._rooms.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)
