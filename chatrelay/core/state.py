# chatrelay/core/state.py
from __future__ import annotations

from datetime import datetime, timezone

from chatrelay.core.config import settings
from chatrelay.services.backplane import create_backplane
from chatrelay.services.broadcast_relay import BroadcastRelay
from chatrelay.services.connection_manager import ConnectionManager
from chatrelay.services.room_registry import RoomRegistry

# Relay-side singletons for the app process
room_registry = RoomRegistry()
connection_manager = ConnectionManager(registry=room_registry, queue_size=settings.OUTBOUND_QUEUE_SIZE)
backplane = create_backplane(settings.PUB_SUB_SERVICE)
relay = BroadcastRelay(registry=room_registry, connections=connection_manager, backplane=backplane)

# Metrics
app_start_time: datetime = datetime.now(timezone.utc)
