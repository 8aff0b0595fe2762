# chatrelay/api/routes/metrics.py
from datetime import datetime, timezone

from fastapi import APIRouter

from chatrelay.core import state
from chatrelay.models.models import RelayMetrics

router = APIRouter()

@router.get("/metrics", response_model=RelayMetrics)
async def get_metrics():
    """
    Relay counters since process start.

    Returns:
        RelayMetrics: received / delivered / dropped counts, throughput,
        connection and room counts
    """
    uptime_seconds = (datetime.now(timezone.utc) - state.app_start_time).total_seconds()

    if uptime_seconds > 0:
        messages_per_second = state.relay.messages_received / uptime_seconds
    else:
        messages_per_second = 0.0

    return RelayMetrics(
        messages_received=state.relay.messages_received,
        messages_delivered=state.relay.messages_delivered,
        dropped_unroutable=state.relay.dropped_unroutable,
        dropped_queue_full=state.connection_manager.dropped_queue_full,
        uptime_hours=round(uptime_seconds / 3600, 2) if uptime_seconds > 0 else 0,
        messages_per_second=round(messages_per_second, 2),
        concurrent_connections=len(state.connection_manager.connections),
        active_rooms=len(state.room_registry),
    )
