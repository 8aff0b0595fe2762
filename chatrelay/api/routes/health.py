# chatrelay/api/routes/health.py

from fastapi import APIRouter

from chatrelay.core import state
from chatrelay.models.models import HealthStatus

router = APIRouter()

@router.get("/health", response_model=HealthStatus)
async def health():
    """
    Health check endpoint.

    Returns current connection and active room counts for load balancer
    probes and monitoring.
    """
    return HealthStatus(
        connections=len(state.connection_manager.connections),
        active_rooms=len(state.room_registry),
        pub_sub_service=state.backplane.name,
    )
