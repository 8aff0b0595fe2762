# chatrelay/api/routes/root.py

from fastapi import APIRouter

from chatrelay.core.config import settings

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the relay and its endpoints.
    """
    return {
        "message": "Chat Relay - room-scoped broadcast",
        "version": "1.0",
        "pub_sub_service": settings.PUB_SUB_SERVICE,
        "wire_fields": ["messageContent", "senderUsername", "messageSender", "roomOriginName"],
        "endpoints": {
            "websocket": "/ws",
            "rooms": "/rooms",
            "health": "/health",
            "metrics": "/metrics",
        },
    }
