# chatrelay/api/routes/rooms.py

from fastapi import APIRouter, HTTPException

from chatrelay.core import state
from chatrelay.models.models import RoomInfo, RoomList

router = APIRouter()

# ============================================================================
# ROOM ENDPOINTS (read-only; rooms exist while they have members)
# ============================================================================

@router.get("/rooms", response_model=RoomList)
async def list_rooms():
    """
    List rooms that currently have members on this instance.

    Returns:
        RoomList: Active rooms with member counts, sorted by name
    """
    counts = state.room_registry.room_counts()
    return RoomList(
        rooms=[RoomInfo(name=name, member_count=count) for name, count in sorted(counts.items())]
    )


@router.get("/rooms/{room_name}", response_model=RoomInfo)
async def get_room(room_name: str):
    """
    Get the member count of a room.

    Raises:
        HTTPException: 404 if the room has no members
    """
    members = state.room_registry.members(room_name)
    if not members:
        raise HTTPException(status_code=404, detail="Room not found")
    return RoomInfo(name=room_name, member_count=len(members))
