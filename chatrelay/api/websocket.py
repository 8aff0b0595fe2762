# chatrelay/api/websocket.py

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatrelay.core import state
from chatrelay.models.message import Message
from chatrelay.services.codec import EncodeError, coerce_fields, encode
from chatrelay.services.connection_manager import Connection

logger = logging.getLogger(__name__)

router = APIRouter()

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, username: str = "anonymous"):
    """
    WebSocket endpoint for room-scoped chat.

    Protocol:
    =========

    Client -> Server, binary frames:
    --------------------------------
    Chat Message:
        {"messageContent": "hi", "senderUsername": "alice",
         "roomOriginName": "lobby"}
        Relayed byte-for-byte to every other member of "lobby".
        No response.

    Client -> Server, text frames (actions):
    ----------------------------------------
    Join Room:
        {"action": "join", "room_id": "lobby"}
        Response: {"type": "room_joined", "room_id": "lobby", "member_count": 2}

    Leave Room:
        {"action": "leave", "room_id": "lobby"}
        Response: {"type": "room_left", "room_id": "lobby", "member_count": 1}

    List Rooms:
        {"action": "list_rooms"}
        Response: {"type": "rooms_list", "rooms": [{"name": "lobby", "member_count": 2}]}

    Chat Message (JSON form):
        {"action": "message", "data": {"messageContent": "hi", ...}}
        Re-encoded and relayed as a binary frame.

    Server -> Client:
    -----------------
    Chat messages arrive as binary frames. Everything else is a JSON text
    frame with a "type" field; failures use {"type": "error", "message": "..."}.

    Lifecycle:
    ==========
    1. Client connects with the username query parameter
    2. Connection accepted and given a relay-assigned id
    3. Client joins rooms
    4. Client receives messages from joined rooms, never its own
    5. On disconnect, automatically removed from all rooms
    """
    connection = await state.connection_manager.connect(websocket, username)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break

            if frame.get("bytes") is not None:
                await state.relay.handle_chat(connection.id, frame["bytes"])
            elif frame.get("text") is not None:
                await handle_action(connection, frame["text"])

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error for %s (%s): %s", connection.username, connection.id, e)
    finally:
        state.connection_manager.disconnect(connection.id)


async def handle_action(connection: Connection, text: str) -> None:
    """Dispatch one JSON control action from a client."""
    manager = state.connection_manager
    registry = state.room_registry

    if manager.get(connection.id) is None:
        # Writer already dropped this connection after a failed send
        return

    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        manager.send_event(connection.id, {"type": "error", "message": "Invalid JSON"})
        return

    if not isinstance(message, dict):
        manager.send_event(connection.id, {"type": "error", "message": "Expected a JSON object"})
        return

    action = message.get("action")
    logger.debug("Websocket input from %s: action=%s", connection.id, action)

    if action == "join":
        room_id = message.get("room_id")
        if not isinstance(room_id, str) or not room_id:
            manager.send_event(connection.id, {"type": "error", "message": "room_id required"})
            return
        member_count = manager.join_room(connection.id, room_id)
        if member_count is None:
            return
        logger.info("→ %s joined '%s' (%s members)", connection.username, room_id, member_count)
        manager.send_event(
            connection.id,
            {"type": "room_joined", "room_id": room_id, "member_count": member_count},
        )

    elif action == "leave":
        room_id = message.get("room_id")
        if not isinstance(room_id, str) or not room_id:
            manager.send_event(connection.id, {"type": "error", "message": "room_id required"})
            return
        member_count = manager.leave_room(connection.id, room_id)
        if member_count is None:
            return
        manager.send_event(
            connection.id,
            {"type": "room_left", "room_id": room_id, "member_count": member_count},
        )

    elif action == "list_rooms":
        rooms = [
            {"name": name, "member_count": count}
            for name, count in sorted(registry.room_counts().items())
        ]
        manager.send_event(connection.id, {"type": "rooms_list", "rooms": rooms})

    elif action == "message":
        data = message.get("data")
        try:
            payload = encode(
                Message(**coerce_fields(data if isinstance(data, dict) else {})),
                include_sender_flag=False,
            )
        except EncodeError as e:
            manager.send_event(connection.id, {"type": "error", "message": str(e)})
            return
        await state.relay.handle_chat(connection.id, payload)

    else:
        manager.send_event(connection.id, {"type": "error", "message": f"Unknown action: {action}"})
