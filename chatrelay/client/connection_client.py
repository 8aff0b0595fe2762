# chatrelay/client/connection_client.py

from __future__ import annotations

import asyncio
import enum
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets

from chatrelay.core.config import settings
from chatrelay.models.message import Message
from chatrelay.services.codec import EncodeError, decode, encode

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Union[None, Awaitable[None]]]
EventCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class ClientState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    JOINED = "joined"


def _with_username(url: str, username: str) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "username"]
    query.append(("username", username))
    return urlunsplit(parts._replace(query=urlencode(query)))


async def _call(callback: Callable, arg: Any) -> None:
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


class ConnectionClient:
    """
    One persistent connection to the relay.

    Create one per user session and pass it to whatever needs to send or
    receive; nothing here is global.

    Usage:
        async with ConnectionClient("alice") as client:
            client.on_message(lambda m: print(m.sender_username, m.content))
            await client.join_room("lobby")
            await client.send_message(
                Message(content="hi", sender_username="alice", room_origin="lobby")
            )

    Delivered messages carry a sender_flag computed locally: True only when
    the message's sender_username equals this client's username.
    """

    def __init__(self, username: str, url: Optional[str] = None) -> None:
        self.username = username
        self.url = _with_username(url or settings.RELAY_URL, username)
        self.state = ClientState.DISCONNECTED
        self.rooms: Set[str] = set()
        self._websocket = None
        self._reader: Optional[asyncio.Task] = None
        self._message_callbacks: List[MessageCallback] = []
        self._event_callbacks: List[EventCallback] = []

    async def __aenter__(self) -> "ConnectionClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def on_message(self, callback: MessageCallback) -> MessageCallback:
        """Register a delivery callback. Usable as a decorator."""
        self._message_callbacks.append(callback)
        return callback

    def on_event(self, callback: EventCallback) -> EventCallback:
        """Register a callback for control events (room_joined, error, ...)."""
        self._event_callbacks.append(callback)
        return callback

    async def connect(self) -> None:
        self._websocket = await websockets.connect(self.url)
        self.state = ClientState.CONNECTED
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("Connected to %s as %s", self.url, self.username)

    async def close(self) -> None:
        if self._websocket is not None:
            await self._websocket.close()
        if self._reader is not None:
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._websocket = None
        self.rooms.clear()
        self.state = ClientState.DISCONNECTED

    async def join_room(self, room_name: str) -> None:
        """
        Ask the relay for messages of a room. Requires an open connection.

        The relay confirms with a room_joined event.
        """
        await self._send_action({"action": "join", "room_id": room_name})
        self.rooms.add(room_name)
        self.state = ClientState.JOINED

    async def leave_room(self, room_name: str) -> None:
        await self._send_action({"action": "leave", "room_id": room_name})
        self.rooms.discard(room_name)
        if not self.rooms and self.state == ClientState.JOINED:
            self.state = ClientState.CONNECTED

    async def send_message(self, message: Message) -> None:
        """
        Encode and send a chat message.

        The local sender_flag is never put on the wire. A message that
        cannot be encoded is dropped without raising.
        """
        try:
            payload = encode(message, include_sender_flag=False)
        except EncodeError as e:
            logger.debug("Dropping unencodable message for '%s': %s", message.room_origin, e)
            return
        await self._require_websocket().send(payload)

    def _require_websocket(self):
        if self._websocket is None:
            raise RuntimeError("Not connected - call connect() first")
        return self._websocket

    async def _send_action(self, action: Dict[str, Any]) -> None:
        await self._require_websocket().send(json.dumps(action))

    async def _read_loop(self) -> None:
        try:
            async for frame in self._websocket:
                if isinstance(frame, (bytes, bytearray)):
                    await self._deliver(bytes(frame))
                else:
                    await self._handle_event(frame)
        except websockets.ConnectionClosed as e:
            logger.info("Connection to relay closed: %s", e)
        finally:
            self.state = ClientState.DISCONNECTED

    async def _deliver(self, payload: bytes) -> None:
        message = decode(payload)
        message = message.model_copy(update={"sender_flag": message.sender_username == self.username})
        for callback in self._message_callbacks:
            try:
                await _call(callback, message)
            except Exception:
                logger.exception("Message callback failed")

    async def _handle_event(self, text: str) -> None:
        try:
            event = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON text frame from relay")
            return
        if isinstance(event, dict) and event.get("type") == "error":
            logger.warning("Relay error: %s", event.get("message"))
        for callback in self._event_callbacks:
            try:
                await _call(callback, event)
            except Exception:
                logger.exception("Event callback failed")
