# chatrelay/services/codec.py

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Union

from chatrelay.models.message import Message

logger = logging.getLogger(__name__)

# ============================================================================
# WIRE FORMAT
# ============================================================================
#
#   {
#       "messageContent": "hi",
#       "senderUsername": "alice",
#       "messageSender": false,        <- may be absent
#       "roomOriginName": "lobby"
#   }
#
# UTF-8 encoded JSON object. Field names are fixed.

CONTENT_FIELD = "messageContent"
SENDER_USERNAME_FIELD = "senderUsername"
SENDER_FLAG_FIELD = "messageSender"
ROOM_FIELD = "roomOriginName"

Payload = Union[bytes, bytearray, memoryview, str]


class EncodeError(ValueError):
    """Raised when a message cannot be turned into a wire payload."""


def _str_or_default(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        # lone surrogates from "\udxxx" escapes; not a usable string
        return ""
    return value


def _bool_or_default(value: Any) -> bool:
    # bool only; 1/"true" are type mismatches and fall back like any other
    return value if isinstance(value, bool) else False


def coerce_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Apply the fail-soft default policy to a decoded wire object.

    Every field is resolved independently: a missing or mistyped
    ``messageContent``, ``senderUsername`` or ``roomOriginName`` becomes
    ``""`` and a missing or mistyped ``messageSender`` becomes ``False``.

    Returns:
        Keyword arguments for ``Message`` (python field names).
    """
    return {
        "content": _str_or_default(data.get(CONTENT_FIELD)),
        "sender_username": _str_or_default(data.get(SENDER_USERNAME_FIELD)),
        "sender_flag": _bool_or_default(data.get(SENDER_FLAG_FIELD)),
        "room_origin": _str_or_default(data.get(ROOM_FIELD)),
    }


def _load_object(payload: Payload) -> Dict[str, Any]:
    """Parse a payload into a JSON object, or ``{}`` if that is impossible."""
    if isinstance(payload, memoryview):
        payload = payload.tobytes()
    try:
        data = json.loads(payload)
    except (ValueError, TypeError, RecursionError):
        # ValueError covers JSONDecodeError and UnicodeDecodeError
        logger.debug("Undecodable payload (%d bytes)", len(payload))
        return {}
    if not isinstance(data, dict):
        logger.debug("Payload is not a JSON object: %s", type(data).__name__)
        return {}
    return data


def encode(message: Message, include_sender_flag: bool = True) -> bytes:
    """
    Serialize a message into its wire payload.

    Args:
        message: The message to serialize
        include_sender_flag: When False, ``messageSender`` is left out of the
            payload so recipients never see the sender's local hint.

    Returns:
        UTF-8 encoded JSON bytes

    Raises:
        EncodeError: the message holds values that cannot be serialized
    """
    obj: Dict[str, Any] = {
        CONTENT_FIELD: message.content,
        SENDER_USERNAME_FIELD: message.sender_username,
    }
    if include_sender_flag:
        obj[SENDER_FLAG_FIELD] = message.sender_flag
    obj[ROOM_FIELD] = message.room_origin

    try:
        return json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        # UnicodeEncodeError (lone surrogates) is a ValueError
        raise EncodeError(f"Cannot encode message: {e}") from e


def decode(payload: Payload) -> Message:
    """
    Deserialize a wire payload. Never raises.

    Anything that is not a JSON object decodes to the all-default message.
    """
    return Message(**coerce_fields(_load_object(payload)))


def extract_room(payload: Payload) -> Optional[str]:
    """
    Read only the target room from a payload.

    Returns:
        The room name, or None when the payload names no usable room.
    """
    room = _str_or_default(_load_object(payload).get(ROOM_FIELD))
    return room or None
