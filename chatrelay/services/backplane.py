# chatrelay/services/backplane.py

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

# (room, origin connection id, raw payload) -> number of local deliveries
DeliverFn = Callable[[str, str, bytes], int]

# ============================================================================
# ENVELOPE
# ============================================================================
#
# Chat payloads cross process boundaries wrapped in:
#   {"origin": "<connection id>", "room": "<room name>", "payload": "<base64>"}
#
# The payload stays opaque so every instance forwards the exact bytes the
# sender produced.

def encode_envelope(room: str, origin_id: str, payload: bytes) -> str:
    return json.dumps(
        {
            "origin": origin_id,
            "room": room,
            "payload": base64.b64encode(payload).decode("ascii"),
        }
    )


def decode_envelope(data: str | bytes) -> Optional[Tuple[str, str, bytes]]:
    """
    Unwrap an envelope.

    Returns:
        (room, origin_id, payload), or None if the envelope is malformed
    """
    try:
        obj = json.loads(data)
        room = obj["room"]
        origin_id = obj["origin"]
        payload = base64.b64decode(obj["payload"], validate=True)
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        logger.warning("Malformed backplane envelope dropped: %s", e)
        return None
    if not isinstance(room, str) or not room or not isinstance(origin_id, str):
        logger.warning("Backplane envelope without room/origin dropped")
        return None
    return room, origin_id, payload


# ============================================================================
# BACKPLANES
# ============================================================================

class Backplane:
    """
    Carries chat payloads from the relay that received them to every relay
    instance (including itself), which then delivers to its local members.
    """

    name = "base"

    def __init__(self) -> None:
        self._deliver: Optional[DeliverFn] = None

    async def start(self, deliver: DeliverFn) -> None:
        """Register the local delivery function and begin listening."""
        self._deliver = deliver

    async def publish(self, room: str, origin_id: str, payload: bytes) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        self._deliver = None

    def _dispatch(self, room: str, origin_id: str, payload: bytes) -> int:
        if self._deliver is None:
            logger.warning("Backplane '%s' not started - dropping message for '%s'", self.name, room)
            return 0
        return self._deliver(room, origin_id, payload)


class LocalBackplane(Backplane):
    """Single-process backplane: publishing delivers immediately."""

    name = "local"

    async def publish(self, room: str, origin_id: str, payload: bytes) -> None:
        self._dispatch(room, origin_id, payload)


def create_backplane(service: str) -> Backplane:
    """
    Build the backplane selected by PUB_SUB_SERVICE.

    The cloud SDKs are imported only when their backplane is selected.
    """
    if service == "redis":
        from chatrelay.services.redis_pub_sub import RedisBackplane
        return RedisBackplane()
    if service == "google_pub_sub":
        from chatrelay.services.gcloud_pub_sub import GooglePubSubBackplane
        return GooglePubSubBackplane()
    if service != "local":
        raise ValueError(f"Unknown PUB_SUB_SERVICE: {service!r}")
    return LocalBackplane()
