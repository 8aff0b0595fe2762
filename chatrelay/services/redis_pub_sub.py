# chatrelay/services/redis_pub_sub.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis

from chatrelay.core.config import settings
from chatrelay.services.backplane import Backplane, DeliverFn, decode_envelope, encode_envelope

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "room:"


class RedisBackplane(Backplane):
    """
    Redis Pub/Sub backplane.

    Each room maps to its own channel (``room:<name>``) and every instance
    listens on the ``room:*`` pattern. A single channel per room keeps one
    sender's messages in order.
    """

    name = "redis"

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        access_key: Optional[str] = None,
        ssl: Optional[bool] = None,
        retry_delay: float = 1.0,
    ):
        super().__init__()
        self.host = host or settings.REDIS_HOST
        self.port = port or settings.REDIS_PORT
        self.access_key = settings.REDIS_ACCESS_KEY if access_key is None else access_key
        self.ssl = settings.REDIS_SSL if ssl is None else ssl
        self.client = None
        self.pubsub = None
        self.retry_delay = retry_delay
        self._listener: Optional[asyncio.Task] = None

    @property
    def url(self) -> str:
        scheme = "rediss" if self.ssl else "redis"
        auth = f":{self.access_key}@" if self.access_key else ""
        return f"{scheme}://{auth}{self.host}:{self.port}"

    async def connect(self):
        """Establish async connection to Redis."""
        self.client = redis.from_url(self.url)
        await self.client.ping()
        logger.info(f"✓ Connected to Redis at {self.host}:{self.port}")

    async def start(self, deliver: DeliverFn) -> None:
        await super().start(deliver)
        if self.client is None:
            await self.connect()
        await self._subscribe()
        self._listener = asyncio.create_task(self._run_listener())

    async def _subscribe(self) -> None:
        self.pubsub = self.client.pubsub()
        await self.pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        logger.info(f"✓ Subscribed to Redis pattern '{CHANNEL_PREFIX}*'")

    async def publish(self, room: str, origin_id: str, payload: bytes) -> None:
        channel = f"{CHANNEL_PREFIX}{room}"
        await self.client.publish(channel, encode_envelope(room, origin_id, payload))
        logger.debug(f"📤 Published to Redis channel '{channel}'")

    async def listen(self):
        """Forward every room message to local delivery."""
        async for message in self.pubsub.listen():
            if message["type"] not in ("message", "pmessage"):
                continue
            try:
                envelope = decode_envelope(message["data"])
                if envelope is None:
                    continue
                room, origin_id, payload = envelope
                logger.debug(f"➡ Redis: routing to room={room}, origin={origin_id}")
                self._dispatch(room, origin_id, payload)
            except Exception as e:
                logger.error(f"Error processing Redis message: {e}")

    async def _run_listener(self):
        """
        Keep the subscription alive until close().

        A dropped connection ends listen(); the pattern subscription is then
        rebuilt after retry_delay seconds, for as long as it takes.
        """
        while True:
            try:
                if self.pubsub is not None:
                    await self.listen()
                logger.warning("Redis subscription ended - resubscribing")
            except Exception as e:
                logger.error(f"Redis listener failed: {e} - resubscribing in {self.retry_delay}s")
            await asyncio.sleep(self.retry_delay)
            await self._close_pubsub()
            try:
                await self._subscribe()
            except Exception as e:
                logger.error(f"Redis resubscribe failed: {e}")

    async def _close_pubsub(self) -> None:
        if self.pubsub is None:
            return
        try:
            await self.pubsub.punsubscribe()
            await self.pubsub.aclose()
        except Exception:
            logger.exception("Error closing Redis pubsub.")
        self.pubsub = None

    async def close(self):
        """Close connections."""
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Redis listener ended with an error.")
            self._listener = None
        await self._close_pubsub()
        if self.client:
            try:
                await self.client.aclose()
            except Exception:
                logger.exception("Error closing Redis client.")
            self.client = None
        await super().close()
        logger.info("Redis connection closed")
