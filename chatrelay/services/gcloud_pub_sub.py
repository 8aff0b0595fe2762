# chatrelay/services/gcloud_pub_sub.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from google.cloud import pubsub_v1

from chatrelay.core.config import settings
from chatrelay.services.backplane import Backplane, DeliverFn, decode_envelope, encode_envelope

logger = logging.getLogger(__name__)


class GooglePubSubBackplane(Backplane):
    """
    Google Pub/Sub backplane: one shared topic, one subscription per instance.

    Every relay instance must be started with its own SUBSCRIPTION_ID on the
    topic. Instances sharing a subscription split the messages between them
    instead of each receiving a copy, so members on the other instance miss
    them.

    Messages are published with the room as ordering key, so a subscription
    created with message ordering enabled sees each sender's messages in
    order. The streaming-pull callback runs on a Pub/Sub worker thread and
    hands delivery over to the event loop.
    """

    name = "google_pub_sub"

    def __init__(
        self,
        project_id: Optional[str] = None,
        topic_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ):
        super().__init__()
        self.project_id = project_id or settings.PROJECT_ID
        self.topic_id = topic_id or settings.TOPIC_ID
        self.subscription_id = subscription_id or settings.SUBSCRIPTION_ID
        self.publisher = None
        self.subscriber = None
        self.topic_path = None
        self.subscription_path = None
        self._streaming_future = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self, deliver: DeliverFn) -> None:
        """
        Call this once on app startup. Needs ADC or a service account.
        """
        await super().start(deliver)
        self._loop = asyncio.get_running_loop()

        self.publisher = pubsub_v1.PublisherClient(
            publisher_options=pubsub_v1.types.PublisherOptions(enable_message_ordering=True)
        )
        self.subscriber = pubsub_v1.SubscriberClient()
        self.topic_path = self.publisher.topic_path(self.project_id, self.topic_id)
        self.subscription_path = self.subscriber.subscription_path(self.project_id, self.subscription_id)

        self._streaming_future = self.subscriber.subscribe(self.subscription_path, callback=self._callback)
        logger.info(f"Listening for messages on {self.subscription_path}...")

    def _callback(self, message) -> None:
        try:
            envelope = decode_envelope(message.data)
            if envelope is not None and self._loop is not None:
                # Schedule delivery on the FastAPI event loop
                self._loop.call_soon_threadsafe(self._dispatch, *envelope)
            message.ack()
        except Exception as exc:
            logger.error("Error processing Pub/Sub message: %s", exc)
            message.nack()

    async def publish(self, room: str, origin_id: str, payload: bytes) -> None:
        data = encode_envelope(room, origin_id, payload).encode("utf-8")
        future = self.publisher.publish(self.topic_path, data=data, ordering_key=room)
        try:
            # future.result() blocks until the publish is acknowledged
            message_id = await asyncio.to_thread(future.result)
        except Exception:
            # A failed publish pauses the ordering key until resumed
            self.publisher.resume_publish(self.topic_path, room)
            logger.warning("Publish to %s failed - resumed ordering key '%s'", self.topic_path, room)
            raise
        logger.debug("📤 Published to Pub/Sub topic %s (id=%s)", self.topic_path, message_id)

    async def close(self) -> None:
        """Call this once on app shutdown."""
        if self._streaming_future is not None:
            self._streaming_future.cancel()
            self._streaming_future = None
        if self.subscriber is not None:
            self.subscriber.close()
        await super().close()
