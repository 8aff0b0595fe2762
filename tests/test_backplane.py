"""
Tests for the pub/sub backplanes.

The Redis and Google Pub/Sub clients are mocked; only the wiring between
envelopes, channels and local delivery is exercised.
"""

import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chatrelay.services.backplane import (
    LocalBackplane,
    create_backplane,
    decode_envelope,
    encode_envelope,
)
from chatrelay.services.gcloud_pub_sub import GooglePubSubBackplane
from chatrelay.services.redis_pub_sub import RedisBackplane


class TestEnvelope:

    def test_envelope_keeps_payload_bytes(self):
        payload = b'{"roomOriginName":"lobby"}\x00\xff'

        assert decode_envelope(encode_envelope("lobby", "c1", payload)) == ("lobby", "c1", payload)

    @pytest.mark.parametrize(
        "data",
        [
            "not json",
            "[]",
            json.dumps({"room": "lobby", "origin": "c1"}),
            json.dumps({"room": "lobby", "origin": "c1", "payload": "***"}),
            json.dumps({"room": "", "origin": "c1", "payload": ""}),
            json.dumps({"room": 5, "origin": "c1", "payload": ""}),
        ],
    )
    def test_malformed_envelope_is_none(self, data):
        assert decode_envelope(data) is None


class TestLocalBackplane:

    @pytest.mark.asyncio
    async def test_publish_delivers_immediately(self):
        backplane = LocalBackplane()
        deliver = MagicMock(return_value=1)
        await backplane.start(deliver)

        await backplane.publish("lobby", "c1", b"x")

        deliver.assert_called_once_with("lobby", "c1", b"x")

    @pytest.mark.asyncio
    async def test_publish_before_start_is_dropped(self):
        await LocalBackplane().publish("lobby", "c1", b"x")

    @pytest.mark.asyncio
    async def test_close_detaches_delivery(self):
        backplane = LocalBackplane()
        deliver = MagicMock()
        await backplane.start(deliver)
        await backplane.close()

        await backplane.publish("lobby", "c1", b"x")

        deliver.assert_not_called()


class TestCreateBackplane:

    def test_local(self):
        assert isinstance(create_backplane("local"), LocalBackplane)

    def test_redis(self):
        assert isinstance(create_backplane("redis"), RedisBackplane)

    def test_google(self):
        assert isinstance(create_backplane("google_pub_sub"), GooglePubSubBackplane)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_backplane("carrier_pigeon")


async def _messages(*items):
    for item in items:
        yield item


async def _then_block(*items):
    for item in items:
        yield item
    await asyncio.Event().wait()


async def _failing(exc):
    raise exc
    yield  # makes this an async generator


async def _crash(exc):
    raise exc


def _pubsub(stream):
    pubsub = MagicMock()
    pubsub.psubscribe = AsyncMock()
    pubsub.punsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    pubsub.listen.return_value = stream
    return pubsub


def _redis_client(*pubsubs):
    client = MagicMock()
    client.pubsub.side_effect = list(pubsubs)
    client.aclose = AsyncMock()
    return client


class TestRedisBackplane:

    def test_url(self):
        assert RedisBackplane(host="h", port=1, access_key="k", ssl=True).url == "rediss://:k@h:1"
        assert RedisBackplane(host="h", port=1, access_key="", ssl=False).url == "redis://h:1"

    @pytest.mark.asyncio
    async def test_publish_uses_room_channel(self):
        backplane = RedisBackplane(host="h", port=1)
        backplane.client = AsyncMock()

        await backplane.publish("lobby", "c1", b"payload")

        channel, data = backplane.client.publish.await_args.args
        assert channel == "room:lobby"
        assert decode_envelope(data) == ("lobby", "c1", b"payload")

    @pytest.mark.asyncio
    async def test_listen_dispatches_room_messages(self):
        backplane = RedisBackplane(host="h", port=1)
        deliver = MagicMock(return_value=1)
        backplane._deliver = deliver
        backplane.pubsub = MagicMock()
        backplane.pubsub.listen.return_value = _messages(
            {"type": "psubscribe", "channel": b"room:*", "data": 1},
            {"type": "pmessage", "channel": b"room:lobby", "data": encode_envelope("lobby", "c1", b"x").encode()},
            {"type": "pmessage", "channel": b"room:lobby", "data": b"garbage"},
            {"type": "pmessage", "channel": b"room:y", "data": encode_envelope("y", "c2", b"z").encode()},
        )

        await backplane.listen()

        assert [c.args for c in deliver.call_args_list] == [("lobby", "c1", b"x"), ("y", "c2", b"z")]

    @pytest.mark.asyncio
    async def test_listen_survives_delivery_error(self):
        backplane = RedisBackplane(host="h", port=1)
        backplane._deliver = MagicMock(side_effect=[RuntimeError("boom"), 1])
        backplane.pubsub = MagicMock()
        envelope = encode_envelope("lobby", "c1", b"x").encode()
        backplane.pubsub.listen.return_value = _messages(
            {"type": "pmessage", "data": envelope},
            {"type": "pmessage", "data": envelope},
        )

        await backplane.listen()

        assert backplane._deliver.call_count == 2

    @pytest.mark.asyncio
    async def test_start_subscribes_to_room_pattern(self):
        pubsub = _pubsub(_messages())
        client = _redis_client(pubsub)
        backplane = RedisBackplane(host="h", port=1)
        backplane.client = client

        await backplane.start(MagicMock())
        await backplane.close()

        pubsub.psubscribe.assert_awaited_once_with("room:*")
        pubsub.punsubscribe.assert_awaited_once()
        pubsub.aclose.assert_awaited_once()
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_listener_resubscribes_after_connection_loss(self, drain):
        dead = _pubsub(_failing(ConnectionError("redis connection lost")))
        envelope = encode_envelope("lobby", "c1", b"x").encode()
        fresh = _pubsub(_then_block({"type": "pmessage", "data": envelope}))
        client = _redis_client(dead, fresh)
        backplane = RedisBackplane(host="h", port=1, retry_delay=0)
        backplane.client = client
        deliver = MagicMock(return_value=1)

        await backplane.start(deliver)
        for _ in range(20):
            if deliver.called:
                break
            await drain()

        deliver.assert_called_once_with("lobby", "c1", b"x")
        assert client.pubsub.call_count == 2
        dead.aclose.assert_awaited_once()
        fresh.psubscribe.assert_awaited_once_with("room:*")

        await backplane.close()
        fresh.aclose.assert_awaited_once()
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_after_listener_crash_still_releases_connections(self, drain):
        pubsub = _pubsub(_messages())
        client = _redis_client(pubsub)
        backplane = RedisBackplane(host="h", port=1)
        backplane.client = client
        backplane.pubsub = pubsub
        backplane._listener = asyncio.create_task(_crash(ConnectionError("redis connection lost")))
        await drain()
        assert backplane._listener.done()

        await backplane.close()

        pubsub.aclose.assert_awaited_once()
        client.aclose.assert_awaited_once()
        assert backplane.client is None

    @pytest.mark.asyncio
    async def test_close_survives_failing_unsubscribe(self):
        pubsub = _pubsub(_messages())
        pubsub.punsubscribe.side_effect = ConnectionError("gone")
        client = _redis_client(pubsub)
        backplane = RedisBackplane(host="h", port=1)
        backplane.client = client
        backplane.pubsub = pubsub

        await backplane.close()

        client.aclose.assert_awaited_once()


class TestGooglePubSubBackplane:

    @pytest.mark.asyncio
    async def test_subscription_callback_delivers_on_loop(self):
        with patch("chatrelay.services.gcloud_pub_sub.pubsub_v1") as pubsub_v1:
            backplane = GooglePubSubBackplane("proj", "topic", "sub")
            deliver = MagicMock(return_value=1)
            await backplane.start(deliver)
            subscriber = pubsub_v1.SubscriberClient.return_value
            callback = subscriber.subscribe.call_args.kwargs["callback"]

            message = MagicMock()
            message.data = encode_envelope("lobby", "c1", b"x").encode()
            callback(message)
            await asyncio.sleep(0)

            message.ack.assert_called_once()
            deliver.assert_called_once_with("lobby", "c1", b"x")

    @pytest.mark.asyncio
    async def test_malformed_message_is_acked_and_dropped(self):
        with patch("chatrelay.services.gcloud_pub_sub.pubsub_v1") as pubsub_v1:
            backplane = GooglePubSubBackplane("proj", "topic", "sub")
            deliver = MagicMock()
            await backplane.start(deliver)
            callback = pubsub_v1.SubscriberClient.return_value.subscribe.call_args.kwargs["callback"]

            message = MagicMock()
            message.data = b"garbage"
            callback(message)
            await asyncio.sleep(0)

            message.ack.assert_called_once()
            deliver.assert_not_called()

    @pytest.mark.asyncio
    async def test_publish_orders_by_room(self):
        with patch("chatrelay.services.gcloud_pub_sub.pubsub_v1") as pubsub_v1:
            backplane = GooglePubSubBackplane("proj", "topic", "sub")
            await backplane.start(MagicMock())
            publisher = pubsub_v1.PublisherClient.return_value
            publisher.publish.return_value.result.return_value = "msg-1"

            await backplane.publish("lobby", "c1", b"x")

            args, kwargs = publisher.publish.call_args
            assert args == (publisher.topic_path.return_value,)
            assert kwargs["ordering_key"] == "lobby"
            envelope = json.loads(kwargs["data"])
            assert base64.b64decode(envelope["payload"]) == b"x"

            await backplane.close()
            pubsub_v1.SubscriberClient.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_publish_resumes_ordering_key(self):
        with patch("chatrelay.services.gcloud_pub_sub.pubsub_v1") as pubsub_v1:
            backplane = GooglePubSubBackplane("proj", "topic", "sub")
            await backplane.start(MagicMock())
            publisher = pubsub_v1.PublisherClient.return_value
            publisher.publish.return_value.result.side_effect = RuntimeError("deadline exceeded")

            with pytest.raises(RuntimeError):
                await backplane.publish("lobby", "c1", b"x")

            publisher.resume_publish.assert_called_once_with(publisher.topic_path.return_value, "lobby")

            publisher.publish.return_value.result.side_effect = None
            publisher.publish.return_value.result.return_value = "msg-2"
            await backplane.publish("lobby", "c1", b"y")
            assert publisher.resume_publish.call_count == 1
