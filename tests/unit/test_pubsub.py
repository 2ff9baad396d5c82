"""
Unit Tests - Redis Pub/Sub
==========================
Uses a mocked Redis client; no server needed.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisClientConnectionError

from exceptions import RedisConnectionError
from services.pubsub import RedisPubSub, conversation_channel, typing_channel


def make_client() -> MagicMock:
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.publish = AsyncMock(return_value=2)
    client.aclose = AsyncMock()
    pubsub = MagicMock()
    pubsub.aclose = AsyncMock()
    client.pubsub.return_value = pubsub
    return client


class TestChannels:

    @pytest.mark.unit
    def test_names(self):
        assert conversation_channel(7) == "chat:conversation:7"
        assert typing_channel(7) == "chat:typing:7"


class TestConnect:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connect_pings(self):
        client = make_client()
        pubsub = RedisPubSub("redis://cache:6379/0", client=client)

        await pubsub.connect()

        assert pubsub.is_connected
        client.ping.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreachable_raises(self):
        client = make_client()
        client.ping.side_effect = RedisClientConnectionError("refused")
        pubsub = RedisPubSub("redis://cache:6379/0", client=client)

        with pytest.raises(RedisConnectionError):
            await pubsub.connect()
        assert not pubsub.is_connected

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_publish_requires_connection(self):
        pubsub = RedisPubSub(client=make_client())

        with pytest.raises(RedisConnectionError):
            await pubsub.publish("chat:conversation:1", {"id": 1})


class TestPublish:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_chat_message_is_json(self):
        client = make_client()
        pubsub = RedisPubSub(client=client)
        await pubsub.connect()

        receivers = await pubsub.publish_chat_message(3, {"id": 9, "message": "Crane on site"})

        assert receivers == 2
        channel, data = client.publish.await_args.args
        assert channel == "chat:conversation:3"
        assert json.loads(data) == {"id": 9, "message": "Crane on site"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_typing_payload(self):
        client = make_client()
        pubsub = RedisPubSub(client=client)
        await pubsub.connect()

        await pubsub.publish_typing(3, "user-1", True)

        channel, data = client.publish.await_args.args
        payload = json.loads(data)
        assert channel == "chat:typing:3"
        assert payload["userId"] == "user-1"
        assert payload["isTyping"] is True
        assert isinstance(payload["timestamp"], int)


class TestDispatch:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_routes_to_channel_callback(self):
        pubsub = RedisPubSub(client=make_client())
        callback = AsyncMock()
        pubsub._callbacks["chat:conversation:1"] = callback

        await pubsub.dispatch({"channel": "chat:conversation:1", "data": '{"id": 4}'})

        callback.assert_awaited_once_with({"id": 4})

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bad_payload_and_failing_callback_are_contained(self):
        pubsub = RedisPubSub(client=make_client())
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        pubsub._callbacks["chat:typing:1"] = callback

        await pubsub.dispatch({"channel": "chat:typing:1", "data": "not json"})
        callback.assert_not_awaited()

        await pubsub.dispatch({"channel": "chat:typing:1", "data": "{}"})
        callback.assert_awaited_once()
