"""
Redis Pub/Sub
=============
Cross-worker fan-out for chat messages and typing indicators.

Channels:
    chat:conversation:{id}  new / edited / deleted messages
    chat:typing:{id}        typing indicators
"""

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

import metrics as app_metrics
from exceptions import RedisConnectionError
from logging_config import get_logger

logger = get_logger(__name__)

Callback = Callable[[Any], Awaitable[None]]


def conversation_channel(conversation_id: int) -> str:
    return f"chat:conversation:{conversation_id}"


def typing_channel(conversation_id: int) -> str:
    return f"chat:typing:{conversation_id}"


class RedisPubSub:
    """
    JSON pub/sub over a single Redis connection pair.

    Example:
        ```python
        pubsub = RedisPubSub("redis://localhost:6379/0")
        await pubsub.connect()
        await pubsub.subscribe("chat:conversation:7", on_message)
        await pubsub.publish_chat_message(7, {"id": 1, "message": "hi"})
        ```
    """

    def __init__(self, url: str = "redis://localhost:6379/0", client: Optional[redis.Redis] = None):
        self.url = url
        self._redis = client
        self._pubsub = None
        self._callbacks: Dict[str, Callback] = {}
        self._listener: Optional[asyncio.Task] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """
        Open the connection and verify it with PING.

        Raises:
            RedisConnectionError: Redis unreachable
        """
        try:
            if self._redis is None:
                self._redis = redis.from_url(self.url, decode_responses=True)
            await self._redis.ping()
        except (RedisError, OSError) as e:
            self._connected = False
            app_metrics.redis_is_healthy.set(0)
            raise RedisConnectionError(uri=self.url, original_error=e)

        self._pubsub = self._redis.pubsub()
        self._connected = True
        app_metrics.redis_is_healthy.set(1)
        logger.info("Redis pub/sub connected", url=self.url)

    async def publish(self, channel: str, message: Any) -> int:
        """
        Publish ``message`` JSON-encoded.

        Returns:
            Number of subscribers that received it
        """
        if not self._connected:
            raise RedisConnectionError("Redis pub/sub is not connected", uri=self.url)
        try:
            return await self._redis.publish(channel, json.dumps(message, default=str))
        except (RedisError, OSError) as e:
            logger.error("Redis publish failed", channel=channel, error=str(e))
            raise RedisConnectionError("Redis publish failed", uri=self.url, original_error=e)

    async def subscribe(self, channel: str, callback: Callback) -> None:
        if not self._connected:
            raise RedisConnectionError("Redis pub/sub is not connected", uri=self.url)

        self._callbacks[channel] = callback
        await self._pubsub.subscribe(channel)
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen(), name="redis-pubsub-listener")
        logger.debug("Subscribed", channel=channel)

    async def unsubscribe(self, channel: str) -> None:
        self._callbacks.pop(channel, None)
        if self._pubsub is not None and self._connected:
            await self._pubsub.unsubscribe(channel)

    async def dispatch(self, message: Dict[str, Any]) -> None:
        """Decode one raw pub/sub message and hand it to its channel callback."""
        channel = message.get("channel")
        callback = self._callbacks.get(channel)
        if callback is None:
            return

        try:
            payload = json.loads(message.get("data"))
        except (TypeError, ValueError):
            logger.warning("Dropping undecodable pub/sub payload", channel=channel)
            return

        try:
            await callback(payload)
        except Exception as e:
            logger.error("Pub/sub callback failed", channel=channel, error=str(e), exc_info=True)

    async def _listen(self) -> None:
        while self._connected:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as e:
                logger.error("Redis listener error", error=str(e))
                app_metrics.redis_is_healthy.set(0)
                await asyncio.sleep(1.0)
                continue
            if message is not None:
                await self.dispatch(message)

    async def publish_chat_message(self, conversation_id: int, message: Dict[str, Any]) -> int:
        return await self.publish(conversation_channel(conversation_id), message)

    async def publish_typing(self, conversation_id: int, user_id: str, is_typing: bool) -> int:
        return await self.publish(typing_channel(conversation_id), {
            "userId": user_id,
            "isTyping": is_typing,
            "timestamp": int(time.time() * 1000),
        })

    async def close(self) -> None:
        self._connected = False
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self._callbacks.clear()
        logger.info("Redis pub/sub closed")
