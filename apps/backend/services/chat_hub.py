"""
Chat Hub
========
Local WebSocket registry with Redis fan-out.

Each worker keeps the sockets connected to it. When Redis is connected,
broadcasts are published to the conversation channels and every worker
(this one included) delivers them to its local sockets; otherwise the
hub delivers directly.
"""

from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

import metrics as app_metrics
from exceptions import RedisConnectionError
from logging_config import get_logger
from services.pubsub import RedisPubSub, conversation_channel, typing_channel

logger = get_logger(__name__)


def message_frame(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "message", "data": payload}


def typing_frame(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "typing", "data": payload}


class ChatHub:
    """
    Per-conversation socket sets.

    Example:
        ```python
        hub = ChatHub(pubsub)
        await hub.connect(7, websocket)
        await hub.broadcast_message(7, message_to_dict(msg))
        await hub.disconnect(7, websocket)
        ```
    """

    def __init__(self, pubsub: Optional[RedisPubSub] = None):
        self.pubsub = pubsub
        self._connections: Dict[int, Set[WebSocket]] = {}

    @property
    def uses_redis(self) -> bool:
        return self.pubsub is not None and self.pubsub.is_connected

    def connection_count(self, conversation_id: Optional[int] = None) -> int:
        if conversation_id is not None:
            return len(self._connections.get(conversation_id, ()))
        return sum(len(sockets) for sockets in self._connections.values())

    async def connect(self, conversation_id: int, websocket: WebSocket) -> None:
        """Register an accepted socket; the first one subscribes the conversation."""
        sockets = self._connections.setdefault(conversation_id, set())
        first = not sockets
        sockets.add(websocket)
        app_metrics.websocket_connections.inc()

        if first and self.uses_redis:
            try:
                await self.pubsub.subscribe(
                    conversation_channel(conversation_id),
                    lambda payload: self.deliver(conversation_id, message_frame(payload)),
                )
                await self.pubsub.subscribe(
                    typing_channel(conversation_id),
                    lambda payload: self.deliver(conversation_id, typing_frame(payload)),
                )
            except RedisConnectionError as e:
                logger.warning("Chat subscription failed, delivering locally", conversation_id=conversation_id, error=str(e))

    async def disconnect(self, conversation_id: int, websocket: WebSocket) -> None:
        sockets = self._connections.get(conversation_id)
        if not sockets or websocket not in sockets:
            return
        sockets.discard(websocket)
        app_metrics.websocket_connections.dec()

        if not sockets:
            del self._connections[conversation_id]
            if self.uses_redis:
                await self.pubsub.unsubscribe(conversation_channel(conversation_id))
                await self.pubsub.unsubscribe(typing_channel(conversation_id))

    async def deliver(self, conversation_id: int, frame: Dict[str, Any]) -> int:
        """Send ``frame`` to this worker's sockets; dead sockets are dropped."""
        delivered = 0
        for websocket in list(self._connections.get(conversation_id, ())):
            try:
                await websocket.send_json(frame)
                delivered += 1
            except Exception as e:
                logger.debug("Dropping dead chat socket", conversation_id=conversation_id, error=str(e))
                await self.disconnect(conversation_id, websocket)
        return delivered

    async def broadcast_message(self, conversation_id: int, payload: Dict[str, Any]) -> None:
        if self.uses_redis:
            try:
                await self.pubsub.publish_chat_message(conversation_id, payload)
                return
            except RedisConnectionError:
                logger.warning("Redis publish failed, delivering locally", conversation_id=conversation_id)
        await self.deliver(conversation_id, message_frame(payload))

    async def broadcast_typing(self, conversation_id: int, user_id: str, is_typing: bool) -> None:
        if self.uses_redis:
            try:
                await self.pubsub.publish_typing(conversation_id, user_id, is_typing)
                return
            except RedisConnectionError:
                logger.warning("Redis publish failed, delivering locally", conversation_id=conversation_id)
        await self.deliver(conversation_id, typing_frame({"userId": user_id, "isTyping": is_typing}))
