from typing import Dict, Set, Optional, Any
from fastapi import WebSocket
import asyncio
import json
import logging
import uuid

logger = logging.getLogger(__name__)

EVENTS_CHANNEL = "messages:events"


class ConnectionManager:
    """Websocket connections of this process, keyed by user id.

    When a Redis client is attached, events are also published so that other
    instances can forward them to sockets they hold.
    """

    def __init__(self, redis: Optional[Any] = None):
        # user_id (UUID string) -> set of WebSocket
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self.redis = redis
        self._lock = asyncio.Lock()
        self._listener: Optional[asyncio.Task] = None
        self.instance_id = uuid.uuid4().hex

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self.active_connections.get(user_id)
            if not conns:
                conns = set()
                self.active_connections[user_id] = conns
            conns.add(websocket)

    async def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self.active_connections.get(user_id)
            if not conns:
                return
            conns.discard(websocket)
            if len(conns) == 0:
                self.active_connections.pop(user_id, None)

    async def send_json_to_user(self, user_id: str, data) -> None:
        conns = self.active_connections.get(user_id)
        if not conns:
            return
        to_remove = []
        for ws in list(conns):
            try:
                await ws.send_json(data)
            except Exception:
                to_remove.append(ws)
        if to_remove:
            logger.debug(f"Dropping {len(to_remove)} dead socket(s) for user {user_id}")
            async with self._lock:
                for ws in to_remove:
                    conns.discard(ws)
                if len(conns) == 0:
                    self.active_connections.pop(user_id, None)

    async def publish(self, message: dict, channel: str = EVENTS_CHANNEL) -> None:
        """Publish message to Redis channel if configured."""
        if not self.redis:
            return
        try:
            await self.redis.publish(channel, json.dumps({**message, "origin": self.instance_id}, default=str))
        except Exception:
            logger.exception("Failed to publish to redis")

    def start_listener(self, channel: str = EVENTS_CHANNEL) -> None:
        if not self.redis or self._listener is not None:
            return
        self._listener = asyncio.create_task(self._redis_listener(channel))

    async def stop_listener(self) -> None:
        if self._listener is None:
            return
        self._listener.cancel()
        try:
            await self._listener
        except asyncio.CancelledError:
            pass
        self._listener = None

    async def _redis_listener(self, channel_name: str) -> None:
        try:
            pubsub = self.redis.pubsub()
            await pubsub.subscribe(channel_name)
        except Exception:
            logger.exception("Could not subscribe to redis channel; cross-instance events disabled")
            return
        async for item in pubsub.listen():
            if item is None:
                continue
            if item['type'] == 'message':
                try:
                    data = json.loads(item["data"])
                    if data.get("origin") == self.instance_id:
                        # Already delivered to local sockets before publishing
                        continue
                    # Expect data to have 'target_user_id' and payload
                    target = data.get('target_user_id')
                    payload = data.get('payload')
                    if target and payload:
                        await self.send_json_to_user(str(target), payload)
                except Exception:
                    logger.exception('Error processing pubsub message')
