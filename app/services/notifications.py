"""Fire-and-forget notification delivery.

A message send calls ``NotificationSink.notify`` after the message is committed.
Delivery runs in a background task: websocket events to connected recipients
(relayed to other instances over Redis) and FCM push to device tokens. Nothing
here raises to the caller; failures are logged.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from app.config import get_settings
from app.ws import ConnectionManager

logger = logging.getLogger(__name__)


class PushClient:
    """Minimal FCM HTTP client (multicast by registration ids)."""

    def __init__(self, endpoint: str, server_key: str, timeout: float = 10.0):
        self.endpoint = endpoint
        self.server_key = server_key
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.endpoint and self.server_key)

    async def send_multicast(self, tokens: List[str], notification: Dict[str, str], data: Dict[str, Any]) -> Optional[dict]:
        if not self.is_configured():
            logger.debug("Push is not configured. Skipping push notifications.")
            return None

        body = {
            "registration_ids": tokens,
            "notification": {
                "title": notification.get("title", ""),
                "body": notification.get("body", ""),
                "sound": "default",
                "android_channel_id": "voice_messages",
            },
            # FCM data payload values must be strings
            "data": {k: str(v) for k, v in data.items()},
            "priority": "high",
        }
        headers = {"Authorization": f"key={self.server_key}"}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.endpoint, json=body, headers=headers)
            response.raise_for_status()
            result = response.json()
        logger.info(
            f"Push notifications sent: {result.get('success', 0)} successful, "
            f"{result.get('failure', 0)} failed"
        )
        return result


class NotificationSink:
    def __init__(self, push_client: PushClient, connections: ConnectionManager):
        self.push_client = push_client
        self.connections = connections
        self._tasks: set[asyncio.Task] = set()

    async def push_to_many(self, tokens: Iterable[str], notification: Dict[str, str], data: Dict[str, Any]) -> None:
        valid_tokens = [t for t in tokens if t]
        if not valid_tokens:
            logger.debug("No valid FCM tokens. Skipping push notifications.")
            return
        try:
            await self.push_client.send_multicast(valid_tokens, notification, data)
        except Exception as e:
            logger.error(f"Error sending push notifications: {e}")

    async def _deliver(self, recipients, title: str, body: str, data: Dict[str, Any]) -> None:
        event = {"event": data.get("type", "message"), "title": title, "body": body, "data": data}
        tokens: List[str] = []
        for user in recipients:
            user_id = str(user.id)
            try:
                await self.connections.send_json_to_user(user_id, event)
            except Exception:
                logger.exception(f"Failed to deliver websocket event to {user_id}")
            await self.connections.publish({"target_user_id": user_id, "payload": event})
            tokens.extend(user.fcm_tokens or [])
        await self.push_to_many(tokens, {"title": title, "body": body}, data)

    def notify(self, recipients, title: str, body: str, data: Dict[str, Any]) -> None:
        """Schedule delivery and return immediately."""
        recipients = list(recipients)
        if not recipients:
            return
        task = asyncio.create_task(self._deliver(recipients, title, body, data))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Notification delivery failed: {exc}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def create_notification_sink(connections: ConnectionManager) -> NotificationSink:
    settings = get_settings()
    push_client = PushClient(settings.fcm_endpoint, settings.fcm_server_key, settings.fcm_timeout_seconds)
    return NotificationSink(push_client, connections)
