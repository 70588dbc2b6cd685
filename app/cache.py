"""Best-effort response cache on top of an optional Redis server.

Key layout (all keys get the configured prefix, ``vmapp:`` by default):

    threads:{userId}                         direct-message thread list
    thread:{userId}:{partnerId}              messages exchanged with one partner
    received:{userId}:u{0|1}:p{page}:l{lim}  received messages page
    group_threads:{userId}                   groups with last message / unread count

Nothing here ever raises to the caller. When Redis is missing or failing, reads
miss and writes are dropped, so callers always fall back to the database.
"""
import asyncio
import json
import logging
import time
from typing import Any, Iterable, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class TTL:
    THREADS = 60
    THREAD_MSGS = 30
    RECEIVED = 60
    GROUPS = 60


class CacheFacade:
    def __init__(
        self,
        client: Optional[Any] = None,
        key_prefix: str = "vmapp:",
        timeout: float = 0.5,
        retry_after: float = 30.0,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self.timeout = timeout
        self.retry_after = retry_after
        self._down_until = 0.0

    @property
    def is_available(self) -> bool:
        if self.client is None:
            return False
        return time.monotonic() >= self._down_until

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _mark_down(self, op: str, exc: Exception) -> None:
        if self.is_available:
            # Only log the transition, not every failed call while down
            logger.warning(f"Cache {op} failed, disabling cache for {self.retry_after}s: {exc}")
        self._down_until = time.monotonic() + self.retry_after

    async def _call(self, op: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except Exception as e:
            self._mark_down(op, e)
            raise

    async def get(self, key: str) -> Optional[Any]:
        if not self.is_available:
            return None
        try:
            raw = await self._call("get", self.client.get(self._key(key)))
        except Exception:
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Dropping undecodable cache entry {key}")
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl: int = TTL.THREADS) -> None:
        if not self.is_available:
            return
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError):
            logger.warning(f"Value for cache key {key} is not serializable")
            return
        try:
            await self._call("set", self.client.set(self._key(key), payload, ex=ttl))
        except Exception:
            return

    async def delete(self, *keys: str) -> None:
        if not keys or not self.is_available:
            return
        try:
            await self._call("delete", self.client.delete(*[self._key(k) for k in keys]))
        except Exception:
            return

    async def delete_pattern(self, pattern: str) -> None:
        """Delete every key matching ``pattern`` using SCAN (non-blocking for the server)."""
        if not self.is_available:
            return

        async def _scan_and_delete():
            batch = []
            async for key in self.client.scan_iter(match=self._key(pattern), count=100):
                batch.append(key)
                if len(batch) >= 100:
                    await self.client.delete(*batch)
                    batch = []
            if batch:
                await self.client.delete(*batch)

        try:
            await self._call("delete_pattern", _scan_and_delete())
        except Exception:
            return

    async def invalidate_user_messages(self, sender_id, receiver_ids: Iterable = ()) -> None:
        """Drop every direct-message view that a send/read/delete/reaction can change."""
        sender = str(sender_id)
        keys = [f"threads:{sender}"]
        patterns = [f"received:{sender}:*"]
        for rid in receiver_ids:
            rid = str(rid)
            if rid == sender:
                continue
            keys += [f"threads:{rid}", f"thread:{sender}:{rid}", f"thread:{rid}:{sender}"]
            patterns.append(f"received:{rid}:*")
        await self.delete(*keys)
        for pattern in patterns:
            await self.delete_pattern(pattern)

    async def invalidate_group(self, member_ids: Iterable) -> None:
        await self.delete(*[f"group_threads:{m}" for m in member_ids])

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            ok = await asyncio.wait_for(self.client.ping(), timeout=self.timeout)
        except Exception as e:
            self._mark_down("ping", e)
            return False
        if ok:
            self._down_until = 0.0
        return bool(ok)

    async def close(self) -> None:
        if self.client is None:
            return
        try:
            await self.client.aclose()
        except Exception:
            logger.exception("Error while closing redis client")


def create_redis_client(redis_url: str, timeout: float = 0.5):
    """Build a redis.asyncio client or return None when Redis is not configured."""
    if not redis_url:
        logger.info("REDIS_URL not configured, running without cache and pub/sub")
        return None
    try:
        client = aioredis.from_url(
            redis_url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
    except Exception as e:
        logger.exception(f"Failed to initialize Redis client: {e}")
        return None
    logger.info(f"Redis initialized: {redis_url}")
    return client
