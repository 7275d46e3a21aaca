"""Per-subscriber leases on Redis.

A lease is a single key ``lease:<subscriber_id>`` holding a random token, set
with ``SET NX PX``. Only the holder of the token may release it; release is a
WATCH/MULTI compare-and-delete so a lease that expired and was re-acquired by
another process is never removed by the previous holder.
"""

import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.exceptions import WatchError

from buddy.core.logging import get_logger

logger = get_logger(__name__)

LEASE_PREFIX = "lease"


class SubscriberLease:
    """Mutual exclusion for one subscriber's scheduling state across processes."""

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = 300) -> None:
        self._redis = redis_client
        self._ttl_ms = ttl_seconds * 1000

    @staticmethod
    def key(subscriber_id: str) -> str:
        return f"{LEASE_PREFIX}:{subscriber_id}"

    async def acquire(self, subscriber_id: str) -> str | None:
        """Try to take the lease. Returns the token when acquired, else None."""
        token = secrets.token_hex(16)
        acquired = await self._redis.set(self.key(subscriber_id), token, nx=True, px=self._ttl_ms)
        return token if acquired else None

    async def release(self, subscriber_id: str, token: str) -> bool:
        """Release the lease if it is still held with ``token``."""
        key = self.key(subscriber_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != token:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
                return True
            except WatchError:
                return False

    @asynccontextmanager
    async def hold(self, subscriber_id: str) -> AsyncIterator[bool]:
        """Context manager yielding whether the lease was acquired."""
        token = await self.acquire(subscriber_id)
        try:
            yield token is not None
        finally:
            if token is not None:
                released = await self.release(subscriber_id, token)
                if not released:
                    logger.bind(subscriber_id=subscriber_id).warning("lease_lost_before_release")
