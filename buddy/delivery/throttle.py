"""Per-subscriber daily conversation-start counter.

Keys are ``throttle:<subscriber_id>:<YYYY-MM-DD>``. The calendar date comes
from the scheduling process's own clock (``process_today``), not from the
subscriber's timezone: a subscriber far from the process's zone rolls over to
a new day at the process's midnight. This is deliberate; the throttling
behaviour users see depends on it.

Expiry is attached exactly once, when the key is created, and is never
refreshed by later increments, so the TTL counts down through the day.
"""

from collections.abc import Callable
from datetime import date

import redis.asyncio as redis
from redis.exceptions import WatchError

from buddy.config import ThrottleConfig
from buddy.core.datetime_utils import process_today
from buddy.core.logging import get_logger

logger = get_logger(__name__)

THROTTLE_PREFIX = "throttle"

# Day bucketing clock: the scheduling process's local calendar day.
DayClock = Callable[[], date]
PROCESS_LOCAL_DAY: DayClock = process_today


class ThrottleCounter:
    """Daily counter bounding free-tier conversation starts."""

    def __init__(
        self,
        redis_client: redis.Redis,
        config: ThrottleConfig,
        today: DayClock = PROCESS_LOCAL_DAY,
    ) -> None:
        self._redis = redis_client
        self._cap = config.daily_cap
        self._ttl_seconds = config.ttl_seconds
        self._today = today

    @property
    def daily_cap(self) -> int:
        return self._cap

    def key(self, subscriber_id: str) -> str:
        return f"{THROTTLE_PREFIX}:{subscriber_id}:{self._today().isoformat()}"

    async def increment(self, subscriber_id: str) -> int:
        """Atomically increment today's count and return the new value.

        ``SET key 0 EX ttl NX`` followed by ``INCR key`` inside one MULTI/EXEC:
        the first writer creates the key with its expiry, every writer
        increments, and INCR keeps whatever TTL the key already has.
        """
        key = self.key(subscriber_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=self._ttl_seconds, nx=True)
            pipe.incr(key)
            _, count = await pipe.execute()

        logger.bind(subscriber_id=subscriber_id, count=count).debug("throttle_incremented")
        return int(count)

    async def count(self, subscriber_id: str) -> int:
        """Today's count (0 if no key)."""
        raw = await self._redis.get(self.key(subscriber_id))
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            logger.bind(subscriber_id=subscriber_id, raw=raw).warning("throttle_count_malformed")
            return 0

    async def can_proceed(self, subscriber_id: str) -> bool:
        """True iff today's count is below the daily cap."""
        return await self.count(subscriber_id) < self._cap

    async def ttl(self, subscriber_id: str) -> int:
        """Remaining seconds on today's key (-2 if absent, -1 if no expiry)."""
        return int(await self._redis.ttl(self.key(subscriber_id)))

    async def try_acquire(self, subscriber_id: str) -> bool:
        """Atomically check the cap and, if below it, increment.

        Optimistic transaction: WATCH the key, read the count, and only queue
        the create-with-expiry + increment when the cap allows it. A concurrent
        write between WATCH and EXEC aborts the transaction and the check is
        retried.
        """
        key = self.key(subscriber_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    current = int(raw) if raw is not None else 0
                    if current >= self._cap:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(key, 0, ex=self._ttl_seconds, nx=True)
                    pipe.incr(key)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.bind(subscriber_id=subscriber_id).debug("throttle_acquire_retry")
                    continue
