"""Subscriber repository.

Subscribers live as JSON documents under ``subscriber:<id>``.
"""

from typing import Any, Protocol

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import WatchError

from buddy.core.logging import get_logger
from buddy.schemas.subscriber import Subscriber

logger = get_logger(__name__)

SUBSCRIBER_PREFIX = "subscriber"


class SubscriberRepository(Protocol):
    """Protocol for subscriber storage used by the scheduler."""

    async def get(self, subscriber_id: str) -> Subscriber | None: ...

    async def list_all(self) -> list[Subscriber]: ...

    async def update(self, subscriber_id: str, changes: dict[str, Any]) -> None: ...


class RedisSubscriberRepository:
    """Subscriber documents on Redis."""

    def __init__(self, redis_client: redis.Redis) -> None:
        self._redis = redis_client

    @staticmethod
    def key(subscriber_id: str) -> str:
        return f"{SUBSCRIBER_PREFIX}:{subscriber_id}"

    async def get(self, subscriber_id: str) -> Subscriber | None:
        raw = await self._redis.get(self.key(subscriber_id))
        if raw is None:
            return None
        return self._parse(subscriber_id, raw)

    async def save(self, subscriber: Subscriber) -> None:
        await self._redis.set(self.key(subscriber.id), subscriber.model_dump_json())

    async def list_all(self) -> list[Subscriber]:
        """All readable subscribers. Malformed documents are logged and skipped.

        Full keyspace scan on every call; fine for small populations.
        """
        subscribers: list[Subscriber] = []
        async for key in self._redis.scan_iter(match=f"{SUBSCRIBER_PREFIX}:*", count=500):
            raw = await self._redis.get(key)
            if raw is None:
                continue
            subscriber = self._parse(key.removeprefix(f"{SUBSCRIBER_PREFIX}:"), raw)
            if subscriber is not None:
                subscribers.append(subscriber)
        return subscribers

    async def update(self, subscriber_id: str, changes: dict[str, Any]) -> None:
        """Merge ``changes`` into the stored document.

        Optimistic transaction on the document key so concurrent writers of
        other fields are not overwritten with a stale copy.

        Raises:
            KeyError: If the subscriber does not exist or cannot be read
        """
        key = self.key(subscriber_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    subscriber = self._parse(subscriber_id, raw) if raw is not None else None
                    if subscriber is None:
                        await pipe.unwatch()
                        raise KeyError(subscriber_id)
                    updated = subscriber.model_copy(update=changes)
                    pipe.multi()
                    pipe.set(key, updated.model_dump_json())
                    await pipe.execute()
                    return
                except WatchError:
                    continue

    @staticmethod
    def _parse(subscriber_id: str, raw: str) -> Subscriber | None:
        try:
            return Subscriber.model_validate_json(raw)
        except ValidationError as e:
            logger.bind(subscriber_id=subscriber_id, error=str(e)).warning("subscriber_malformed")
            return None
