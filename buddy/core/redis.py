"""Async Redis client construction."""

import redis.asyncio as redis

from buddy.config import Settings


def create_redis(settings: Settings) -> redis.Redis:
    """Create the shared Redis client.

    Responses are decoded to ``str`` so stores can work with JSON text directly.
    """
    return redis.from_url(settings.redis_url, decode_responses=True)
