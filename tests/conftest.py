"""
Pytest configuration and fixtures for delivery core tests.

Provides:
- In-memory async Redis (fakeredis), isolated per test
- App configuration built from defaults, independent of config.yml
- Factory fixture for storing subscriber documents
"""

from datetime import UTC, datetime, timedelta

import fakeredis
import pytest
import pytest_asyncio

from buddy.config import AppConfig, Settings
from buddy.core.datetime_utils import to_iso
from buddy.schemas.subscriber import Subscriber
from buddy.services.subscribers import RedisSubscriberRepository

# Fixed "now" used across scheduler tests (a Tuesday, no DST transition nearby)
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class TestSettings(Settings):
    debug: bool = True
    scheduler_enabled: bool = False
    whatsapp_access_token: str = "test-token"
    whatsapp_phone_number_id: str = "100200300"
    whatsapp_api_base: str = "https://graph.test/v18.0"


@pytest.fixture
def test_settings() -> TestSettings:
    return TestSettings(_env_file=None)


@pytest.fixture
def app_config(test_settings) -> AppConfig:
    """Configuration with every value at its default."""
    return AppConfig(settings=test_settings, data={})


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def redis_client(redis_server):
    """Async Redis client backed by a fresh in-memory server."""
    client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def subscriber_repo(redis_client) -> RedisSubscriberRepository:
    return RedisSubscriberRepository(redis_client)


@pytest.fixture
def subscriber_factory(subscriber_repo):
    """Factory for storing subscribers.

    Defaults to a non-premium subscriber who signed up today and is due now.
    """

    async def _create_subscriber(
        subscriber_id: str = "15550001111",
        timezone: str | None = "UTC",
        delivery_preference: dict | None = None,
        next_delivery_at: str | None = to_iso(NOW - timedelta(minutes=1)),
        is_premium: bool = False,
        signed_up_at: str | None = to_iso(NOW),
        **extra,
    ) -> Subscriber:
        subscriber = Subscriber(
            id=subscriber_id,
            timezone=timezone,
            delivery_preference=delivery_preference or {"type": "morning"},
            next_delivery_at=next_delivery_at,
            is_premium=is_premium,
            signed_up_at=signed_up_at,
            **extra,
        )
        await subscriber_repo.save(subscriber)
        return subscriber

    return _create_subscriber
