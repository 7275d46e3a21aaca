"""Tests for per-subscriber Redis leases."""

import pytest

from buddy.core.lease import SubscriberLease

pytestmark = pytest.mark.asyncio


@pytest.fixture
def lease(redis_client) -> SubscriberLease:
    return SubscriberLease(redis_client, ttl_seconds=30)


class TestAcquireRelease:
    """Tests for acquire and release."""

    async def test_acquire_returns_token(self, lease, redis_client):
        token = await lease.acquire("sub-1")

        assert token is not None
        assert await redis_client.get("lease:sub-1") == token

    async def test_acquire_sets_expiry(self, lease, redis_client):
        await lease.acquire("sub-1")

        pttl = await redis_client.pttl("lease:sub-1")
        assert 0 < pttl <= 30_000

    async def test_second_acquire_fails_while_held(self, lease):
        assert await lease.acquire("sub-1") is not None
        assert await lease.acquire("sub-1") is None

    async def test_leases_are_per_subscriber(self, lease):
        assert await lease.acquire("sub-1") is not None
        assert await lease.acquire("sub-2") is not None

    async def test_release_with_token(self, lease, redis_client):
        token = await lease.acquire("sub-1")

        assert await lease.release("sub-1", token) is True
        assert await redis_client.exists("lease:sub-1") == 0

    async def test_release_with_wrong_token_keeps_lease(self, lease, redis_client):
        token = await lease.acquire("sub-1")

        assert await lease.release("sub-1", "someone-else") is False
        assert await redis_client.get("lease:sub-1") == token

    async def test_expired_lease_taken_over_is_not_released_by_old_holder(
        self, lease, redis_client
    ):
        """A holder whose lease expired must not delete the new holder's lease."""
        old_token = await lease.acquire("sub-1")
        await redis_client.delete("lease:sub-1")  # simulate expiry
        new_token = await lease.acquire("sub-1")

        assert await lease.release("sub-1", old_token) is False
        assert await redis_client.get("lease:sub-1") == new_token


class TestHold:
    """Tests for the hold context manager."""

    async def test_hold_acquires_and_releases(self, lease, redis_client):
        async with lease.hold("sub-1") as acquired:
            assert acquired is True
            assert await redis_client.exists("lease:sub-1") == 1

        assert await redis_client.exists("lease:sub-1") == 0

    async def test_hold_reports_contention(self, lease, redis_client):
        token = await lease.acquire("sub-1")

        async with lease.hold("sub-1") as acquired:
            assert acquired is False

        # Another holder's lease is untouched
        assert await redis_client.get("lease:sub-1") == token

    async def test_hold_releases_on_error(self, lease, redis_client):
        with pytest.raises(RuntimeError):
            async with lease.hold("sub-1"):
                raise RuntimeError("boom")

        assert await redis_client.exists("lease:sub-1") == 0
