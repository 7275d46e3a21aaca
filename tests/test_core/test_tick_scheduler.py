"""Tests for the APScheduler tick driver."""

from unittest.mock import AsyncMock

import pytest

from buddy.core.scheduler import DELIVERY_JOB_ID, TickScheduler

pytestmark = pytest.mark.asyncio


class TestTickScheduler:
    """Tests for TickScheduler."""

    async def test_start_registers_single_flight_job(self, app_config):
        ticks = TickScheduler(AsyncMock(), app_config.scheduler)

        scheduler = ticks.start()
        try:
            job = scheduler.get_job(DELIVERY_JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
            assert job.trigger.interval.total_seconds() == app_config.scheduler.tick_interval_seconds
            assert ticks.running is True
            assert ticks.next_fire_time() is not None
        finally:
            ticks.stop()

        assert ticks.running is False
        assert ticks.next_fire_time() is None

    async def test_start_is_idempotent(self, app_config):
        ticks = TickScheduler(AsyncMock(), app_config.scheduler)

        first = ticks.start()
        try:
            assert ticks.start() is first
            assert len(first.get_jobs()) == 1
        finally:
            ticks.stop()

    async def test_job_runs_delivery_tick(self, app_config):
        delivery = AsyncMock()
        ticks = TickScheduler(delivery, app_config.scheduler)

        await ticks._run_tick()

        delivery.tick.assert_awaited_once()

    async def test_stop_without_start_is_noop(self, app_config):
        TickScheduler(AsyncMock(), app_config.scheduler).stop()
