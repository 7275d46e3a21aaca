"""
APScheduler integration for the delivery tick.

One interval job drives ``DeliveryScheduler.tick``. The job is single-flight:
``max_instances=1`` makes APScheduler skip (and log) a firing while the
previous tick is still running, and ``coalesce=True`` collapses a backlog of
missed firings into one.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from buddy.config import SchedulerConfig
from buddy.core.logging import get_logger
from buddy.delivery.scheduler import DeliveryScheduler

logger = get_logger(__name__)

DELIVERY_JOB_ID = "delivery_tick"


class TickScheduler:
    """Owns the APScheduler instance that fires delivery ticks."""

    def __init__(self, delivery: DeliveryScheduler, config: SchedulerConfig) -> None:
        self._delivery = delivery
        self._config = config
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def _run_tick(self) -> None:
        """Delivery tick job; the tick itself never raises."""
        await self._delivery.tick()

    def start(self) -> AsyncIOScheduler:
        """Start the scheduler on the running event loop."""
        if self._scheduler is not None:
            return self._scheduler

        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self._run_tick,
            IntervalTrigger(seconds=self._config.tick_interval_seconds),
            id=DELIVERY_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.bind(
            jobs=[DELIVERY_JOB_ID],
            interval_seconds=self._config.tick_interval_seconds,
        ).info("scheduler_started")
        return scheduler

    def stop(self) -> None:
        """Gracefully stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("scheduler_stopped")

    def next_fire_time(self) -> str | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(DELIVERY_JOB_ID)
        if job is None or job.next_run_time is None:
            return None
        return job.next_run_time.isoformat()
