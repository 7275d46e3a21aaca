"""Daily session delivery scheduler.

Runs on a fixed interval. Each tick scans all subscribers and, for every
subscriber whose ``next_delivery_at`` has come:

1. checks the trial gate and the free-tier throttle (a throttled subscriber
   gets a one-time warning and is rescheduled for tomorrow),
2. computes and persists the next delivery time *before* any external send,
3. increments the throttle counter, creates a digest (best-effort), resets the
   conversation checkpoint, asks the agent for an opener and sends it.

Failures stay with the subscriber they happened to: a failed send retries
after the soft backoff, any unexpected error after the hard backoff, and the
rest of the batch carries on.

Ticks are single-flight within a process. Across processes, each subscriber
is processed under a Redis lease and its document is re-read after the lease
is taken, so a stale due-check can never cause a second send.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TypeVar

from buddy.config import AppConfig
from buddy.core.datetime_utils import parse_instant, to_iso, utc_now
from buddy.core.lease import SubscriberLease
from buddy.core.logging import get_logger
from buddy.delivery import trial
from buddy.delivery.checkpoints import ConversationCheckpointStore
from buddy.delivery.throttle import ThrottleCounter
from buddy.delivery.windows import next_delivery_time
from buddy.schemas.subscriber import Subscriber
from buddy.services.agent import Agent
from buddy.services.digest import DigestCreator
from buddy.services.messaging import MessagingGateway, SendResult
from buddy.services.subscribers import SubscriberRepository

logger = get_logger(__name__)

T = TypeVar("T")


class Outcome(StrEnum):
    """What happened to one subscriber during a tick."""

    NOT_DUE = "not_due"
    LOCKED = "locked"
    WARNED = "warned"
    SENT = "sent"
    SOFT_FAILURE = "soft_failure"
    HARD_FAILURE = "hard_failure"


@dataclass
class TickResult:
    """Counts for one tick."""

    total: int = 0
    due: int = 0
    sent: int = 0
    warned: int = 0
    locked: int = 0
    soft_failures: int = 0
    hard_failures: int = 0
    skipped_overlap: bool = False

    def record(self, outcome: Outcome) -> None:
        match outcome:
            case Outcome.NOT_DUE:
                return
            case Outcome.LOCKED:
                self.locked += 1
                return
        self.due += 1
        match outcome:
            case Outcome.SENT:
                self.sent += 1
            case Outcome.WARNED:
                self.warned += 1
            case Outcome.SOFT_FAILURE:
                self.soft_failures += 1
            case Outcome.HARD_FAILURE:
                self.hard_failures += 1


class DeliveryScheduler:
    """Orchestrates one proactive session start per subscriber per day."""

    def __init__(
        self,
        *,
        subscribers: SubscriberRepository,
        throttle: ThrottleCounter,
        checkpoints: ConversationCheckpointStore,
        agent: Agent,
        gateway: MessagingGateway,
        digest: DigestCreator,
        lease: SubscriberLease,
        config: AppConfig,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self._subscribers = subscribers
        self._throttle = throttle
        self._checkpoints = checkpoints
        self._agent = agent
        self._gateway = gateway
        self._digest = digest
        self._lease = lease
        self._delivery_config = config.delivery
        self._config = config.scheduler
        self._clock = clock
        self._rng = rng or random.Random()
        self._tick_lock = asyncio.Lock()

    async def tick(self) -> TickResult:
        """Process every due subscriber once. Never raises."""
        if self._tick_lock.locked():
            logger.warning("delivery_tick_skipped_overlap")
            return TickResult(skipped_overlap=True)

        async with self._tick_lock:
            result = TickResult()
            try:
                now = self._clock()
                subscribers = await self._subscribers.list_all()
                result.total = len(subscribers)

                semaphore = asyncio.Semaphore(self._config.max_concurrency)

                async def _guarded(subscriber: Subscriber) -> Outcome:
                    async with semaphore:
                        return await self.process_subscriber(subscriber, now)

                outcomes = await asyncio.gather(
                    *(_guarded(s) for s in subscribers), return_exceptions=True
                )
                for subscriber, outcome in zip(subscribers, outcomes):
                    if isinstance(outcome, BaseException):
                        logger.bind(
                            subscriber_id=subscriber.id, error=str(outcome)
                        ).error("delivery_subscriber_crashed")
                        result.record(Outcome.HARD_FAILURE)
                    else:
                        result.record(outcome)

            except Exception as e:
                logger.bind(error=str(e)).error("delivery_tick_failed")
                return result

            if result.due > 0 or result.locked > 0:
                logger.bind(
                    total=result.total,
                    due=result.due,
                    sent=result.sent,
                    warned=result.warned,
                    locked=result.locked,
                    soft_failures=result.soft_failures,
                    hard_failures=result.hard_failures,
                ).info("delivery_tick_completed")
            else:
                logger.bind(total=result.total).debug("delivery_tick_nothing_due")
            return result

    def is_due(self, subscriber: Subscriber, now: datetime) -> bool:
        """Due when ``next_delivery_at`` is unset, unparsable, or not after ``now``."""
        due_at = parse_instant(subscriber.next_delivery_at)
        if due_at is None:
            return True
        return now >= due_at

    async def process_subscriber(self, subscriber: Subscriber, now: datetime) -> Outcome:
        """Run the delivery decision for one subscriber under its lease."""
        if not self.is_due(subscriber, now):
            return Outcome.NOT_DUE

        async with self._lease.hold(subscriber.id) as acquired:
            if not acquired:
                logger.bind(subscriber_id=subscriber.id).debug("delivery_lease_held_elsewhere")
                return Outcome.LOCKED

            fresh = await self._subscribers.get(subscriber.id)
            if fresh is None or not self.is_due(fresh, now):
                return Outcome.NOT_DUE

            return await self._dispatch(fresh, now)

    async def _dispatch(self, subscriber: Subscriber, now: datetime) -> Outcome:
        sid = subscriber.id
        try:
            if parse_instant(subscriber.next_delivery_at) is None:
                logger.bind(
                    subscriber_id=sid, raw=subscriber.next_delivery_at
                ).info("next_delivery_unset_scheduling_fallback")
                await self._reschedule(sid, now + self._config.fallback)

            decision = await self._trial_decision(subscriber, now)

            if decision.throttle and not await self._throttle.can_proceed(sid):
                await self._external(self._gateway.send(sid, self._config.throttle_warning_message))
                await self._reschedule(sid, now + self._config.throttled_reschedule)
                logger.bind(subscriber_id=sid).info("delivery_throttled_warning_sent")
                return Outcome.WARNED

            next_time = next_delivery_time(
                now,
                subscriber.timezone,
                subscriber.delivery_preference,
                self._delivery_config,
                self._rng,
            )
            if next_time <= now + self._config.min_lead:
                logger.bind(
                    subscriber_id=sid,
                    calculated_next=to_iso(next_time),
                    now=to_iso(now),
                ).warning("next_delivery_too_close_clamping")
                next_time = now + self._config.clamp

            # Persisted before sending so an overlapping run sees it as not due
            await self._reschedule(sid, next_time)

            await self._throttle.increment(sid)
            await self._create_digest(subscriber)
            await self._checkpoints.reset(sid)

            message = await self._external(
                self._agent.initiate_conversation(subscriber, self.build_prompt(decision), "")
            )
            try:
                sent = await self._external(self._gateway.send(sid, message))
            except TimeoutError:
                logger.bind(subscriber_id=sid).warning("delivery_send_timed_out")
                sent = SendResult(successful=0, failed=1)

            # Nothing delivered is a failed send, even when nothing was attempted
            if not sent.ok or sent.successful == 0:
                retry_at = self._clock() + self._config.soft_retry
                logger.bind(
                    subscriber_id=sid, failed=sent.failed, retry_at=to_iso(retry_at)
                ).error("delivery_send_failed")
                await self._reschedule(sid, retry_at)
                return Outcome.SOFT_FAILURE

            logger.bind(subscriber_id=sid, next_delivery_at=to_iso(next_time)).info(
                "delivery_session_started"
            )
            return Outcome.SENT

        except Exception as e:
            retry_at = self._clock() + self._config.hard_retry
            logger.bind(
                subscriber_id=sid, error=str(e), retry_at=to_iso(retry_at)
            ).error("delivery_hard_failure")
            try:
                await self._reschedule(sid, retry_at)
            except Exception as reschedule_error:
                logger.bind(
                    subscriber_id=sid, error=str(reschedule_error)
                ).error("delivery_retry_reschedule_failed")
            return Outcome.HARD_FAILURE

    def build_prompt(self, decision: trial.TrialDecision) -> str:
        """Session-opening prompt, with trial notes appended when they apply."""
        parts = [self._config.daily_prompt]
        if decision.warn:
            parts.append(self._config.trial_warning_note)
        if decision.prompt_subscribe:
            parts.append(self._config.subscribe_prompt_note)
        return "\n\n".join(parts)

    async def _trial_decision(self, subscriber: Subscriber, now: datetime) -> trial.TrialDecision:
        signed_up_at, repaired = trial.resolve_signup(subscriber.signed_up_at, now)
        if repaired:
            logger.bind(
                subscriber_id=subscriber.id, raw=subscriber.signed_up_at
            ).warning("signup_missing_resetting_to_now")
            await self._subscribers.update(subscriber.id, {"signed_up_at": to_iso(signed_up_at)})

        days = trial.days_since_signup(signed_up_at, now)
        return trial.evaluate(days, subscriber.is_premium)

    async def _create_digest(self, subscriber: Subscriber) -> None:
        try:
            await self._external(self._digest.create_digest(subscriber))
        except Exception as e:
            logger.bind(subscriber_id=subscriber.id, error=str(e)).error("digest_creation_failed")

    async def _reschedule(self, subscriber_id: str, at: datetime) -> None:
        await self._subscribers.update(subscriber_id, {"next_delivery_at": to_iso(at)})

    async def _external(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self._config.external_timeout_seconds)
