"""Exponential backoff for outbound calls to messaging providers.

Only transport-level failures are retried here. A provider that answers with
an error status is a delivery failure, reported to the scheduler as such, and
handled by its own (much longer) soft backoff.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

from buddy.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 5.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (httpx.TransportError,)
    )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        delay = min(self.backoff_base * (2**attempt), self.backoff_max)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Execute async function with exponential backoff retry.

    Each retry waits min(backoff_base * 2^attempt, backoff_max) seconds,
    scaled by a random factor in [0.5, 1.5) if jitter is enabled.

    Args:
        fn: Async function to execute (no arguments)
        config: Retry configuration, uses defaults if not provided
        operation_name: Name for logging purposes

    Returns:
        Result of fn()

    Raises:
        Exception: The last retryable exception once attempts are exhausted;
            non-retryable exceptions propagate immediately.
    """
    config = config or RetryConfig()

    for attempt in range(config.max_attempts):
        try:
            return await fn()
        except config.retryable_exceptions as e:
            if attempt + 1 >= config.max_attempts:
                logger.bind(
                    operation=operation_name,
                    attempts=config.max_attempts,
                    error=str(e),
                ).error("retry_exhausted")
                raise

            delay = config.delay_for(attempt)
            logger.bind(
                operation=operation_name,
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)

    raise RuntimeError(f"retry_with_backoff called with max_attempts={config.max_attempts}")
