"""Exponential backoff for establishing database connections.

Only connection establishment is retried. Batch copies are never retried
blindly: a failed batch may already be partially visible in the destination.
"""

import asyncio
import random
from collections.abc import Iterator
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from utils.logging import get_logger

T = TypeVar("T")


class RetryConfig:
    """How often, and how patiently, to retry an operation."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: tuple[type[BaseException], ...] = (OSError,),
    ) -> None:
        """Initialize retry configuration.

        Args:
            max_attempts: Total attempts including the first one
            initial_delay: Pause before the second attempt, in seconds
            max_delay: Upper bound for any single pause
            exponential_base: Growth factor between pauses
            jitter: Add up to 10% random extra to each pause
            retryable_exceptions: Exception types that trigger another attempt
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions

    def delays(self) -> Iterator[float]:
        """Pauses between consecutive attempts; one fewer than ``max_attempts``."""
        for attempt in range(self.max_attempts - 1):
            yield calculate_backoff_delay(
                attempt,
                initial_delay=self.initial_delay,
                max_delay=self.max_delay,
                exponential_base=self.exponential_base,
                jitter=self.jitter,
            )


def calculate_backoff_delay(
    attempt: int,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Pause after the zero-indexed ``attempt`` failed."""
    delay = min(initial_delay * (exponential_base**attempt), max_delay)
    if jitter:
        delay += delay * 0.1 * random.random()
    return delay


async def retry_async(
    operation: str,
    attempt: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    logger: Optional[structlog.BoundLogger] = None,
) -> T:
    """Await ``attempt()`` until it succeeds or the retry budget is spent.

    Args:
        operation: Label for log events, e.g. ``connect source``
        attempt: Zero-argument factory returning a fresh awaitable per try
        config: Retry configuration (defaults if None)
        logger: Optional logger instance

    Returns:
        The first successful result

    Raises:
        The last retryable exception once every attempt failed, or any
        non-retryable exception immediately
    """
    config = config or RetryConfig()
    logger = logger or get_logger("retry")
    pauses = config.delays()
    tries = 0

    while True:
        tries += 1
        try:
            return await attempt()
        except config.retryable_exceptions as e:
            delay = next(pauses, None)
            if delay is None:
                logger.error(
                    "Giving up after repeated failures",
                    operation=operation,
                    attempts=tries,
                    error=str(e),
                )
                raise
            logger.warning(
                "Attempt failed, retrying",
                operation=operation,
                attempt=tries,
                max_attempts=config.max_attempts,
                delay=round(delay, 2),
                error=str(e),
            )
            await asyncio.sleep(delay)
