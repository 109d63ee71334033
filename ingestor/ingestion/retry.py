"""
Backoff utilities for calls against a rate-limited provider.

Implements exponential backoff with symmetric jitter, ``Retry-After``
parsing, and a generic retry loop for transient failures.
"""

import asyncio
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from ingestor.ingestion.config import RetryPolicy

logger = structlog.get_logger()

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(
    policy: RetryPolicy, retry_index: int, rng: Optional[random.Random] = None
) -> float:
    """
    Delay before retry number ``retry_index`` (zero-based).

    ``base * exponential_base**retry_index`` spread by ±``jitter`` and then
    capped at ``max_delay``.
    """
    rng = rng or random
    delay = policy.base_delay * (policy.exponential_base**retry_index)
    if policy.jitter:
        delay *= rng.uniform(1 - policy.jitter, 1 + policy.jitter)
    return min(delay, policy.max_delay)


def parse_retry_after(
    value: Optional[str], now: Optional[datetime] = None
) -> Optional[float]:
    """
    Parse a ``Retry-After`` header into seconds.

    Accepts delta-seconds or an HTTP date. Returns None when the header is
    absent, unparseable or not in the future.
    """
    if not value:
        return None
    value = value.strip()

    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        seconds = (when - now).total_seconds()

    if seconds != seconds or seconds <= 0:  # NaN or not in the future
        return None
    return seconds


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
    sleep: Sleep = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    """
    Execute an async function, retrying ``retry_on`` failures with backoff.

    Args:
        func: Async function to execute
        policy: Attempt budget and delay shape
        retry_on: Exception types considered transient
        operation_name: Name for logging
        sleep: Awaitable sleep used between attempts
        rng: Random source for jitter

    Returns:
        Function result

    Raises:
        Exception: The last transient error once the budget is exhausted,
            or any non-transient error immediately
    """
    for attempt in range(policy.max_attempts):
        try:
            return await func()
        except retry_on as e:
            attempt_num = attempt + 1

            if attempt_num >= policy.max_attempts:
                logger.error(
                    "retry.exhausted",
                    operation=operation_name,
                    attempts=attempt_num,
                    error=str(e) or type(e).__name__,
                )
                raise

            delay = backoff_delay(policy, attempt, rng)
            logger.warning(
                "retry.attempt",
                operation=operation_name,
                attempt=attempt_num,
                max_attempts=policy.max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e) or type(e).__name__,
            )
            await sleep(delay)

    raise RuntimeError("retry_with_backoff called with an empty attempt budget")
