"""Retry policy engine with exponential backoff, jitter, and ``Retry-After``.

:func:`with_retry` drives an async operation under a :class:`RetryPolicy`.
The operation receives its **0-indexed** attempt number so callers can vary
behaviour (logging, alternate endpoints) per attempt.  On exhaustion the last
error is re-raised unchanged.

Example::

    policy = RetryPolicy(attempts=3)
    data = await with_retry(lambda attempt: client.get("/status"), policy)
"""

from __future__ import annotations

import asyncio
import email.utils
import functools
import logging
import random
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import timezone
from typing import Any, Callable, Optional, TypeVar

from meroclient.exceptions import AbortError, HTTPError, NetworkError, RequestTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCondition = Callable[[BaseException, int], bool]

JITTER_RATIO = 0.2


def default_retry_condition(error: BaseException, remaining: int) -> bool:
    """Decide whether *error* deserves another attempt.

    Args:
        error: The failure raised by the last attempt.
        remaining: How many attempts are left after the one that just failed.

    Returns:
        ``True`` for timeouts, network failures and HTTP 5xx while attempts
        remain; ``False`` for user aborts, other HTTP statuses (429 included)
        and anything unrecognised.
    """
    if remaining <= 0:
        return False
    if isinstance(error, AbortError):
        return False
    if isinstance(error, RequestTimeoutError):
        return True
    if isinstance(error, HTTPError):
        return error.status >= 500
    return isinstance(error, NetworkError)


def retry_on_rate_limit(error: BaseException, remaining: int) -> bool:
    """Default predicate that additionally retries HTTP 429 responses."""
    if remaining > 0 and isinstance(error, HTTPError) and error.status == 429:
        return True
    return default_retry_condition(error, remaining)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape.

    Delays are in seconds.  ``sleep`` is injectable so tests can observe
    computed delays without waiting.
    """

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    retry_condition: RetryCondition = default_retry_condition
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {self.attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")


def compute_backoff_delay(
    attempt_index: int,
    policy: RetryPolicy,
    rand: Callable[[], float] = random.random,
) -> float:
    """Return the jittered delay before retrying after attempt *attempt_index*.

    ``min(max_delay, base_delay * backoff_factor ** attempt_index)`` perturbed
    by up to 20% of that capped value in either direction, floored at zero.
    """
    try:
        raw = policy.base_delay * policy.backoff_factor**attempt_index
    except OverflowError:
        raw = policy.max_delay
    capped = min(policy.max_delay, raw)
    jitter = (rand() - 0.5) * 2 * JITTER_RATIO * capped
    return max(0.0, capped + jitter)


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """Parse a ``Retry-After`` header into seconds from *now*.

    Accepts delta-seconds (``"120"``) or an HTTP-date
    (``"Wed, 21 Oct 2015 07:28:00 GMT"``).  Dates in the past yield ``0.0``.
    Returns ``None`` for missing or unparseable values.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if now is None:
        now = time.time()
    return max(0.0, parsed.timestamp() - now)


def _retry_after_of(error: BaseException) -> Optional[float]:
    if isinstance(error, HTTPError):
        return parse_retry_after(error.retry_after)
    return None


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
) -> T:
    """Invoke *operation* until it succeeds or the policy gives up.

    Args:
        operation: Async callable receiving the 0-indexed attempt number.
        policy: Retry configuration; defaults to :class:`RetryPolicy()`.

    Returns:
        Whatever the first successful attempt returns.

    Raises:
        BaseException: The last attempt's error, unchanged, once the
            predicate declines or the budget is exhausted.  A user abort
            is re-raised immediately whatever the predicate says.
    """
    if policy is None:
        policy = RetryPolicy()

    attempt = 0
    while True:
        try:
            return await operation(attempt)
        except AbortError:
            raise
        except Exception as exc:
            remaining = policy.attempts - attempt - 1
            if not policy.retry_condition(exc, remaining) or remaining <= 0:
                raise
            delay = compute_backoff_delay(attempt, policy)
            hinted = _retry_after_of(exc)
            if hinted is not None:
                delay = max(delay, hinted)
            logger.debug(
                "Attempt %d/%d failed (%s); retrying in %.3fs",
                attempt + 1,
                policy.attempts,
                exc,
                delay,
            )
            await policy.sleep(delay)
            attempt += 1


def retryable(
    policy: Optional[RetryPolicy] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator running an async function under :func:`with_retry`.

    Example::

        @retryable(RetryPolicy(attempts=5))
        async def fetch_contexts():
            return await client.get("/admin-api/contexts")
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await with_retry(lambda _attempt: func(*args, **kwargs), policy)

        return wrapper

    return decorator
