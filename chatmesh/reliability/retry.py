"""
Backoff and retry for store access.

Two failure shapes are retried, each with its own loop:

- A store call that could not reach the store (STORE_UNAVAILABLE) is
  simply issued again: `retry_result` for calls that return a Result,
  `retry_with_backoff` for raw client coroutines that raise.
- A lost compare-and-set cannot be repeated as-is; the caller has to
  re-read and recompute. `RetryContext` only bounds that loop and sleeps
  between rounds.

Delays use full jitter, uniform(0, min(cap, base * factor**attempt)), so
handlers that collided on one record do not collide again in lockstep.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Type, TypeVar

from chatmesh.core import constants as C
from chatmesh.core.errors import ChatMeshError, ErrorCode, ReliabilityError
from chatmesh.core.types import Result, Ok, Err

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to wait in between."""

    max_retries: int = C.STORE_RETRY_MAX_ATTEMPTS - 1
    base_delay_ms: int = C.STORE_RETRY_BASE_MS
    max_delay_ms: int = C.STORE_RETRY_MAX_MS
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[Type[BaseException], ...] = (Exception,)
    non_retryable_exceptions: tuple[Type[BaseException], ...] = ()
    attempt_timeout_s: Optional[float] = 10.0

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_retries=0)

    @classmethod
    def for_conflicts(
        cls,
        max_attempts: int = C.CAS_MAX_ATTEMPTS,
        base_delay_ms: int = C.CAS_BACKOFF_BASE_MS,
        max_delay_ms: int = C.CAS_BACKOFF_MAX_MS,
    ) -> RetryPolicy:
        """Many short waits: a lost race usually resolves within milliseconds."""
        return cls(
            max_retries=max(0, max_attempts - 1),
            base_delay_ms=base_delay_ms,
            max_delay_ms=max_delay_ms,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_ms(self, attempt: int) -> float:
        """Wait before retry number `attempt + 1` (attempt is zero-based)."""
        return calculate_backoff(
            attempt, self.base_delay_ms, self.max_delay_ms,
            self.exponential_base, self.jitter,
        )


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    ceiling = min(max_delay_ms, base_delay_ms * exponential_base ** attempt)
    return random.uniform(0, ceiling) if jitter else ceiling


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
) -> Result[T, ReliabilityError]:
    """
    Await `func()` until it returns, raising exceptions counted as failures.

    Each attempt is bounded by `policy.attempt_timeout_s`. An exception in
    `non_retryable_exceptions` ends the loop at once and one outside
    `retryable_exceptions` propagates. Giving up yields
    Err(ReliabilityError.retry_exhausted) with the attempt count and the
    last failure.
    """
    policy = policy or RetryPolicy.default()
    last_failure: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        try:
            return Ok(await asyncio.wait_for(func(), timeout=policy.attempt_timeout_s))
        except policy.non_retryable_exceptions as e:
            return Err(ReliabilityError.retry_exhausted(attempts=attempt + 1, last_error=str(e)))
        except asyncio.TimeoutError as e:
            last_failure = e
        except policy.retryable_exceptions as e:
            last_failure = e

        logger.debug("Attempt %d/%d failed: %r", attempt + 1, policy.max_attempts, last_failure)
        if attempt + 1 < policy.max_attempts:
            await asyncio.sleep(policy.delay_ms(attempt) / 1000)

    return Err(ReliabilityError.retry_exhausted(
        attempts=policy.max_attempts,
        last_error=repr(last_failure),
    ))


async def retry_result(
    func: Callable[[], Awaitable[Result[T, ChatMeshError]]],
    policy: Optional[RetryPolicy] = None,
    operation: str = "operation",
) -> Result[T, ChatMeshError]:
    """
    Re-issue a store call while it reports STORE_UNAVAILABLE.

    Any other outcome, including a conflict, is returned after the first
    attempt. Once the policy is spent the last unavailability error is
    returned unchanged.
    """
    policy = policy or RetryPolicy.default()

    for attempt in range(policy.max_attempts):
        result = await func()
        if result.is_ok() or result.error.code is not ErrorCode.STORE_UNAVAILABLE:
            return result
        if attempt + 1 == policy.max_attempts:
            break
        delay = policy.delay_ms(attempt)
        logger.warning(
            "Store unavailable during %s, retry %d/%d in %.0fms",
            operation, attempt + 1, policy.max_retries, delay,
        )
        await asyncio.sleep(delay / 1000)

    logger.error("Store unavailable during %s after %d attempts", operation, policy.max_attempts)
    return result


class RetryContext:
    """
    Bounds a read-recompute-write loop.

    Usage:
        ctx = RetryContext(RetryPolicy.for_conflicts())
        for attempt in ctx.attempts():
            current = await repo.load(session_id)
            written = await repo.compare_and_set(current, updated)
            if written.is_ok():
                ctx.success()
                break
            await ctx.fail(written.error)
    """

    __slots__ = ("_policy", "_failures", "_last_error", "_succeeded")

    def __init__(self, policy: Optional[RetryPolicy] = None) -> None:
        self._policy = policy or RetryPolicy.for_conflicts()
        self._failures = 0
        self._last_error: Optional[Exception] = None
        self._succeeded = False

    def attempts(self) -> range:
        return range(self._policy.max_attempts)

    def success(self) -> None:
        self._succeeded = True

    async def fail(self, error: Exception) -> None:
        """Record a lost round; sleeps unless it was the last one."""
        self._last_error = error
        self._failures += 1
        if self._failures < self._policy.max_attempts:
            await asyncio.sleep(self._policy.delay_ms(self._failures - 1) / 1000)

    @property
    def succeeded(self) -> bool:
        return self._succeeded

    @property
    def attempt_count(self) -> int:
        """Failed rounds so far."""
        return self._failures

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error
