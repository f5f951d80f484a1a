"""Tests for retry policies and helpers."""

from unittest.mock import AsyncMock

import pytest

from chatmesh.core.errors import ErrorCode, StoreError
from chatmesh.core.types import Ok, Err
from chatmesh.reliability.retry import (
    RetryContext,
    RetryPolicy,
    calculate_backoff,
    retry_result,
    retry_with_backoff,
)

FAST = RetryPolicy(max_retries=2, base_delay_ms=1, max_delay_ms=1)


class TestBackoff:
    def test_exponential_without_jitter(self) -> None:
        delays = [calculate_backoff(n, 10, 1000, 2.0, jitter=False) for n in range(4)]
        assert delays == [10, 20, 40, 80]

    def test_capped(self) -> None:
        assert calculate_backoff(20, 10, 500, 2.0, jitter=False) == 500

    def test_full_jitter_bounds(self) -> None:
        for _ in range(50):
            assert 0 <= calculate_backoff(3, 10, 1000, 2.0, jitter=True) <= 80

    def test_conflict_policy_attempts(self) -> None:
        policy = RetryPolicy.for_conflicts(max_attempts=4)
        assert len(RetryContext(policy).attempts()) == 4
        assert RetryPolicy.no_retry().max_retries == 0


class TestRetryResult:
    """Test retries of Result-returning store calls."""

    @pytest.mark.asyncio
    async def test_retries_unavailable_then_succeeds(self) -> None:
        call = AsyncMock(side_effect=[
            Err(StoreError.unavailable("get", "k")),
            Ok("value"),
        ])
        assert (await retry_result(call, FAST, "get")).unwrap() == "value"
        assert call.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_policy(self) -> None:
        call = AsyncMock(return_value=Err(StoreError.unavailable("get", "k")))
        result = await retry_result(call, FAST, "get")
        assert result.error.code is ErrorCode.STORE_UNAVAILABLE
        assert call.await_count == 3

    @pytest.mark.asyncio
    async def test_conflicts_are_not_retried(self) -> None:
        call = AsyncMock(return_value=Err(StoreError.conflict("k", 1, 2)))
        result = await retry_result(call, FAST)
        assert result.error.is_conflict
        assert call.await_count == 1


class TestRetryWithBackoff:
    """Test retries of exception-raising coroutines."""

    @pytest.mark.asyncio
    async def test_recovers_from_exception(self) -> None:
        call = AsyncMock(side_effect=[ConnectionError("down"), "pong"])
        assert (await retry_with_backoff(call, FAST)).unwrap() == "pong"

    @pytest.mark.asyncio
    async def test_exhaustion(self) -> None:
        call = AsyncMock(side_effect=ConnectionError("down"))
        result = await retry_with_backoff(call, FAST)
        assert result.error.code is ErrorCode.RETRY_EXHAUSTED
        assert result.error.context["attempts"] == 3

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self) -> None:
        policy = RetryPolicy(max_retries=5, base_delay_ms=1, non_retryable_exceptions=(KeyError,))
        call = AsyncMock(side_effect=KeyError("bad"))
        assert (await retry_with_backoff(call, policy)).is_err()
        assert call.await_count == 1


class TestRetryContext:
    @pytest.mark.asyncio
    async def test_tracks_attempts(self) -> None:
        ctx = RetryContext(FAST)
        for attempt in ctx.attempts():
            if attempt < 2:
                await ctx.fail(StoreError.conflict("k", attempt))
                continue
            ctx.success()
            break

        assert ctx.succeeded
        assert ctx.attempt_count == 2
        assert ctx.last_error.is_conflict
