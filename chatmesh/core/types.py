"""
Shared types: the Ok/Err result pair, identity aliases and clocks.

Engine operations return Result instead of raising for outcomes a user
can cause (busy, room full, not connected) or the store can cause
(conflict, unavailable). Time is injected as a Clock so inactivity
logic runs deterministically under test.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    TypeVar,
    Union,
)

T = TypeVar("T")
E = TypeVar("E")


# =============================================================================
# RESULT
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """An operation that did what was asked; `value` is its outcome."""

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    An expected failure (busy, full, conflict, store down).

    Callers branch on `is_err()` and read `error`; `unwrap()` on an Err is
    a bug in the caller and raises.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        raise RuntimeError(f"unwrap() on {self!r}")

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Union[Ok[T], Err[E]]


# =============================================================================
# IDENTITY TYPES
# =============================================================================
# Stable numeric identity of one user (the transport's chat id).
SessionId = int

# Generated room identifier (uuid4 string).
RoomId = str


# =============================================================================
# CLOCK
# =============================================================================
Clock = Callable[[], float]


def system_clock() -> float:
    """Wall clock in epoch seconds."""
    return time.time()


class ManualClock:
    """
    Settable clock for deterministic inactivity tests and demos.

    Usage:
        clock = ManualClock(start=1_000.0)
        clock.advance(1801)
    """

    __slots__ = ("_now",)

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._now += seconds

    def set(self, now: float) -> None:
        if now < self._now:
            raise ValueError("clock cannot move backwards")
        self._now = now
