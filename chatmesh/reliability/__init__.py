"""
Reliability module: retry with backoff for store calls and CAS loops.
"""

from chatmesh.reliability.retry import (
    RetryContext,
    RetryPolicy,
    calculate_backoff,
    retry_result,
    retry_with_backoff,
)

__all__ = [
    "RetryContext",
    "RetryPolicy",
    "calculate_backoff",
    "retry_result",
    "retry_with_backoff",
]
