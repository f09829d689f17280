"""
Reliability module: Retry policies for optimistic concurrency loops.
"""

from zkmesh.reliability.retry import RetryPolicy, RetryStats, calculate_backoff

__all__ = [
    "RetryPolicy",
    "RetryStats",
    "calculate_backoff",
]
