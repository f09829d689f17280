"""
Unit Tests: Retry Policy

Tests:
    - Attempt iteration for bounded and unbounded policies
    - Backoff calculation with and without jitter
"""

import itertools

from zkmesh.core.config import RetryChangeConfig
from zkmesh.reliability.retry import RetryPolicy, calculate_backoff


class TestAttempts:
    """Tests for RetryPolicy.attempts()."""

    def test_bounded(self):
        assert list(RetryPolicy(max_retries=2).attempts()) == [0, 1, 2]
        assert list(RetryPolicy.no_retry().attempts()) == [0]
        assert RetryPolicy.default().bounded

    def test_unbounded(self):
        policy = RetryPolicy.unbounded()
        assert not policy.bounded
        assert list(itertools.islice(policy.attempts(), 100)) == list(range(100))

    def test_unbounded_never_sleeps(self):
        policy = RetryPolicy.unbounded()
        assert policy.sleep(0) == 0
        assert policy.sleep(20) == 0


class TestBackoff:
    """Tests for calculate_backoff."""

    def test_exponential(self):
        delays = [
            calculate_backoff(n, base_delay_ms=10, max_delay_ms=1000, exponential_base=2.0, jitter=False)
            for n in range(4)
        ]
        assert delays == [10, 20, 40, 80]

    def test_capped(self):
        delay = calculate_backoff(20, base_delay_ms=10, max_delay_ms=500, exponential_base=2.0, jitter=False)
        assert delay == 500

    def test_jitter_within_bounds(self):
        for attempt in range(10):
            delay = calculate_backoff(attempt, 10, 100, 2.0, jitter=True)
            assert 0 <= delay <= min(100, 10 * 2 ** attempt)

    def test_policy_delay(self):
        policy = RetryPolicy(base_delay_ms=5, max_delay_ms=15, jitter=False)
        assert [policy.delay_ms(n) for n in range(4)] == [5, 10, 15, 15]


class TestFromConfig:
    """Tests for RetryPolicy.from_config()."""

    def test_default_is_unbounded(self):
        policy = RetryPolicy.from_config(RetryChangeConfig())
        assert not policy.bounded
        assert policy.delay_ms(5) == 0

    def test_max_attempts(self):
        policy = RetryPolicy.from_config(RetryChangeConfig(max_attempts=3, base_delay_ms=5))
        assert list(policy.attempts()) == [0, 1, 2]
        assert policy.jitter
