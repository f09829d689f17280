"""
Retry Policy: Exponential Backoff with Jitter

Governs how often an optimistic read-modify-write loop restarts after
losing a race to a concurrent writer:
- Unbounded with no delay by default (restart immediately)
- Bounded attempts on request
- Exponential backoff: base × 2^n, capped
- Full jitter: random(0, backoff) to prevent thundering herd
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Iterator, Optional

from zkmesh.core import constants as C
from zkmesh.core.config import RetryChangeConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    ``max_retries=None`` never gives up.
    """

    max_retries: Optional[int] = 3
    base_delay_ms: int = 10
    max_delay_ms: int = C.RETRY_CHANGE_MAX_DELAY_MS
    exponential_base: float = 2.0
    jitter: bool = True  # Full jitter

    @classmethod
    def default(cls) -> RetryPolicy:
        """Bounded retries with a short backoff."""
        return cls()

    @classmethod
    def unbounded(cls) -> RetryPolicy:
        """Restart immediately, forever."""
        return cls(
            max_retries=None,
            base_delay_ms=C.RETRY_CHANGE_BASE_DELAY_MS,
            max_delay_ms=C.RETRY_CHANGE_MAX_DELAY_MS,
            jitter=False,
        )

    @classmethod
    def from_config(cls, config: RetryChangeConfig) -> RetryPolicy:
        """Policy for RetryChange; unbounded unless max_attempts is set."""
        return cls(
            max_retries=config.max_attempts - 1 if config.max_attempts else None,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
            jitter=config.base_delay_ms > 0,
        )

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Single attempt."""
        return cls(max_retries=0)

    @property
    def bounded(self) -> bool:
        return self.max_retries is not None

    def attempts(self) -> Iterator[int]:
        """Yield attempt numbers starting at 0 until the policy is exhausted."""
        attempt = 0
        while self.max_retries is None or attempt <= self.max_retries:
            yield attempt
            attempt += 1

    def delay_ms(self, attempt: int) -> float:
        return calculate_backoff(
            attempt=attempt,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
        )

    def sleep(self, attempt: int) -> float:
        """Wait before the attempt following ``attempt``; returns the delay."""
        delay = self.delay_ms(attempt)
        if delay > 0:
            logger.debug("Retrying in %.1fms (attempt %d)", delay, attempt + 2)
            time.sleep(delay / C.SECOND_MS)
        return delay


@dataclass
class RetryStats:
    """Retry attempt statistics."""
    total_attempts: int = 0
    conflicts: int = 0
    total_delay_ms: float = 0.0
    last_error: Optional[str] = None


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay with optional jitter.

    Full jitter: random(0, min(cap, base * 2^attempt))
    """
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))

    if jitter:
        delay = random.uniform(0, delay)

    return delay
