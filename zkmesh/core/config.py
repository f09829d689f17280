"""
Configuration Management for the zkmesh Coordination Client

Provides validated configuration with sensible defaults.
Supports environment variable overrides.

Design:
- Immutable after validation
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from zkmesh.core.types import Result, Ok, Err
from zkmesh.core import constants as C


class OverflowPolicy(Enum):
    """
    What the dispatcher does when a stream cannot take an event.

    ABORT terminates the process; REPORT logs the overflow, retires the
    watch and closes its stream so the consumer observes closure.
    """

    ABORT = "abort"
    REPORT = "report"


@dataclass(frozen=True)
class SessionConfig:
    """Connection parameters for dial()."""

    servers: str = C.DEFAULT_SERVERS
    timeout_ms: int = C.DEFAULT_TIMEOUT_MS
    runtime: str = C.DEFAULT_RUNTIME

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / C.SECOND_MS

    @property
    def server_list(self) -> list[str]:
        return [s.strip() for s in self.servers.split(",") if s.strip()]


@dataclass(frozen=True)
class WatchConfig:
    """Event stream buffering and overflow behaviour."""

    session_buffer: int = C.SESSION_STREAM_CAPACITY
    watch_buffer: int = C.WATCH_STREAM_CAPACITY
    overflow_policy: OverflowPolicy = OverflowPolicy.ABORT


@dataclass(frozen=True)
class RetryChangeConfig:
    """
    Bounds for the optimistic retry loop.

    max_attempts=None keeps the loop unbounded.
    """

    max_attempts: Optional[int] = None
    base_delay_ms: int = C.RETRY_CHANGE_BASE_DELAY_MS
    max_delay_ms: int = C.RETRY_CHANGE_MAX_DELAY_MS


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging and metrics configuration."""

    log_level: str = "INFO"
    log_json: bool = False
    metrics_enabled: bool = True


@dataclass(frozen=True)
class ZkMeshConfig:
    """Root configuration for the client."""

    session: SessionConfig = field(default_factory=SessionConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    retry_change: RetryChangeConfig = field(default_factory=RetryChangeConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Result[ZkMeshConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with ZKMESH_.
        Example: ZKMESH_SERVERS, ZKMESH_TIMEOUT_MS, ZKMESH_RUNTIME
        """
        try:
            session = SessionConfig(
                servers=os.getenv("ZKMESH_SERVERS", C.DEFAULT_SERVERS),
                timeout_ms=int(os.getenv("ZKMESH_TIMEOUT_MS", str(C.DEFAULT_TIMEOUT_MS))),
                runtime=os.getenv("ZKMESH_RUNTIME", C.DEFAULT_RUNTIME),
            )

            watch = WatchConfig(
                overflow_policy=OverflowPolicy(
                    os.getenv("ZKMESH_OVERFLOW_POLICY", OverflowPolicy.ABORT.value).lower()
                ),
            )

            max_attempts = os.getenv("ZKMESH_RETRY_MAX_ATTEMPTS")
            retry_change = RetryChangeConfig(
                max_attempts=int(max_attempts) if max_attempts else None,
            )

            observability = ObservabilityConfig(
                log_level=os.getenv("ZKMESH_LOG_LEVEL", "INFO").upper(),
                log_json=os.getenv("ZKMESH_LOG_JSON", "false").lower() in ("1", "true", "yes"),
                metrics_enabled=os.getenv("ZKMESH_METRICS_ENABLED", "true").lower() in ("1", "true", "yes"),
            )

            return Ok(cls(
                session=session,
                watch=watch,
                retry_change=retry_change,
                observability=observability,
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if not self.session.server_list:
            return Err("At least one server address is required")
        if self.session.timeout_ms < 0:
            return Err("timeout_ms cannot be negative")
        if self.session.runtime not in C.KNOWN_RUNTIMES:
            return Err(f"Unknown runtime '{self.session.runtime}'")
        if self.watch.session_buffer < 1 or self.watch.watch_buffer < 1:
            return Err("Stream buffers must hold at least one event")
        if self.retry_change.max_attempts is not None and self.retry_change.max_attempts < 1:
            return Err("retry max_attempts must be >= 1")
        if self.retry_change.base_delay_ms > self.retry_change.max_delay_ms:
            return Err("retry base_delay_ms cannot exceed max_delay_ms")
        return Ok(None)
