#!/usr/bin/env python3
"""
zkmesh Demo

Dials a session, watches a node, and runs an optimistic counter update.

Usage:
    python -m zkmesh

    # Against a real ensemble
    ZKMESH_RUNTIME=kazoo ZKMESH_SERVERS=zk1:2181,zk2:2181 python -m zkmesh
"""

from __future__ import annotations

import os
import sys
from typing import Optional

from zkmesh.core.config import ZkMeshConfig
from zkmesh.core.types import Ok, Result, CreateFlag, Stat, world_acl
from zkmesh.observability.logging import setup_logging, LogLevel
from zkmesh.observability.metrics import MetricsCollector
from zkmesh.reliability.retry import RetryPolicy
from zkmesh.runtime.base import runtime_for
from zkmesh.session import dial
from zkmesh.watch import EventDispatcher, WatchRegistry

DEMO_ROOT = "/zkmesh-demo"


def bump(old_value: bytes, old_stat: Optional[Stat]) -> Result[bytes, str]:
    return Ok(str(int(old_value or b"0") + 1).encode())


def demo() -> None:
    """Walk through the session and watch lifecycle."""
    print("\n" + "=" * 60)
    print("zkmesh - Session and Watch Demo")
    print("=" * 60 + "\n")

    # The demo defaults to the in-process service
    os.environ.setdefault("ZKMESH_RUNTIME", "memory")

    config_result = ZkMeshConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)

    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        sys.exit(1)

    setup_logging(
        LogLevel.from_name(config.observability.log_level),
        json_output=config.observability.log_json,
    )

    print("✓ Configuration loaded and validated")
    print(f"  Servers: {config.session.servers}")
    print(f"  Runtime: {config.session.runtime}")

    dispatcher = EventDispatcher(
        runtime_for(config.session.runtime),
        WatchRegistry(config.watch),
        overflow_policy=config.watch.overflow_policy,
    )

    dialed = dial(config.session.servers, config.session.timeout_seconds, dispatcher=dispatcher)
    if dialed.is_err():
        print(f"Dial error: {dialed.error}")
        sys.exit(1)
    session, events = dialed.unwrap()

    event = events.receive(timeout=config.session.timeout_seconds)
    print(f"\n1. Session event: {event}")
    if event is None or not event.ok:
        session.close()
        sys.exit(1)

    with session:
        # 2. Watch a node that does not exist yet
        stat, watch = session.exists_and_watch(DEMO_ROOT).unwrap()
        print(f"2. exists({DEMO_ROOT}) -> {stat}; watches pending: {session.watch_count}")

        # 3. Optimistic counter, created on first use
        policy = RetryPolicy.from_config(config.retry_change)
        for _ in range(3):
            result = session.retry_change(
                DEMO_ROOT, CreateFlag.PERSISTENT, world_acl(), bump, policy,
            )
            if result.is_err():
                print(f"   RetryChange error: {result.error}")
        print(f"3. Watch fired: {watch.receive(timeout=1.0)}")

        data, stat = session.get(DEMO_ROOT).unwrap()
        print(f"4. Counter value: {data.decode()} (version {stat.version})")

        children, _ = session.children("/").unwrap()
        print(f"5. Children of /: {children}")

        session.delete(DEMO_ROOT)

    print(f"\n6. Session closed; next session event: {events.receive(timeout=1.0)}")

    if config.observability.metrics_enabled:
        print("\nMetrics:")
        print(MetricsCollector.get_instance().export_prometheus())

    print("\n✓ Demo complete")
    print("=" * 60 + "\n")


def run() -> None:
    """Synchronous entry point."""
    try:
        demo()
    except KeyboardInterrupt:
        print("\nInterrupted")


if __name__ == "__main__":
    run()
