"""
zkmesh: Session and Watch-Event Client for ZooKeeper-Style Coordination

A client for a hierarchical coordination service: a tree of versioned
nodes replicated across a cluster.

Core Capabilities:
- One logical session per dial(), with connectivity transitions
  (connecting, connected, expired) reported on a session event stream
- One-shot watches multiplexed onto caller-owned, bounded event streams
- A single background dispatcher that never blocks the network thread
- Optimistic read-modify-write through RetryChange

Runtimes:
- KazooRuntime: real ensembles through kazoo
- InMemoryRuntime: in-process service for development and tests

Usage:
    import zkmesh

    session, events = zkmesh.dial("localhost:2181", 5.0).unwrap()
    assert events.receive().ok

    data, stat, watch = session.get_and_watch("/config").unwrap()
    event = watch.receive()          # fires once, then the stream closes
    session.close()
"""

from typing import Optional

from zkmesh.core.types import (
    Result,
    Ok,
    Err,
    Event,
    EventType,
    State,
    CLOSED_EVENT,
    Stat,
    ACL,
    Perm,
    CreateFlag,
    ClientId,
    world_acl,
    auth_acl,
    digest_acl,
)
from zkmesh.core.errors import (
    ErrorCode,
    ZkError,
    ConnectivityError,
    NodeError,
    SessionError,
    InternalError,
    WatchOverflowError,
    RetryExhaustedError,
)
from zkmesh.core.config import ZkMeshConfig, OverflowPolicy
from zkmesh.reliability.retry import RetryPolicy
from zkmesh.runtime import CoordinationRuntime, InMemoryRuntime
from zkmesh.watch import EventStream, WatchRegistry, EventDispatcher
from zkmesh.session import Session, dial, redial

__version__ = "1.0.0"


def count_pending_watches(registry: Optional[WatchRegistry] = None) -> int:
    """
    Watches not yet fired, across every session of ``registry``.

    Defaults to the process-wide registry. Debugging and testing aid.
    """
    return (registry or WatchRegistry.default()).count_pending()


__all__ = [
    "Result",
    "Ok",
    "Err",
    "Event",
    "EventType",
    "State",
    "CLOSED_EVENT",
    "Stat",
    "ACL",
    "Perm",
    "CreateFlag",
    "ClientId",
    "world_acl",
    "auth_acl",
    "digest_acl",
    "ErrorCode",
    "ZkError",
    "ConnectivityError",
    "NodeError",
    "SessionError",
    "InternalError",
    "WatchOverflowError",
    "RetryExhaustedError",
    "ZkMeshConfig",
    "OverflowPolicy",
    "RetryPolicy",
    "CoordinationRuntime",
    "InMemoryRuntime",
    "EventStream",
    "WatchRegistry",
    "EventDispatcher",
    "Session",
    "dial",
    "redial",
    "count_pending_watches",
    "__version__",
]
