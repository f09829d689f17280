"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the client:
- Result/Either monads for zero-exception control flow
- Event, Stat, ACL and ClientId value types
- Status-code driven error hierarchy
- Configuration management with validation
"""

from zkmesh.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
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

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
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
]
