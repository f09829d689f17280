"""
Runtime module: native coordination client implementations.

- CoordinationRuntime: abstract native library contract
- InMemoryRuntime: in-process service for development and tests
- KazooRuntime: real ensembles through kazoo (imported lazily)
"""

from zkmesh.runtime.base import (
    CoordinationRuntime,
    Handle,
    RawNotification,
    runtime_for,
    validate_servers,
)
from zkmesh.runtime.memory import InMemoryRuntime

__all__ = [
    "CoordinationRuntime",
    "Handle",
    "RawNotification",
    "runtime_for",
    "validate_servers",
    "InMemoryRuntime",
]
