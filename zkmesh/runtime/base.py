"""
Coordination Runtime Abstraction

The runtime owns the wire protocol, connection management and session
keepalive. The client above it only sees:

- synchronous node operations returning Result[value, ErrorCode]
- an opaque handle per native session
- a blocking notification source carrying the watch context each
  notification was registered with

Contract:
    - Connection-state changes are delivered to the session context AND
      to every outstanding watch context of the handle.
    - A watch context fires at most once for node events; it is forgotten
      by the runtime after firing.
    - Calls never raise for service-reported outcomes; they return the
      status code instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from zkmesh.core.types import Result, ACL, ClientId, EventType, State, Stat
from zkmesh.core.errors import ErrorCode

# Native session handle. Opaque to callers.
Handle = int


@dataclass(frozen=True, slots=True)
class RawNotification:
    """A notification as pushed by the runtime, before routing."""

    context: int
    type: EventType
    path: str
    state: State


class CoordinationRuntime(ABC):
    """
    Abstract native client library.

    Implementations: KazooRuntime (real ensembles), InMemoryRuntime
    (in-process service for development and tests).
    """

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================
    @abstractmethod
    def connect(
        self,
        servers: str,
        timeout_ms: int,
        client_id: Optional[ClientId],
        context: int,
    ) -> Result[Handle, ErrorCode]:
        """
        Begin establishing a session.

        Returns before the handshake completes; connectivity transitions
        are reported as SESSION notifications on ``context``.
        """

    @abstractmethod
    def close(self, handle: Handle) -> Result[None, ErrorCode]:
        """Release the native session. The handle is invalid afterwards."""

    @abstractmethod
    def client_id(self, handle: Handle) -> Result[ClientId, ErrorCode]:
        """Resumption token of the native session."""

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================
    @abstractmethod
    def get(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[tuple[bytes, Stat], ErrorCode]: ...

    @abstractmethod
    def exists(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[Stat, ErrorCode]:
        """
        Stat of ``path``.

        A missing node returns NONODE; a watch context is installed
        regardless and fires when the node is created.
        """

    @abstractmethod
    def children(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[tuple[list[str], Stat], ErrorCode]: ...

    @abstractmethod
    def create(
        self,
        handle: Handle,
        path: str,
        value: bytes,
        flags: int,
        acl: Sequence[ACL],
    ) -> Result[str, ErrorCode]:
        """Create a node, returning the actual path (sequence suffix included)."""

    @abstractmethod
    def set(
        self, handle: Handle, path: str, value: bytes, version: int
    ) -> Result[Stat, ErrorCode]: ...

    @abstractmethod
    def delete(self, handle: Handle, path: str, version: int) -> Result[None, ErrorCode]: ...

    @abstractmethod
    def get_acl(self, handle: Handle, path: str) -> Result[tuple[list[ACL], Stat], ErrorCode]: ...

    @abstractmethod
    def set_acl(
        self, handle: Handle, path: str, acl: Sequence[ACL], version: int
    ) -> Result[None, ErrorCode]: ...

    @abstractmethod
    def add_auth(self, handle: Handle, scheme: str, credential: bytes) -> Result[None, ErrorCode]: ...

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================
    @abstractmethod
    def wait_notification(self, timeout: Optional[float] = None) -> Optional[RawNotification]:
        """
        Block until the next notification is available.

        Returns None when ``timeout`` elapses first.
        """

    def status_string(self, code: ErrorCode) -> str:
        """Human-readable text for a status code."""
        return code.text

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def validate_servers(servers: str) -> bool:
    """True when ``servers`` is a comma-separated list of host:port addresses."""
    if not isinstance(servers, str) or not servers.strip():
        return False
    for address in servers.split(","):
        host, sep, port = address.strip().rpartition(":")
        if not sep or not host or not port.isdigit():
            return False
        if not 0 < int(port) < 65536:
            return False
    return True


def runtime_for(name: str, **kwargs: Any) -> CoordinationRuntime:
    """
    Build a runtime by configuration name ("kazoo" or "memory").

    Raises:
        ValueError: unknown runtime name
    """
    if name == "kazoo":
        from zkmesh.runtime.kazoo_runtime import KazooRuntime
        return KazooRuntime(**kwargs)
    if name == "memory":
        from zkmesh.runtime.memory import InMemoryRuntime
        return InMemoryRuntime(**kwargs)
    raise ValueError(f"Unknown runtime '{name}'")
