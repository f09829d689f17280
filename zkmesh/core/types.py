"""
Core Type Definitions for the zkmesh Coordination Client

Implements Result/Either monads for zero-exception control flow, plus the
value types exchanged with the coordination service:

- Event / EventType / State: watch notifications and connectivity states
- Stat: versioned node metadata snapshot
- ACL / Perm: access control entries
- CreateFlag: node creation modes (ephemeral, sequence)
- ClientId: session resumption token

Numeric values of EventType, State, Perm and CreateFlag match the
ZooKeeper protocol so that runtimes can translate them without tables.
"""

from __future__ import annotations

import base64
import hashlib
import time
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import (
    Any,
    Callable,
    ClassVar,
    Generic,
    Literal,
    Optional,
    TypeVar,
    Union,
)

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """
        Extract value. Safe to call after is_ok() check.

        Returns:
            T: The wrapped success value
        """
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Immutable container for error information.
    Carries full error context for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP WITH NANOSECOND PRECISION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    High-precision timestamp for error and log correlation.

    Stores nanoseconds since Unix epoch.
    """

    nanos: int

    NANOS_PER_SECOND: ClassVar[int] = 1_000_000_000
    NANOS_PER_MILLI: ClassVar[int] = 1_000_000

    @classmethod
    def now(cls) -> Timestamp:
        """Capture current time with nanosecond precision."""
        return cls(nanos=time.time_ns())

    @classmethod
    def from_millis(cls, millis: int) -> Timestamp:
        """Convert milliseconds to Timestamp."""
        return cls(nanos=millis * cls.NANOS_PER_MILLI)

    @property
    def seconds(self) -> float:
        return self.nanos / self.NANOS_PER_SECOND

    @property
    def millis(self) -> int:
        """Convert to milliseconds (truncating)."""
        return self.nanos // self.NANOS_PER_MILLI

    def elapsed_millis(self) -> float:
        """Milliseconds elapsed since this timestamp."""
        return (time.time_ns() - self.nanos) / self.NANOS_PER_MILLI

    def __sub__(self, other: Timestamp) -> int:
        """Subtract timestamps, returning difference in nanos."""
        return self.nanos - other.nanos

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"


# =============================================================================
# EVENT TYPES AND CONNECTION STATES
# =============================================================================
class EventType(IntEnum):
    """
    Watch notification type.

    CLOSED does not exist on the wire; it marks the synthetic event a
    stream yields once it has been closed.
    """

    CREATED = 1
    DELETED = 2
    CHANGED = 3
    CHILD = 4
    SESSION = -1
    NOT_WATCHING = -2
    CLOSED = 0


class State(IntEnum):
    """
    Session connectivity state carried by every event.

    EXPIRED_SESSION and AUTH_FAILED are session-fatal: every guarantee
    tied to the session is void once either is observed.
    """

    EXPIRED_SESSION = -112
    AUTH_FAILED = -113
    CONNECTING = 1
    ASSOCIATING = 2
    CONNECTED = 3
    CLOSED = 0

    @property
    def is_fatal(self) -> bool:
        return self in (State.EXPIRED_SESSION, State.AUTH_FAILED)


_STATE_TEXT: dict[State, str] = {
    State.EXPIRED_SESSION: "ZooKeeper session expired",
    State.AUTH_FAILED: "ZooKeeper authentication failed",
    State.CONNECTING: "ZooKeeper connecting",
    State.ASSOCIATING: "ZooKeeper still associating",
    State.CONNECTED: "ZooKeeper connected",
    State.CLOSED: "ZooKeeper connection closed",
}

_EVENT_TEXT: dict[EventType, str] = {
    EventType.CREATED: "path created: ",
    EventType.DELETED: "path deleted: ",
    EventType.CHANGED: "path changed: ",
    EventType.CHILD: "path children changed: ",
    EventType.NOT_WATCHING: "not watching: ",
}


@dataclass(frozen=True, slots=True)
class Event:
    """
    Notification delivered on an event stream.

    One-shot watch streams may also receive session-fatal events
    (expired session, auth failure), so consumers should check ``ok``
    before treating an event as the change they asked to watch:

        event = stream.receive()
        if not event.ok:
            return Err(event)
    """

    type: EventType
    path: str
    state: State

    @property
    def ok(self) -> bool:
        """True when the event reports the session as usable."""
        return self.state == State.CONNECTED

    @property
    def is_closed(self) -> bool:
        return self.type == EventType.CLOSED and self.state == State.CLOSED

    def __str__(self) -> str:
        text = _STATE_TEXT.get(self.state, f"unknown ZooKeeper state {int(self.state)}")
        if self.type in (EventType.SESSION, EventType.CLOSED):
            return text
        return f"{text}; {_EVENT_TEXT.get(self.type, '')}{self.path}"


# Sentinel yielded by closed streams
CLOSED_EVENT = Event(type=EventType.CLOSED, path="", state=State.CLOSED)


# =============================================================================
# NODE METADATA
# =============================================================================
@dataclass(frozen=True, slots=True)
class Stat:
    """
    Versioned metadata snapshot of a node.

    A fresh snapshot is produced by every read or mutation; it is never
    updated in place.
    """

    czxid: int = 0
    mzxid: int = 0
    ctime: int = 0
    mtime: int = 0
    version: int = 0
    cversion: int = 0
    aversion: int = 0
    ephemeral_owner: int = 0
    data_length: int = 0
    num_children: int = 0
    pzxid: int = 0

    @property
    def is_ephemeral(self) -> bool:
        return self.ephemeral_owner != 0


# =============================================================================
# ACCESS CONTROL
# =============================================================================
class Perm(IntFlag):
    """ACL permission bits."""

    READ = 1
    WRITE = 2
    CREATE = 4
    DELETE = 8
    ADMIN = 16
    ALL = 0x1F


class CreateFlag(IntFlag):
    """Node creation modes."""

    PERSISTENT = 0
    EPHEMERAL = 1
    SEQUENCE = 2


@dataclass(frozen=True, slots=True)
class ACL:
    """
    One access control entry.

    ``scheme`` selects the authentication mechanism ("world", "auth",
    "digest", ...) and ``id`` is interpreted by that scheme.
    """

    perms: int
    scheme: str
    id: str


def world_acl(perms: int = Perm.ALL) -> list[ACL]:
    """ACL granting ``perms`` to anyone."""
    return [ACL(perms=int(perms), scheme="world", id="anyone")]


def auth_acl(perms: int = Perm.ALL) -> list[ACL]:
    """ACL granting ``perms`` to any identity authenticated on the session."""
    return [ACL(perms=int(perms), scheme="auth", id="")]


def digest_id(user: str, password: str) -> str:
    """Server-side digest identity for ``user:password``."""
    raw = hashlib.sha1(f"{user}:{password}".encode("utf-8")).digest()
    return f"{user}:{base64.b64encode(raw).decode('ascii')}"


def digest_acl(user: str, password: str, perms: int = Perm.ALL) -> list[ACL]:
    """ACL granting ``perms`` to the digest identity of ``user``."""
    return [ACL(perms=int(perms), scheme="digest", id=digest_id(user, password))]


# =============================================================================
# SESSION RESUMPTION TOKEN
# =============================================================================
@dataclass(frozen=True, slots=True)
class ClientId:
    """
    Opaque token identifying a server-side session.

    Pass it to redial() to reattach to the same session.
    """

    session_id: int
    password: bytes = field(repr=False)

    def __str__(self) -> str:
        return f"0x{self.session_id:x}"
