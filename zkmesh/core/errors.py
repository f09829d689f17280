"""
Exhaustive Error Hierarchy for the zkmesh Coordination Client

Design Principles:
- Forbid exceptions for control flow (operations return Result types)
- Map every coordination-service status code to exactly one error class
- Carry full error context for debugging and audit trails

Each error type includes:
- Status code for programmatic handling (ZooKeeper numeric values)
- Human-readable message for logging
- Optional cause chain for root cause analysis
- Timestamp for correlation with session logs

Taxonomy:
- ConnectivityError: cluster unreachable, operation timed out
- NodeError: per-call protocol outcomes (no node, bad version, ...)
- SessionError: session-fatal and lifecycle conditions
- InternalError: runtime inconsistencies reported by the service
- WatchOverflowError: an event stream consumer fell behind
- RetryExhaustedError: a bounded optimistic retry ran out of attempts

Usage:
    result = session.get("/config")
    match result:
        case Ok((data, stat)):
            apply(data)
        case Err(NodeError(code=ErrorCode.NONODE)):
            use_defaults()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from zkmesh.core.types import Timestamp


# =============================================================================
# STATUS CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Coordination-service status codes.

    Values match the ZooKeeper protocol. Codes below -1000 are raised by
    this client only and never travel over the wire.
    """

    OK = 0

    # System and server-side errors
    SYSTEMERROR = -1
    RUNTIMEINCONSISTENCY = -2
    DATAINCONSISTENCY = -3
    CONNECTIONLOSS = -4
    MARSHALLINGERROR = -5
    UNIMPLEMENTED = -6
    OPERATIONTIMEOUT = -7
    BADARGUMENTS = -8
    INVALIDSTATE = -9

    # API errors
    APIERROR = -100
    NONODE = -101
    NOAUTH = -102
    BADVERSION = -103
    NOCHILDRENFOREPHEMERALS = -108
    NODEEXISTS = -110
    NOTEMPTY = -111
    SESSIONEXPIRED = -112
    INVALIDCALLBACK = -113
    INVALIDACL = -114
    AUTHFAILED = -115
    CLOSING = -116
    NOTHING = -117
    SESSIONMOVED = -118

    # Client-side contract errors
    WATCH_OVERFLOW = -1001
    RETRY_EXHAUSTED = -1002

    @property
    def text(self) -> str:
        """Human-readable status text."""
        return STATUS_TEXT.get(self, f"unknown error {self.value}")

    @classmethod
    def from_value(cls, value: int) -> ErrorCode:
        """Map a raw status integer, folding unknown values into SYSTEMERROR."""
        try:
            return cls(value)
        except ValueError:
            return cls.SYSTEMERROR


STATUS_TEXT: dict[ErrorCode, str] = {
    ErrorCode.OK: "ok",
    ErrorCode.SYSTEMERROR: "system error",
    ErrorCode.RUNTIMEINCONSISTENCY: "run time inconsistency",
    ErrorCode.DATAINCONSISTENCY: "data inconsistency",
    ErrorCode.CONNECTIONLOSS: "connection loss",
    ErrorCode.MARSHALLINGERROR: "marshalling error",
    ErrorCode.UNIMPLEMENTED: "unimplemented",
    ErrorCode.OPERATIONTIMEOUT: "operation timeout",
    ErrorCode.BADARGUMENTS: "bad arguments",
    ErrorCode.INVALIDSTATE: "invalid zhandle state",
    ErrorCode.APIERROR: "api error",
    ErrorCode.NONODE: "no node",
    ErrorCode.NOAUTH: "not authenticated",
    ErrorCode.BADVERSION: "bad version",
    ErrorCode.NOCHILDRENFOREPHEMERALS: "no children for ephemerals",
    ErrorCode.NODEEXISTS: "node exists",
    ErrorCode.NOTEMPTY: "not empty",
    ErrorCode.SESSIONEXPIRED: "session expired",
    ErrorCode.INVALIDCALLBACK: "invalid callback",
    ErrorCode.INVALIDACL: "invalid acl",
    ErrorCode.AUTHFAILED: "authentication failed",
    ErrorCode.CLOSING: "zookeeper is closing",
    ErrorCode.NOTHING: "(not error) no server responses to process",
    ErrorCode.SESSIONMOVED: "session moved to another server, so operation is ignored",
    ErrorCode.WATCH_OVERFLOW: "watch event stream buffer is full",
    ErrorCode.RETRY_EXHAUSTED: "optimistic retry attempts exhausted",
}


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class ZkError(Exception):
    """
    Base class for all zkmesh errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Status code for programmatic handling
    - Timestamp for correlation
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[Exception] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @classmethod
    def from_status(
        cls,
        code: ErrorCode,
        operation: str = "",
        path: str = "",
        message: Optional[str] = None,
    ) -> ZkError:
        """
        Build the typed error for a status code returned by the runtime.

        The concrete subclass is chosen from the code, so callers may
        match on either the class or the code.
        """
        error_cls = _STATUS_CLASSES.get(code, InternalError)
        context: dict[str, Any] = {}
        if operation:
            context["operation"] = operation
        if path:
            context["path"] = path
        return error_cls(
            code=code,
            message=message or code.text,
            context=context,
        )

    def with_context(self, **kwargs: Any) -> ZkError:
        """Add context to error (returns new instance of the same class)."""
        return type(self)(
            code=self.code,
            message=self.message,
            error_id=self.error_id,
            timestamp=self.timestamp,
            cause=self.cause,
            context={**self.context, **kwargs},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# CONNECTIVITY ERRORS
# =============================================================================
@dataclass
class ConnectivityError(ZkError):
    """
    The cluster could not be reached or did not answer in time.

    The session stream reports the matching state transition.
    """


# =============================================================================
# NODE ERRORS
# =============================================================================
@dataclass
class NodeError(ZkError):
    """
    Outcome of a single node operation rejected by the service.

    Never retried internally, except within RetryChange's restart cases.
    """

    @property
    def path(self) -> str:
        return self.context.get("path", "")


# =============================================================================
# SESSION ERRORS
# =============================================================================
@dataclass
class SessionError(ZkError):
    """
    Session-fatal or lifecycle conditions.

    Expired sessions and authentication failures void every outstanding
    guarantee tied to the session; they are never silently recovered.
    """

    @classmethod
    def closing(cls, operation: str = "close") -> SessionError:
        """The session handle was already released."""
        return cls(
            code=ErrorCode.CLOSING,
            message=ErrorCode.CLOSING.text,
            context={"operation": operation},
        )


# =============================================================================
# INTERNAL ERRORS
# =============================================================================
@dataclass
class InternalError(ZkError):
    """Runtime or server inconsistencies not attributable to the caller."""


# =============================================================================
# CLIENT CONTRACT ERRORS
# =============================================================================
@dataclass
class WatchOverflowError(ZkError):
    """
    A stream could not accept an event without blocking.

    The consumer failed to drain its stream in time; dropping the event
    would break the delivery contract, so this is never swallowed.
    """

    @property
    def watch_id(self) -> int:
        return self.context.get("watch_id", -1)

    @classmethod
    def stream_full(cls, watch_id: int, kind: str, capacity: int) -> WatchOverflowError:
        return cls(
            code=ErrorCode.WATCH_OVERFLOW,
            message=f"{kind.capitalize()} event stream buffer is full",
            context={"watch_id": watch_id, "kind": kind, "capacity": capacity},
        )


@dataclass
class RetryExhaustedError(ZkError):
    """Bounded RetryChange gave up after repeated lost races."""

    @classmethod
    def attempts(cls, path: str, attempts: int, last: Optional[ZkError]) -> RetryExhaustedError:
        return cls(
            code=ErrorCode.RETRY_EXHAUSTED,
            message=f"Retry exhausted after {attempts} attempts on {path}",
            cause=last,
            context={
                "path": path,
                "attempts": attempts,
                "last_error": last.code.name if last else None,
            },
        )


_STATUS_CLASSES: dict[ErrorCode, type[ZkError]] = {
    ErrorCode.CONNECTIONLOSS: ConnectivityError,
    ErrorCode.OPERATIONTIMEOUT: ConnectivityError,
    ErrorCode.NONODE: NodeError,
    ErrorCode.NODEEXISTS: NodeError,
    ErrorCode.BADVERSION: NodeError,
    ErrorCode.NOTEMPTY: NodeError,
    ErrorCode.NOCHILDRENFOREPHEMERALS: NodeError,
    ErrorCode.BADARGUMENTS: NodeError,
    ErrorCode.INVALIDACL: NodeError,
    ErrorCode.NOAUTH: NodeError,
    ErrorCode.SESSIONEXPIRED: SessionError,
    ErrorCode.AUTHFAILED: SessionError,
    ErrorCode.CLOSING: SessionError,
    ErrorCode.SESSIONMOVED: SessionError,
    ErrorCode.INVALIDSTATE: SessionError,
    ErrorCode.WATCH_OVERFLOW: WatchOverflowError,
    ErrorCode.RETRY_EXHAUSTED: RetryExhaustedError,
}
