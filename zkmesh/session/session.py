"""
Session: One Logical Connection to the Coordination Cluster

A Session owns:
- the native handle (released exactly once, by close())
- the session watch, whose stream reports every connectivity transition
- the one-shot watches created through its node operations

Lifecycle:
    dial()/redial() -> Session (handle set) -> close() (handle cleared)

    dial returns before the handshake completes. The first event on the
    session stream is normally SESSION/CONNECTED; later events report
    CONNECTING (connection lost, being re-established), CONNECTED again,
    or a session-fatal EXPIRED_SESSION / AUTH_FAILED.

    close() is safe to call from any thread, any number of times. The
    first call releases everything; later calls return the closing error.

Usage:
    session, events = dial("zk1:2181,zk2:2181", 5.0).unwrap()
    event = events.receive()
    if not event.ok:
        raise RuntimeError(str(event))

    with session:
        session.create("/config", b"v1")
"""

from __future__ import annotations

import threading
from typing import Any, Optional, Sequence

from zkmesh.core.types import Result, Ok, Err, ACL, ClientId
from zkmesh.core.errors import ErrorCode, SessionError, ZkError
from zkmesh.core import constants as C
from zkmesh.nodes.operations import NodeOperations
from zkmesh.nodes.retry_change import ChangeFunc, retry_change
from zkmesh.observability.logging import StructuredLogger
from zkmesh.observability.metrics import ClientMetrics
from zkmesh.reliability.retry import RetryPolicy
from zkmesh.runtime.base import Handle
from zkmesh.watch.dispatcher import EventDispatcher
from zkmesh.watch.registry import WatchKind
from zkmesh.watch.stream import EventStream

logger = StructuredLogger(__name__)


class Session(NodeOperations):
    """
    Client side of one coordination session.

    Create with dial() or redial(); never instantiate directly.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        servers: str,
        timeout_ms: int,
        metrics: Optional[ClientMetrics] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._runtime = dispatcher.runtime
        self._registry = dispatcher.registry
        self._metrics = metrics or ClientMetrics()
        self._servers = servers
        self._timeout_ms = timeout_ms
        self._handle: Optional[Handle] = None
        self._handle_lock = threading.Lock()
        self._session_watch_id = -1

    def _attach(self, handle: Handle, session_watch_id: int) -> None:
        with self._handle_lock:
            self._handle = handle
            self._session_watch_id = session_watch_id

    def _live_handle(self) -> Optional[Handle]:
        with self._handle_lock:
            return self._handle

    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    def close(self) -> Result[None, ZkError]:
        """
        Release the native session and close every stream it owns.

        Streams yield CLOSED_EVENT once drained. A second call returns
        SessionError(CLOSING) and does nothing else.
        """
        with self._handle_lock:
            if self._handle is None:
                return Err(SessionError.closing(operation="close"))
            handle, self._handle = self._handle, None

            closed = self._runtime.close(handle)
            retired = self._registry.close_all(self)
            self._dispatcher.release()

        logger.info(
            "Session closed",
            servers=self._servers,
            watches_closed=retired,
        )
        if closed.is_err():
            return Err(ZkError.from_status(closed.error, operation="close"))
        return Ok(None)

    def client_id(self) -> Result[ClientId, ZkError]:
        """Resumption token for redial(); the closing error after close()."""
        handle = self._live_handle()
        if handle is None:
            return Err(SessionError.closing(operation="client_id"))
        result = self._runtime.client_id(handle)
        if result.is_err():
            return Err(self._error(result.error, "client_id", ""))
        return result

    @property
    def watch_count(self) -> int:
        """Live watches owned by this session, the session watch included."""
        return self._registry.count_owned(self)

    @property
    def session_watch_id(self) -> int:
        return self._session_watch_id

    @property
    def servers(self) -> str:
        return self._servers

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *args: Any) -> None:
        if not self.closed:
            self.close()

    # =========================================================================
    # OPTIMISTIC UPDATES
    # =========================================================================
    def retry_change(
        self,
        path: str,
        flags: int,
        acl: Sequence[ACL],
        change: ChangeFunc,
        policy: Optional[RetryPolicy] = None,
    ) -> Result[None, Any]:
        """See zkmesh.nodes.retry_change.retry_change."""
        return retry_change(self, path, flags, acl, change, policy)

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"Session(servers={self._servers!r}, {state}, watches={self.watch_count})"


# =============================================================================
# CONNECTING
# =============================================================================
def dial(
    servers: str,
    timeout: float,
    *,
    dispatcher: Optional[EventDispatcher] = None,
) -> Result[tuple[Session, EventStream], ZkError]:
    """
    Open a new session against ``servers`` ("host:port[,host:port...]").

    ``timeout`` is the session receive timeout in seconds. On success the
    returned stream carries the session's connectivity events.
    """
    return _connect(servers, timeout, None, dispatcher)


def redial(
    servers: str,
    timeout: float,
    client_id: ClientId,
    *,
    dispatcher: Optional[EventDispatcher] = None,
) -> Result[tuple[Session, EventStream], ZkError]:
    """Like dial(), reattaching to the server session named by ``client_id``."""
    return _connect(servers, timeout, client_id, dispatcher)


def _connect(
    servers: str,
    timeout: float,
    client_id: Optional[ClientId],
    dispatcher: Optional[EventDispatcher],
) -> Result[tuple[Session, EventStream], ZkError]:
    if timeout < 0:
        return Err(ZkError.from_status(
            ErrorCode.BADARGUMENTS, operation="dial", message="timeout cannot be negative",
        ))
    dispatcher = dispatcher or EventDispatcher.default()
    timeout_ms = int(timeout * C.SECOND_MS)

    session = Session(dispatcher, servers, timeout_ms, dispatcher.metrics)
    registered = dispatcher.registry.register(session, WatchKind.SESSION)
    if registered.is_err():
        return registered
    watch_id, stream = registered.unwrap()

    connected = dispatcher.runtime.connect(servers, timeout_ms, client_id, watch_id)
    if connected.is_err():
        dispatcher.registry.close_all(session)
        logger.warning(
            "Dial failed",
            servers=servers,
            code=connected.error.name,
        )
        return Err(ZkError.from_status(connected.error, operation="dial"))

    session._attach(connected.unwrap(), watch_id)
    dispatcher.acquire()
    logger.info(
        "Session dialed",
        servers=servers,
        timeout_ms=timeout_ms,
        resumed=client_id is not None,
    )
    return Ok((session, stream))
