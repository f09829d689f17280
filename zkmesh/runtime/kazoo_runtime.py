"""
Kazoo Runtime: Real ZooKeeper Ensembles

Backs the CoordinationRuntime contract with the kazoo client library:

- One KazooClient per handle, started with start_async() so connect()
  returns before the handshake completes
- Connection listeners translate KazooState transitions into SESSION
  notifications, fanned out to the session context and every outstanding
  watch context of the handle
- Watch callbacks translate kazoo WatchedEvents into node notifications.
  kazoo discards its watchers on every disconnect; each discarded watch
  gets a NOT_WATCHING notification so its stream retires and the caller
  can watch again once reconnected
- Kazoo exceptions map onto status codes

Kazoo invokes listeners and watchers on its own event thread; both only
put onto a queue.Queue, so that thread is never blocked.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from kazoo.client import KazooClient
from kazoo.exceptions import (
    APIError,
    AuthFailedError,
    BadArgumentsError,
    BadVersionError,
    ConnectionClosedError,
    ConnectionLoss,
    DataInconsistency,
    InvalidACLError,
    InvalidCallbackError,
    MarshallingError,
    NoAuthError,
    NoChildrenForEphemeralsError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    OperationTimeoutError,
    RuntimeInconsistency,
    SessionExpiredError,
    SessionMovedError,
    SystemZookeeperError,
    UnimplementedError,
    ZookeeperError,
)
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import KazooState, KeeperState, WatchedEvent, ZnodeStat
from kazoo.security import ACL as KazooACL, Id

from zkmesh.core.types import (
    Result,
    Ok,
    Err,
    ACL,
    ClientId,
    CreateFlag,
    EventType,
    State,
    Stat,
)
from zkmesh.core.errors import ErrorCode
from zkmesh.core import constants as C
from zkmesh.runtime.base import CoordinationRuntime, Handle, RawNotification, validate_servers

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSLATION TABLES
# =============================================================================
# Order matters: ConnectionClosedError subclasses SessionExpiredError.
_EXCEPTION_CODES: tuple[tuple[type[Exception], ErrorCode], ...] = (
    (ConnectionClosedError, ErrorCode.CLOSING),
    (SessionExpiredError, ErrorCode.SESSIONEXPIRED),
    (ConnectionLoss, ErrorCode.CONNECTIONLOSS),
    (OperationTimeoutError, ErrorCode.OPERATIONTIMEOUT),
    (KazooTimeoutError, ErrorCode.OPERATIONTIMEOUT),
    (NoNodeError, ErrorCode.NONODE),
    (NodeExistsError, ErrorCode.NODEEXISTS),
    (BadVersionError, ErrorCode.BADVERSION),
    (NotEmptyError, ErrorCode.NOTEMPTY),
    (NoAuthError, ErrorCode.NOAUTH),
    (BadArgumentsError, ErrorCode.BADARGUMENTS),
    (NoChildrenForEphemeralsError, ErrorCode.NOCHILDRENFOREPHEMERALS),
    (InvalidACLError, ErrorCode.INVALIDACL),
    (AuthFailedError, ErrorCode.AUTHFAILED),
    (SessionMovedError, ErrorCode.SESSIONMOVED),
    (MarshallingError, ErrorCode.MARSHALLINGERROR),
    (UnimplementedError, ErrorCode.UNIMPLEMENTED),
    (RuntimeInconsistency, ErrorCode.RUNTIMEINCONSISTENCY),
    (DataInconsistency, ErrorCode.DATAINCONSISTENCY),
    (SystemZookeeperError, ErrorCode.SYSTEMERROR),
    (InvalidCallbackError, ErrorCode.INVALIDCALLBACK),
    (APIError, ErrorCode.APIERROR),
    (ZookeeperError, ErrorCode.SYSTEMERROR),
    # kazoo validates paths and arguments client-side
    (ValueError, ErrorCode.BADARGUMENTS),
    (TypeError, ErrorCode.BADARGUMENTS),
)

_KAZOO_EXCEPTIONS = tuple(exc for exc, _ in _EXCEPTION_CODES)

_EVENT_TYPES: dict[str, EventType] = {
    "CREATED": EventType.CREATED,
    "DELETED": EventType.DELETED,
    "CHANGED": EventType.CHANGED,
    "CHILD": EventType.CHILD,
    # kazoo drops every watcher when the connection is suspended or lost
    "NONE": EventType.NOT_WATCHING,
}

_KEEPER_STATES: dict[str, State] = {
    KeeperState.CONNECTING: State.CONNECTING,
    KeeperState.CONNECTED: State.CONNECTED,
    KeeperState.CONNECTED_RO: State.CONNECTED,
    KeeperState.EXPIRED_SESSION: State.EXPIRED_SESSION,
    KeeperState.AUTH_FAILED: State.AUTH_FAILED,
    KeeperState.CLOSED: State.CLOSED,
}


def error_code_for(exc: BaseException) -> ErrorCode:
    """Status code for a kazoo (or argument validation) exception."""
    for exc_type, code in _EXCEPTION_CODES:
        if isinstance(exc, exc_type):
            return code
    return ErrorCode.SYSTEMERROR


def to_stat(stat: ZnodeStat) -> Stat:
    return Stat(
        czxid=stat.czxid,
        mzxid=stat.mzxid,
        ctime=stat.ctime,
        mtime=stat.mtime,
        version=stat.version,
        cversion=stat.cversion,
        aversion=stat.aversion,
        ephemeral_owner=stat.ephemeralOwner,
        data_length=stat.dataLength,
        num_children=stat.numChildren,
        pzxid=stat.pzxid,
    )


def to_kazoo_acl(acl: Sequence[ACL]) -> list[KazooACL]:
    return [KazooACL(int(entry.perms), Id(entry.scheme, entry.id)) for entry in acl]


def from_kazoo_acl(acl: Sequence[KazooACL]) -> list[ACL]:
    return [ACL(perms=entry.perms, scheme=entry.id.scheme, id=entry.id.id) for entry in acl]


# =============================================================================
# CONNECTION STATE
# =============================================================================
@dataclass
class _Connection:
    """One KazooClient and the watch contexts it still holds."""

    client: KazooClient
    context: int
    outstanding: set[int] = field(default_factory=set)
    closing: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class KazooRuntime(CoordinationRuntime):
    """
    CoordinationRuntime over kazoo.

    Usage:
        runtime = KazooRuntime()
        dispatcher = EventDispatcher(runtime, WatchRegistry.default())
        session, events = dial("zk1:2181,zk2:2181", 10.0, dispatcher=dispatcher).unwrap()
    """

    def __init__(
        self,
        client_factory: Callable[..., KazooClient] = KazooClient,
        **client_options: Any,
    ) -> None:
        self._client_factory = client_factory
        self._client_options = client_options
        self._notifications: queue.Queue[RawNotification] = queue.Queue()
        self._handle_ids = itertools.count(1)
        self._connections: dict[Handle, _Connection] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================
    def connect(
        self,
        servers: str,
        timeout_ms: int,
        client_id: Optional[ClientId],
        context: int,
    ) -> Result[Handle, ErrorCode]:
        if not validate_servers(servers):
            return Err(ErrorCode.BADARGUMENTS)

        try:
            client = self._client_factory(
                hosts=servers,
                timeout=max(timeout_ms, 1) / C.SECOND_MS,
                client_id=(client_id.session_id, client_id.password) if client_id else None,
                **self._client_options,
            )
        except _KAZOO_EXCEPTIONS as e:
            return Err(error_code_for(e))

        with self._lock:
            handle = next(self._handle_ids)
            connection = _Connection(client=client, context=context)
            self._connections[handle] = connection

        client.add_listener(self._listener(connection))
        client.start_async()
        logger.debug("Handle %d connecting to %s", handle, servers)
        return Ok(handle)

    def close(self, handle: Handle) -> Result[None, ErrorCode]:
        with self._lock:
            connection = self._connections.pop(handle, None)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)

        with connection.lock:
            connection.closing = True
            connection.outstanding.clear()

        try:
            connection.client.stop()
            connection.client.close()
        except _KAZOO_EXCEPTIONS as e:
            return Err(error_code_for(e))
        return Ok(None)

    def client_id(self, handle: Handle) -> Result[ClientId, ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        token = connection.client.client_id
        if token is None:
            return Err(ErrorCode.CONNECTIONLOSS)
        session_id, password = token
        return Ok(ClientId(session_id=session_id, password=password))

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================
    def get(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[tuple[bytes, Stat], ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        watch = self._watcher(connection, context)
        try:
            data, stat = connection.client.get(path, watch=watch)
        except _KAZOO_EXCEPTIONS as e:
            self._discard(connection, context)
            return Err(error_code_for(e))
        return Ok((data or b"", to_stat(stat)))

    def exists(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[Stat, ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        watch = self._watcher(connection, context)
        try:
            stat = connection.client.exists(path, watch=watch)
        except _KAZOO_EXCEPTIONS as e:
            self._discard(connection, context)
            return Err(error_code_for(e))
        if stat is None:
            # The watch stays installed and fires on creation
            return Err(ErrorCode.NONODE)
        return Ok(to_stat(stat))

    def children(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[tuple[list[str], Stat], ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        watch = self._watcher(connection, context)
        try:
            names, stat = connection.client.get_children(path, watch=watch, include_data=True)
        except _KAZOO_EXCEPTIONS as e:
            self._discard(connection, context)
            return Err(error_code_for(e))
        return Ok((list(names), to_stat(stat)))

    def create(
        self,
        handle: Handle,
        path: str,
        value: bytes,
        flags: int,
        acl: Sequence[ACL],
    ) -> Result[str, ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        try:
            created = connection.client.create(
                path,
                value,
                acl=to_kazoo_acl(acl),
                ephemeral=bool(flags & CreateFlag.EPHEMERAL),
                sequence=bool(flags & CreateFlag.SEQUENCE),
            )
        except _KAZOO_EXCEPTIONS as e:
            return Err(error_code_for(e))
        return Ok(created)

    def set(
        self, handle: Handle, path: str, value: bytes, version: int
    ) -> Result[Stat, ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        try:
            stat = connection.client.set(path, value, version=version)
        except _KAZOO_EXCEPTIONS as e:
            return Err(error_code_for(e))
        return Ok(to_stat(stat))

    def delete(self, handle: Handle, path: str, version: int) -> Result[None, ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        try:
            connection.client.delete(path, version=version)
        except _KAZOO_EXCEPTIONS as e:
            return Err(error_code_for(e))
        return Ok(None)

    def get_acl(self, handle: Handle, path: str) -> Result[tuple[list[ACL], Stat], ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        try:
            acls, stat = connection.client.get_acls(path)
        except _KAZOO_EXCEPTIONS as e:
            return Err(error_code_for(e))
        return Ok((from_kazoo_acl(acls), to_stat(stat)))

    def set_acl(
        self, handle: Handle, path: str, acl: Sequence[ACL], version: int
    ) -> Result[None, ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        try:
            connection.client.set_acls(path, to_kazoo_acl(acl), version=version)
        except _KAZOO_EXCEPTIONS as e:
            return Err(error_code_for(e))
        return Ok(None)

    def add_auth(self, handle: Handle, scheme: str, credential: bytes) -> Result[None, ErrorCode]:
        connection = self._connection(handle)
        if connection is None:
            return Err(ErrorCode.INVALIDSTATE)
        if isinstance(credential, (bytes, bytearray)):
            credential = credential.decode("utf-8")
        try:
            connection.client.add_auth(scheme, credential)
        except _KAZOO_EXCEPTIONS as e:
            return Err(error_code_for(e))
        return Ok(None)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================
    def wait_notification(self, timeout: Optional[float] = None) -> Optional[RawNotification]:
        try:
            return self._notifications.get(timeout=timeout)
        except queue.Empty:
            return None

    # =========================================================================
    # INTERNALS
    # =========================================================================
    def _connection(self, handle: Handle) -> Optional[_Connection]:
        with self._lock:
            return self._connections.get(handle)

    def _discard(self, connection: _Connection, context: Optional[int]) -> None:
        if context is not None:
            with connection.lock:
                connection.outstanding.discard(context)

    def _watcher(
        self, connection: _Connection, context: Optional[int]
    ) -> Optional[Callable[[WatchedEvent], None]]:
        """Build the kazoo watch callback for ``context`` (None: no watch)."""
        if context is None:
            return None

        with connection.lock:
            connection.outstanding.add(context)

        def watch(event: WatchedEvent) -> None:
            with connection.lock:
                if connection.closing or context not in connection.outstanding:
                    return
                connection.outstanding.discard(context)
            event_type = _EVENT_TYPES.get(event.type)
            if event_type is None:
                logger.debug("Ignoring kazoo event %s for context %d", event.type, context)
                return
            if event_type is EventType.NOT_WATCHING:
                state = _KEEPER_STATES.get(event.state, State.CONNECTING)
            else:
                state = State.CONNECTED
            self._notifications.put(
                RawNotification(context, event_type, event.path or "", state)
            )

        return watch

    def _listener(self, connection: _Connection) -> Callable[[KazooState], None]:
        def listener(kazoo_state: KazooState) -> None:
            if kazoo_state == KazooState.CONNECTED:
                state = State.CONNECTED
            elif kazoo_state == KazooState.SUSPENDED:
                state = State.CONNECTING
            elif connection.client.client_state == KeeperState.AUTH_FAILED:
                state = State.AUTH_FAILED
            else:
                state = State.EXPIRED_SESSION

            with connection.lock:
                if connection.closing:
                    return
                contexts = [connection.context, *sorted(connection.outstanding)]
                if state.is_fatal:
                    connection.outstanding.clear()

            for context in contexts:
                self._notifications.put(RawNotification(context, EventType.SESSION, "", state))

        return listener

    def __repr__(self) -> str:
        return f"KazooRuntime(connections={len(self._connections)})"
