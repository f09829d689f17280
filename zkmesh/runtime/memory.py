"""
In-Memory Coordination Runtime: Single-Process Service Emulation

Implements the CoordinationRuntime contract against an in-process data
tree, for development, demos and tests:

- Hierarchical nodes with versioned Stat metadata and zxid ordering
- Ephemeral nodes bound to their server session
- Sequential nodes (10-digit suffix taken from the parent's cversion)
- world / auth / digest ACLs with permission checks
- One-shot data, exists and child watches with the service's trigger rules
- Session resumption by ClientId
- Fault injection: suspend()/resume() for connection loss,
  expire_session() for server-side expiry

Thread Safety:
    A single re-entrant lock guards the tree and the session tables.
    Notifications are pushed onto a queue.Queue and consumed by the
    dispatcher thread through wait_notification().
"""

from __future__ import annotations

import itertools
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from zkmesh.core.types import (
    Result,
    Ok,
    Err,
    ACL,
    ClientId,
    CreateFlag,
    EventType,
    Perm,
    State,
    Stat,
    digest_id,
)
from zkmesh.core.errors import ErrorCode
from zkmesh.core import constants as C
from zkmesh.runtime.base import CoordinationRuntime, Handle, RawNotification, validate_servers

logger = logging.getLogger(__name__)


# =============================================================================
# SERVER-SIDE STATE
# =============================================================================
@dataclass
class _Node:
    """A node in the data tree."""

    data: bytes
    acl: list[ACL]
    czxid: int = 0
    mzxid: int = 0
    ctime: int = 0
    mtime: int = 0
    version: int = 0
    cversion: int = 0
    aversion: int = 0
    ephemeral_owner: int = 0
    pzxid: int = 0
    children: set[str] = field(default_factory=set)

    def stat(self) -> Stat:
        return Stat(
            czxid=self.czxid,
            mzxid=self.mzxid,
            ctime=self.ctime,
            mtime=self.mtime,
            version=self.version,
            cversion=self.cversion,
            aversion=self.aversion,
            ephemeral_owner=self.ephemeral_owner,
            data_length=len(self.data),
            num_children=len(self.children),
            pzxid=self.pzxid,
        )


@dataclass
class _ServerSession:
    """Server-side session, shared by every handle attached through its ClientId."""

    session_id: int
    password: bytes
    timeout_ms: int
    identities: set[tuple[str, str]] = field(default_factory=set)
    ephemerals: set[str] = field(default_factory=set)
    handles: set[Handle] = field(default_factory=set)


@dataclass
class _HandleState:
    """Client-side view of one native connection."""

    handle: Handle
    session: _ServerSession
    context: int
    timeout_ms: int
    outstanding: set[int] = field(default_factory=set)
    connected: bool = False
    fatal: Optional[State] = None


def _split(path: str) -> tuple[str, str]:
    """Split into (parent, name)."""
    parent, _, name = path.rpartition("/")
    return (parent or "/", name)


def _validate_path(path: str) -> bool:
    if not isinstance(path, str) or not path.startswith("/"):
        return False
    if path == "/":
        return True
    if path.endswith("/") or "\x00" in path:
        return False
    for part in path[1:].split("/"):
        if part in ("", ".", ".."):
            return False
    return True


def _now_ms() -> int:
    return time.time_ns() // C.NS_PER_MS


# =============================================================================
# IN-MEMORY RUNTIME
# =============================================================================
class InMemoryRuntime(CoordinationRuntime):
    """
    In-process coordination service.

    Usage:
        runtime = InMemoryRuntime()
        dispatcher = EventDispatcher(runtime, WatchRegistry())
        session, events = dial("localhost:2181", 5.0, dispatcher=dispatcher).unwrap()

        runtime.suspend()   # session stream sees CONNECTING
        runtime.resume()    # ... then CONNECTED
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._notifications: queue.Queue[RawNotification] = queue.Queue()
        self._handle_ids = itertools.count(1)
        self._session_ids = itertools.count(0x1_0000_0001)
        self._zxid = 0
        self._suspended = False

        self._nodes: dict[str, _Node] = {
            "/": _Node(data=b"", acl=[ACL(int(Perm.ALL), "world", "anyone")]),
        }
        self._sessions: dict[int, _ServerSession] = {}
        self._handles: dict[Handle, _HandleState] = {}

        # path -> {(handle, context)}
        self._data_watches: dict[str, set[tuple[Handle, int]]] = {}
        self._exist_watches: dict[str, set[tuple[Handle, int]]] = {}
        self._child_watches: dict[str, set[tuple[Handle, int]]] = {}

        self._install_system_nodes()

    def _install_system_nodes(self) -> None:
        world = [ACL(int(Perm.ALL), "world", "anyone")]
        self._nodes[C.SYSTEM_NODE] = _Node(data=b"", acl=list(world))
        self._nodes[f"{C.SYSTEM_NODE}/quota"] = _Node(data=b"", acl=list(world))
        self._nodes["/"].children.add(C.SYSTEM_NODE[1:])
        self._nodes[C.SYSTEM_NODE].children.add("quota")

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

        with self._lock:
            handle = next(self._handle_ids)

            if client_id is not None:
                session = self._sessions.get(client_id.session_id)
                if session is None or session.password != client_id.password:
                    # Unknown or stale token: the handshake reports expiry
                    orphan = _ServerSession(
                        session_id=client_id.session_id,
                        password=client_id.password,
                        timeout_ms=timeout_ms,
                    )
                    state = _HandleState(handle, orphan, context, timeout_ms)
                    state.fatal = State.EXPIRED_SESSION
                    self._handles[handle] = state
                    self._push(context, EventType.SESSION, "", State.EXPIRED_SESSION)
                    return Ok(handle)
            else:
                session = _ServerSession(
                    session_id=next(self._session_ids),
                    password=os.urandom(16),
                    timeout_ms=timeout_ms,
                )
                self._sessions[session.session_id] = session

            session.handles.add(handle)
            state = _HandleState(handle, session, context, timeout_ms)
            self._handles[handle] = state

            # A zero receive timeout never completes the handshake
            if timeout_ms > 0 and not self._suspended:
                state.connected = True
                self._push(context, EventType.SESSION, "", State.CONNECTED)

            logger.debug(
                "Handle %d attached to session 0x%x", handle, session.session_id,
            )
            return Ok(handle)

    def close(self, handle: Handle) -> Result[None, ErrorCode]:
        with self._lock:
            state = self._handles.pop(handle, None)
            if state is None:
                return Err(ErrorCode.INVALIDSTATE)

            self._drop_watches(state)
            session = state.session
            session.handles.discard(handle)

            if self._sessions.get(session.session_id) is session:
                # Closing ends the server session for every attached handle
                self._end_session(session)
            return Ok(None)

    def client_id(self, handle: Handle) -> Result[ClientId, ErrorCode]:
        with self._lock:
            state = self._handles.get(handle)
            if state is None:
                return Err(ErrorCode.INVALIDSTATE)
            return Ok(ClientId(state.session.session_id, state.session.password))

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================
    def get(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[tuple[bytes, Stat], ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)
            if not _validate_path(path):
                return Err(ErrorCode.BADARGUMENTS)
            node = self._nodes.get(path)
            if node is None:
                return Err(ErrorCode.NONODE)
            if not self._permits(state, node, Perm.READ):
                return Err(ErrorCode.NOAUTH)
            if context is not None:
                self._add_watch(self._data_watches, path, state, context)
            return Ok((node.data, node.stat()))

    def exists(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[Stat, ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)
            if not _validate_path(path):
                return Err(ErrorCode.BADARGUMENTS)
            node = self._nodes.get(path)
            if node is None:
                if context is not None:
                    self._add_watch(self._exist_watches, path, state, context)
                return Err(ErrorCode.NONODE)
            if context is not None:
                self._add_watch(self._data_watches, path, state, context)
            return Ok(node.stat())

    def children(
        self, handle: Handle, path: str, context: Optional[int]
    ) -> Result[tuple[list[str], Stat], ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)
            if not _validate_path(path):
                return Err(ErrorCode.BADARGUMENTS)
            node = self._nodes.get(path)
            if node is None:
                return Err(ErrorCode.NONODE)
            if not self._permits(state, node, Perm.READ):
                return Err(ErrorCode.NOAUTH)
            if context is not None:
                self._add_watch(self._child_watches, path, state, context)
            return Ok((list(node.children), node.stat()))

    def create(
        self,
        handle: Handle,
        path: str,
        value: bytes,
        flags: int,
        acl: Sequence[ACL],
    ) -> Result[str, ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)
            if not isinstance(value, (bytes, bytearray)) or len(value) > C.MAX_DATA_BYTES:
                return Err(ErrorCode.BADARGUMENTS)
            if path == "/" or not path.startswith("/"):
                return Err(ErrorCode.BADARGUMENTS)

            parent_path, _ = _split(path)
            parent = self._nodes.get(parent_path) if _validate_path(parent_path) else None
            if flags & CreateFlag.SEQUENCE and parent is not None:
                path = f"{path}{parent.cversion:0{C.SEQUENCE_DIGITS}d}"
            if not _validate_path(path):
                return Err(ErrorCode.BADARGUMENTS)

            resolved = self._resolve_acl(state, acl)
            if isinstance(resolved, ErrorCode):
                return Err(resolved)
            if parent is None:
                return Err(ErrorCode.NONODE)
            if not self._permits(state, parent, Perm.CREATE):
                return Err(ErrorCode.NOAUTH)
            if parent.ephemeral_owner:
                return Err(ErrorCode.NOCHILDRENFOREPHEMERALS)
            if path in self._nodes:
                return Err(ErrorCode.NODEEXISTS)

            zxid = self._next_zxid()
            now = _now_ms()
            node = _Node(
                data=bytes(value),
                acl=resolved,
                czxid=zxid,
                mzxid=zxid,
                ctime=now,
                mtime=now,
                pzxid=zxid,
            )
            if flags & CreateFlag.EPHEMERAL:
                node.ephemeral_owner = state.session.session_id
                state.session.ephemerals.add(path)
            self._nodes[path] = node

            parent.children.add(_split(path)[1])
            parent.cversion += 1
            parent.pzxid = zxid

            self._trigger(path, EventType.CREATED, self._data_watches, self._exist_watches)
            self._trigger(parent_path, EventType.CHILD, self._child_watches)
            return Ok(path)

    def set(
        self, handle: Handle, path: str, value: bytes, version: int
    ) -> Result[Stat, ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)
            if not _validate_path(path):
                return Err(ErrorCode.BADARGUMENTS)
            if not isinstance(value, (bytes, bytearray)) or len(value) > C.MAX_DATA_BYTES:
                return Err(ErrorCode.BADARGUMENTS)
            node = self._nodes.get(path)
            if node is None:
                return Err(ErrorCode.NONODE)
            if not self._permits(state, node, Perm.WRITE):
                return Err(ErrorCode.NOAUTH)
            if version != C.ANY_VERSION and version != node.version:
                return Err(ErrorCode.BADVERSION)

            node.data = bytes(value)
            node.version += 1
            node.mzxid = self._next_zxid()
            node.mtime = _now_ms()

            self._trigger(path, EventType.CHANGED, self._data_watches, self._exist_watches)
            return Ok(node.stat())

    def delete(self, handle: Handle, path: str, version: int) -> Result[None, ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)
            if not _validate_path(path) or path == "/":
                return Err(ErrorCode.BADARGUMENTS)
            if path == C.SYSTEM_NODE or path.startswith(C.SYSTEM_NODE + "/"):
                return Err(ErrorCode.BADARGUMENTS)
            node = self._nodes.get(path)
            if node is None:
                return Err(ErrorCode.NONODE)
            parent_path, _ = _split(path)
            if not self._permits(state, self._nodes[parent_path], Perm.DELETE):
                return Err(ErrorCode.NOAUTH)
            if version != C.ANY_VERSION and version != node.version:
                return Err(ErrorCode.BADVERSION)
            if node.children:
                return Err(ErrorCode.NOTEMPTY)

            self._remove_node(path)
            return Ok(None)

    def get_acl(self, handle: Handle, path: str) -> Result[tuple[list[ACL], Stat], ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)
            if not _validate_path(path):
                return Err(ErrorCode.BADARGUMENTS)
            node = self._nodes.get(path)
            if node is None:
                return Err(ErrorCode.NONODE)
            return Ok((list(node.acl), node.stat()))

    def set_acl(
        self, handle: Handle, path: str, acl: Sequence[ACL], version: int
    ) -> Result[None, ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)
            if not _validate_path(path):
                return Err(ErrorCode.BADARGUMENTS)
            node = self._nodes.get(path)
            if node is None:
                return Err(ErrorCode.NONODE)
            if not self._permits(state, node, Perm.ADMIN):
                return Err(ErrorCode.NOAUTH)
            if version != C.ANY_VERSION and version != node.aversion:
                return Err(ErrorCode.BADVERSION)
            resolved = self._resolve_acl(state, acl)
            if isinstance(resolved, ErrorCode):
                return Err(resolved)

            node.acl = resolved
            node.aversion += 1
            self._next_zxid()
            return Ok(None)

    def add_auth(self, handle: Handle, scheme: str, credential: bytes) -> Result[None, ErrorCode]:
        with self._lock:
            state = self._checked(handle)
            if isinstance(state, ErrorCode):
                return Err(state)

            raw = credential.decode("utf-8", errors="replace") if isinstance(
                credential, (bytes, bytearray)
            ) else str(credential)
            user, sep, password = raw.partition(":")
            if scheme != "digest" or not sep or not user:
                # Authentication failure is session-fatal
                self._fail_handle(state, State.AUTH_FAILED)
                return Err(ErrorCode.AUTHFAILED)

            state.session.identities.add(("digest", digest_id(user, password)))
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
    # FAULT INJECTION
    # =========================================================================
    def suspend(self) -> None:
        """
        Simulate losing the connection to the ensemble.

        Connected handles see CONNECTING; operations fail with
        CONNECTIONLOSS until resume().
        """
        with self._lock:
            self._suspended = True
            for state in list(self._handles.values()):
                if state.connected and state.fatal is None:
                    state.connected = False
                    self._notify_state(state, State.CONNECTING)

    def resume(self) -> None:
        """Reconnect every live handle; each sees CONNECTED."""
        with self._lock:
            self._suspended = False
            for state in list(self._handles.values()):
                if not state.connected and state.fatal is None and state.timeout_ms > 0:
                    state.connected = True
                    self._notify_state(state, State.CONNECTED)

    def expire_session(self, session_id: int) -> bool:
        """
        Expire a server session as if its timeout had elapsed.

        Returns False when no such session is live.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            self._end_session(session)
            return True

    @property
    def suspended(self) -> bool:
        return self._suspended

    def session_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._sessions)

    # =========================================================================
    # INTERNALS (caller holds self._lock)
    # =========================================================================
    def _checked(self, handle: Handle) -> _HandleState | ErrorCode:
        state = self._handles.get(handle)
        if state is None:
            return ErrorCode.INVALIDSTATE
        if state.fatal == State.EXPIRED_SESSION:
            return ErrorCode.SESSIONEXPIRED
        if state.fatal == State.AUTH_FAILED:
            return ErrorCode.AUTHFAILED
        if state.timeout_ms <= 0:
            return ErrorCode.OPERATIONTIMEOUT
        if self._suspended or not state.connected:
            return ErrorCode.CONNECTIONLOSS
        return state

    def _next_zxid(self) -> int:
        self._zxid += 1
        return self._zxid

    def _push(self, context: int, type: EventType, path: str, state: State) -> None:
        self._notifications.put(RawNotification(context, type, path, state))

    def _add_watch(
        self,
        table: dict[str, set[tuple[Handle, int]]],
        path: str,
        state: _HandleState,
        context: int,
    ) -> None:
        table.setdefault(path, set()).add((state.handle, context))
        state.outstanding.add(context)

    def _trigger(
        self,
        path: str,
        type: EventType,
        *tables: dict[str, set[tuple[Handle, int]]],
    ) -> None:
        fired: set[tuple[Handle, int]] = set()
        for table in tables:
            fired |= table.pop(path, set())
        for handle, context in sorted(fired, key=lambda w: w[1]):
            state = self._handles.get(handle)
            if state is None:
                continue
            state.outstanding.discard(context)
            self._push(context, type, path, State.CONNECTED)

    def _notify_state(self, state: _HandleState, new_state: State) -> None:
        """Fan a connectivity change out to the session and its outstanding watches."""
        self._push(state.context, EventType.SESSION, "", new_state)
        for context in sorted(state.outstanding):
            self._push(context, EventType.SESSION, "", new_state)

    def _drop_watches(self, state: _HandleState) -> None:
        for table in (self._data_watches, self._exist_watches, self._child_watches):
            for path in list(table):
                table[path] = {w for w in table[path] if w[0] != state.handle}
                if not table[path]:
                    del table[path]
        state.outstanding.clear()

    def _fail_handle(self, state: _HandleState, fatal: State) -> None:
        state.fatal = fatal
        state.connected = False
        self._notify_state(state, fatal)
        self._drop_watches(state)

    def _end_session(self, session: _ServerSession) -> None:
        del self._sessions[session.session_id]
        for path in sorted(session.ephemerals, reverse=True):
            if path in self._nodes:
                self._remove_node(path)
        session.ephemerals.clear()
        for handle in sorted(session.handles):
            state = self._handles.get(handle)
            if state is not None and state.fatal is None:
                self._fail_handle(state, State.EXPIRED_SESSION)
        logger.debug("Session 0x%x ended", session.session_id)

    def _remove_node(self, path: str) -> None:
        node = self._nodes.pop(path)
        if node.ephemeral_owner:
            owner = self._sessions.get(node.ephemeral_owner)
            if owner is not None:
                owner.ephemerals.discard(path)

        parent_path, name = _split(path)
        parent = self._nodes[parent_path]
        parent.children.discard(name)
        parent.cversion += 1
        parent.pzxid = self._next_zxid()

        self._trigger(
            path, EventType.DELETED,
            self._data_watches, self._exist_watches, self._child_watches,
        )
        self._trigger(parent_path, EventType.CHILD, self._child_watches)

    def _permits(self, state: _HandleState, node: _Node, perm: Perm) -> bool:
        for entry in node.acl:
            if not entry.perms & perm:
                continue
            if entry.scheme == "world" and entry.id == "anyone":
                return True
            if (entry.scheme, entry.id) in state.session.identities:
                return True
        return False

    def _resolve_acl(
        self, state: _HandleState, acl: Sequence[ACL]
    ) -> list[ACL] | ErrorCode:
        """Validate an ACL, expanding "auth" entries to the session's identities."""
        if not acl:
            return ErrorCode.INVALIDACL
        resolved: list[ACL] = []
        for entry in acl:
            if not 0 <= entry.perms <= Perm.ALL:
                return ErrorCode.INVALIDACL
            if entry.scheme == "world":
                if entry.id != "anyone":
                    return ErrorCode.INVALIDACL
                resolved.append(entry)
            elif entry.scheme == "auth":
                if not state.session.identities:
                    return ErrorCode.INVALIDACL
                for scheme, identity in sorted(state.session.identities):
                    resolved.append(ACL(entry.perms, scheme, identity))
            elif entry.scheme == "digest":
                if ":" not in entry.id:
                    return ErrorCode.INVALIDACL
                resolved.append(entry)
            else:
                return ErrorCode.INVALIDACL
        return resolved

    def __repr__(self) -> str:
        return (
            f"InMemoryRuntime(nodes={len(self._nodes)}, "
            f"sessions={len(self._sessions)}, handles={len(self._handles)})"
        )
