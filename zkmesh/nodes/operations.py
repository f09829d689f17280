"""
Node Operation Facade

The operations a session exposes on the coordination tree. Each call:

    1. optionally registers a one-shot watch and passes its id to the
       runtime as the watch context
    2. calls the runtime synchronously on the caller's thread
    3. on failure forgets the watch and returns the typed error
    4. on success returns the decoded result (and the watch stream)

exists() and exists_and_watch() treat a missing node as success with a
None stat; the exists watch still installs and fires on creation. Every
other operation reports a missing node as NodeError(NONODE).

Usage:
    match session.get_and_watch("/config"):
        case Ok((data, stat, watch)):
            apply(data)
            event = watch.receive()
        case Err(NodeError(code=ErrorCode.NONODE)):
            use_defaults()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Sequence, Union

from zkmesh.core.types import Result, Ok, Err, ACL, CreateFlag, Stat, world_acl
from zkmesh.core.errors import ErrorCode, SessionError, ZkError
from zkmesh.core import constants as C
from zkmesh.observability.metrics import ClientMetrics
from zkmesh.runtime.base import CoordinationRuntime, Handle
from zkmesh.watch.registry import WatchKind, WatchRegistry
from zkmesh.watch.stream import EventStream

logger = logging.getLogger(__name__)


class NodeOperations(ABC):
    """
    Node operations over a live native handle.

    Subclasses provide the runtime, the registry and the current handle;
    Session is the only one in this package.
    """

    _runtime: CoordinationRuntime
    _registry: WatchRegistry
    _metrics: ClientMetrics

    @abstractmethod
    def _live_handle(self) -> Optional[Handle]:
        """Native handle, or None once closed."""

    @property
    def closed(self) -> bool:
        return self._live_handle() is None

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics

    # =========================================================================
    # READS
    # =========================================================================
    def get(self, path: str) -> Result[tuple[bytes, Stat], ZkError]:
        """Data and Stat of ``path``."""
        return self._call("get", path, lambda h: self._runtime.get(h, path, None))

    def get_and_watch(self, path: str) -> Result[tuple[bytes, Stat, EventStream], ZkError]:
        """
        Like get(), plus a one-shot stream that fires when the node's data
        changes or the node is deleted.
        """
        return self._watched(
            "get", path,
            lambda h, ctx: self._runtime.get(h, path, ctx),
            lambda value, stream: (value[0], value[1], stream),
        )

    def children(self, path: str) -> Result[tuple[list[str], Stat], ZkError]:
        """Sorted child names of ``path`` and its Stat."""
        return self._call(
            "children", path, lambda h: self._runtime.children(h, path, None),
        ).map(lambda value: (sorted(value[0]), value[1]))

    def children_and_watch(
        self, path: str
    ) -> Result[tuple[list[str], Stat, EventStream], ZkError]:
        """Like children(), plus a one-shot stream that fires on child changes."""
        return self._watched(
            "children", path,
            lambda h, ctx: self._runtime.children(h, path, ctx),
            lambda value, stream: (sorted(value[0]), value[1], stream),
        )

    def exists(self, path: str) -> Result[Optional[Stat], ZkError]:
        """Stat of ``path``, or None when the node does not exist."""
        return self._call(
            "exists", path, lambda h: self._runtime.exists(h, path, None),
            missing_ok=True,
        )

    def exists_and_watch(
        self, path: str
    ) -> Result[tuple[Optional[Stat], EventStream], ZkError]:
        """
        Like exists(), plus a one-shot stream.

        The watch fires on creation, deletion or data change, and is
        installed even when the node does not exist yet.
        """
        return self._watched(
            "exists", path,
            lambda h, ctx: self._runtime.exists(h, path, ctx),
            lambda value, stream: (value, stream),
            missing_ok=True,
        )

    def get_acl(self, path: str) -> Result[tuple[list[ACL], Stat], ZkError]:
        return self._call("get_acl", path, lambda h: self._runtime.get_acl(h, path))

    # =========================================================================
    # WRITES
    # =========================================================================
    def create(
        self,
        path: str,
        value: bytes = b"",
        flags: int = CreateFlag.PERSISTENT,
        acl: Optional[Sequence[ACL]] = None,
    ) -> Result[str, ZkError]:
        """
        Create ``path``; returns the actual path.

        With CreateFlag.SEQUENCE the service appends a monotonically
        increasing 10-digit counter to the name.
        """
        entries = list(acl) if acl is not None else world_acl()
        return self._call(
            "create", path,
            lambda h: self._runtime.create(h, path, _as_bytes(value), int(flags), entries),
        )

    def set(self, path: str, value: bytes, version: int = C.ANY_VERSION) -> Result[Stat, ZkError]:
        """Replace the data of ``path`` if its version matches (-1: any)."""
        return self._call(
            "set", path, lambda h: self._runtime.set(h, path, _as_bytes(value), version),
        )

    def delete(self, path: str, version: int = C.ANY_VERSION) -> Result[None, ZkError]:
        return self._call("delete", path, lambda h: self._runtime.delete(h, path, version))

    def set_acl(
        self, path: str, acl: Sequence[ACL], version: int = C.ANY_VERSION
    ) -> Result[None, ZkError]:
        return self._call(
            "set_acl", path, lambda h: self._runtime.set_acl(h, path, list(acl), version),
        )

    def add_auth(self, scheme: str, credential: Union[str, bytes]) -> Result[None, ZkError]:
        """
        Attach credentials to the session, e.g. add_auth("digest", "joe:passwd").

        A rejected credential is session-fatal: the session stream and every
        outstanding watch receive AUTH_FAILED.
        """
        return self._call(
            "add_auth", "", lambda h: self._runtime.add_auth(h, scheme, _as_bytes(credential)),
        )

    # =========================================================================
    # PLUMBING
    # =========================================================================
    def _call(
        self,
        operation: str,
        path: str,
        invoke: Callable[[Handle], Result[Any, ErrorCode]],
        missing_ok: bool = False,
    ) -> Result[Any, ZkError]:
        handle = self._live_handle()
        if handle is None:
            return Err(SessionError.closing(operation=operation))

        with self._metrics.operation_seconds.time(operation=operation):
            result = invoke(handle)

        if result.is_ok():
            return result
        if missing_ok and result.error is ErrorCode.NONODE:
            return Ok(None)
        return Err(self._error(result.error, operation, path))

    def _watched(
        self,
        operation: str,
        path: str,
        invoke: Callable[[Handle, int], Result[Any, ErrorCode]],
        shape: Callable[[Any, EventStream], Any],
        missing_ok: bool = False,
    ) -> Result[Any, ZkError]:
        handle = self._live_handle()
        if handle is None:
            return Err(SessionError.closing(operation=operation))

        registered = self._registry.register(self, WatchKind.ONE_SHOT)
        if registered.is_err():
            return registered
        watch_id, stream = registered.unwrap()

        with self._metrics.operation_seconds.time(operation=operation):
            result = invoke(handle, watch_id)

        if result.is_ok():
            return Ok(shape(result.unwrap(), stream))
        if missing_ok and result.error is ErrorCode.NONODE:
            # The runtime keeps the watch; it fires on creation
            return Ok(shape(None, stream))
        self._registry.forget(watch_id)
        return Err(self._error(result.error, operation, path))

    def _error(self, code: ErrorCode, operation: str, path: str) -> ZkError:
        if code is ErrorCode.INVALIDSTATE and self.closed:
            # Handle released by a concurrent close()
            return SessionError.closing(operation=operation)
        logger.debug("%s %s failed: %s", operation, path or "-", code.text)
        return ZkError.from_status(code, operation=operation, path=path)


def _as_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)
