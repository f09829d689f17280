"""
Watch Registry: Process-Wide Watch Table

Maps integer watch ids to (stream, owning session, kind). The id is what
the runtime carries as the watch context, so the native side never holds
a reference to a Python object.

Invariants:
    - Ids are allocated from one monotonic counter and never reused
    - One-shot entries leave the table when their single event is
      delivered, when their registration fails, or when their owner closes
    - The session entry of an owner persists until the owner closes
    - Every mutation and every dispatch lookup happens under one lock;
      stream sends under that lock never block

Complexity:
    register / forget / deliver: O(1)
    close_all: O(watches owned)
"""

from __future__ import annotations

import itertools
import logging
import threading
import weakref
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, ClassVar, Optional

from zkmesh.core.types import Result, Ok, Err, Event, EventType
from zkmesh.core.errors import SessionError, ZkError
from zkmesh.core.config import WatchConfig
from zkmesh.observability.metrics import ClientMetrics
from zkmesh.watch.stream import EventStream

logger = logging.getLogger(__name__)


class WatchKind(Enum):
    """Lifetime class of a watch."""

    SESSION = "session"
    ONE_SHOT = "one_shot"


@dataclass(slots=True)
class Watch:
    """Registry entry."""

    watch_id: int
    stream: EventStream
    owner: Any
    kind: WatchKind

    @property
    def is_session(self) -> bool:
        return self.kind is WatchKind.SESSION


class DeliveryStatus(Enum):
    """Outcome of routing one notification."""

    UNKNOWN = auto()     # no such watch (already fired, forgotten or closed)
    FILTERED = auto()    # non-fatal session event on a one-shot watch
    DELIVERED = auto()
    OVERFLOW = auto()    # stream buffer full


@dataclass(frozen=True, slots=True)
class Delivery:
    status: DeliveryStatus
    watch: Optional[Watch] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED


class WatchRegistry:
    """
    Lock-guarded table of live watches.

    Usage:
        registry = WatchRegistry()
        match registry.register(session, WatchKind.ONE_SHOT):
            case Ok((watch_id, stream)):
                runtime.get(handle, path, watch_id)
            case Err(error):
                return Err(error)
    """

    _default: ClassVar[Optional[WatchRegistry]] = None
    _default_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        config: Optional[WatchConfig] = None,
        metrics: Optional[ClientMetrics] = None,
    ) -> None:
        self._config = config or WatchConfig()
        self._metrics = metrics or ClientMetrics()
        self._lock = threading.Lock()
        self._ids = itertools.count(0)
        self._watches: dict[int, Watch] = {}
        self._by_owner: dict[int, set[int]] = {}
        self._closed_owners: weakref.WeakSet[Any] = weakref.WeakSet()

    @classmethod
    def default(cls) -> WatchRegistry:
        """Process-wide registry shared by every session of the default runtime."""
        with cls._default_lock:
            if cls._default is None:
                cls._default = cls()
            return cls._default

    # =========================================================================
    # ALLOCATION
    # =========================================================================
    def register(self, owner: Any, kind: WatchKind) -> Result[tuple[int, EventStream], ZkError]:
        """
        Allocate a watch id and stream bound to ``owner``.

        Returns the closing error once ``owner`` has been closed.
        """
        capacity = (
            self._config.session_buffer if kind is WatchKind.SESSION
            else self._config.watch_buffer
        )
        with self._lock:
            if owner in self._closed_owners:
                return Err(SessionError.closing(operation="register_watch"))
            watch_id = next(self._ids)
            stream = EventStream(capacity)
            self._watches[watch_id] = Watch(watch_id, stream, owner, kind)
            self._by_owner.setdefault(id(owner), set()).add(watch_id)

        self._metrics.watches_registered.inc(kind=kind.value)
        self._metrics.watches_pending.inc()
        return Ok((watch_id, stream))

    def forget(self, watch_id: int) -> bool:
        """
        Remove a watch without delivering anything.

        Used when the operation that created the watch failed.
        """
        with self._lock:
            watch = self._remove(watch_id)
        if watch is None:
            return False
        watch.stream.close()
        self._metrics.watches_pending.dec()
        return True

    def close_all(self, owner: Any) -> int:
        """
        Retire every watch of ``owner`` and close their streams.

        ``owner`` can never register again afterwards.
        """
        with self._lock:
            self._closed_owners.add(owner)
            ids = self._by_owner.pop(id(owner), set())
            retired = [self._watches.pop(watch_id) for watch_id in sorted(ids)]
            for watch in retired:
                watch.stream.close()

        self._metrics.watches_pending.dec(len(retired))
        logger.debug("Closed %d watches of %r", len(retired), owner)
        return len(retired)

    # =========================================================================
    # DISPATCH
    # =========================================================================
    def deliver(
        self,
        watch_id: int,
        event: Event,
        retire_on_overflow: bool = False,
    ) -> Delivery:
        """
        Route one event: lookup, filter, non-blocking send, retire.

        One-shot watches accept non-session events and the session-fatal
        states only. They are retired and their stream closed right after
        the send. A full stream reports OVERFLOW; with
        ``retire_on_overflow`` the watch is retired and closed as well.
        """
        if event.type == EventType.CLOSED:
            raise ValueError("CLOSED events are synthesized by streams, never delivered")

        with self._lock:
            watch = self._watches.get(watch_id)
            if watch is None:
                return Delivery(DeliveryStatus.UNKNOWN)

            if (
                event.type == EventType.SESSION
                and not watch.is_session
                and not event.state.is_fatal
            ):
                return Delivery(DeliveryStatus.FILTERED, watch)

            if not watch.stream.offer(event):
                retired = retire_on_overflow
                status = DeliveryStatus.OVERFLOW
            else:
                retired = not watch.is_session
                status = DeliveryStatus.DELIVERED
            if retired:
                self._remove(watch_id)
                watch.stream.close()

        if retired:
            self._metrics.watches_pending.dec()
        return Delivery(status, watch)

    # =========================================================================
    # INTROSPECTION
    # =========================================================================
    def count_pending(self) -> int:
        """Live watches across every owner."""
        with self._lock:
            return len(self._watches)

    def count_owned(self, owner: Any) -> int:
        with self._lock:
            return len(self._by_owner.get(id(owner), ()))

    def get(self, watch_id: int) -> Optional[Watch]:
        with self._lock:
            return self._watches.get(watch_id)

    def _remove(self, watch_id: int) -> Optional[Watch]:
        """Drop an entry from both indexes (caller holds the lock)."""
        watch = self._watches.pop(watch_id, None)
        if watch is None:
            return None
        owned = self._by_owner.get(id(watch.owner))
        if owned is not None:
            owned.discard(watch_id)
            if not owned:
                del self._by_owner[id(watch.owner)]
        return watch

    def __repr__(self) -> str:
        return f"WatchRegistry(pending={self.count_pending()})"
