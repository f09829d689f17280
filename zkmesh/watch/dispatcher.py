"""
Event Dispatcher: Single Background Router

One daemon thread per runtime blocks in runtime.wait_notification() and
routes every raw notification to its destination stream through the
watch registry.

Lifecycle:
    - Started lazily by the first acquire() (first successful dial)
    - A reference count tracks open sessions; reaching zero does not stop
      the thread, it only keeps the next acquire() from starting another

Overflow:
    A stream with a full buffer means its consumer is not draining it.
    OverflowPolicy.ABORT (default) logs at CRITICAL and aborts the process;
    OverflowPolicy.REPORT logs at ERROR, retires the watch and closes its
    stream so the consumer observes CLOSED_EVENT.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Callable, ClassVar, Optional

from zkmesh.core.types import Event
from zkmesh.core.config import OverflowPolicy, WatchConfig, ZkMeshConfig
from zkmesh.core.errors import WatchOverflowError
from zkmesh.core import constants as C
from zkmesh.observability.metrics import ClientMetrics
from zkmesh.runtime.base import CoordinationRuntime, RawNotification, runtime_for
from zkmesh.watch.registry import DeliveryStatus, WatchRegistry

logger = logging.getLogger(__name__)

OverflowHook = Callable[[WatchOverflowError], None]


def _abort(error: WatchOverflowError) -> None:
    os.abort()


class EventDispatcher:
    """
    Routes runtime notifications to event streams.

    Usage:
        dispatcher = EventDispatcher(InMemoryRuntime(), WatchRegistry())
        session, events = dial(servers, 5.0, dispatcher=dispatcher).unwrap()
    """

    _default: ClassVar[Optional[EventDispatcher]] = None
    _default_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        runtime: CoordinationRuntime,
        registry: Optional[WatchRegistry] = None,
        *,
        overflow_policy: OverflowPolicy = OverflowPolicy.ABORT,
        on_overflow: Optional[OverflowHook] = None,
        metrics: Optional[ClientMetrics] = None,
    ) -> None:
        self._runtime = runtime
        self._registry = registry or WatchRegistry()
        self._overflow_policy = overflow_policy
        self._on_overflow = on_overflow or _abort
        self._metrics = metrics or ClientMetrics()
        self._lock = threading.Lock()
        self._refs = 0
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def default(cls) -> EventDispatcher:
        """
        Process-wide dispatcher, built from ZKMESH_* environment settings.

        Raises:
            ValueError: invalid environment configuration
        """
        with cls._default_lock:
            if cls._default is None:
                config = ZkMeshConfig.from_env()
                if config.is_err():
                    raise ValueError(config.error)
                settings = config.unwrap()
                validated = settings.validate()
                if validated.is_err():
                    raise ValueError(validated.error)
                cls._default = cls(
                    runtime_for(settings.session.runtime),
                    WatchRegistry.default(),
                    overflow_policy=settings.watch.overflow_policy,
                )
            return cls._default

    @classmethod
    def from_config(
        cls,
        runtime: CoordinationRuntime,
        config: WatchConfig,
        **kwargs,
    ) -> EventDispatcher:
        """Dispatcher with its own registry sized by ``config``."""
        return cls(
            runtime,
            WatchRegistry(config),
            overflow_policy=config.overflow_policy,
            **kwargs,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    def acquire(self) -> None:
        """Count one more open session, starting the loop on first use."""
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run,
                    name=C.DISPATCHER_THREAD_NAME,
                    daemon=True,
                )
                self._thread.start()
                logger.debug("Dispatcher started for %r", self._runtime)
            self._refs += 1

    def release(self) -> None:
        """Count one session fewer. The loop keeps running."""
        with self._lock:
            if self._refs > 0:
                self._refs -= 1

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def references(self) -> int:
        with self._lock:
            return self._refs

    @property
    def runtime(self) -> CoordinationRuntime:
        return self._runtime

    @property
    def registry(self) -> WatchRegistry:
        return self._registry

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics

    def _run(self) -> None:
        while True:
            notification = self._runtime.wait_notification()
            if notification is None:
                continue
            try:
                self.dispatch(notification)
            except Exception:
                logger.exception("Failed to dispatch %r", notification)

    # =========================================================================
    # ROUTING
    # =========================================================================
    def dispatch(self, notification: RawNotification) -> DeliveryStatus:
        """Route one notification; returns what happened to it."""
        event = Event(type=notification.type, path=notification.path, state=notification.state)
        delivery = self._registry.deliver(
            notification.context,
            event,
            retire_on_overflow=self._overflow_policy is OverflowPolicy.REPORT,
        )

        if delivery.status is DeliveryStatus.DELIVERED:
            self._metrics.events_dispatched.inc(
                kind=delivery.watch.kind.value, type=event.type.name,
            )
        elif delivery.status is DeliveryStatus.UNKNOWN:
            self._metrics.events_dropped.inc(reason="unknown_watch")
            logger.debug("Dropped event for unknown watch %d: %s", notification.context, event)
        elif delivery.status is DeliveryStatus.FILTERED:
            self._metrics.events_dropped.inc(reason="filtered")
            logger.debug("Filtered session event on watch %d: %s", notification.context, event)
        else:
            self._overflow(delivery.watch.watch_id, delivery.watch.kind.value,
                           delivery.watch.stream.capacity, event)
        return delivery.status

    def _overflow(self, watch_id: int, kind: str, capacity: int, event: Event) -> None:
        self._metrics.watch_overflows.inc()
        error = WatchOverflowError.stream_full(watch_id, kind, capacity)

        if self._overflow_policy is OverflowPolicy.REPORT:
            logger.error(
                "%s; watch %d retired and its stream closed (lost: %s)",
                error.message, watch_id, event,
                extra={"error_id": error.error_id},
            )
            return

        logger.critical(
            "%s; the consumer stopped draining it (lost: %s)",
            error.message, event,
            extra={"error_id": error.error_id},
        )
        self._on_overflow(error)

    def __repr__(self) -> str:
        return (
            f"EventDispatcher(runtime={self._runtime!r}, refs={self._refs}, "
            f"policy={self._overflow_policy.value})"
        )
