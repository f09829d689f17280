"""
Event Stream: Bounded, Closable Event Queue

The consumer end of a watch. The dispatcher offers events without ever
blocking; the application receives them on its own thread.

Once closed, a stream drains the events it already holds and then yields
CLOSED_EVENT forever.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Iterator, Optional

from zkmesh.core.types import Event, CLOSED_EVENT


class EventStream:
    """
    Bounded single-consumer event queue.

    Usage:
        for event in stream:        # stops once the stream is closed
            if not event.ok:
                break
            handle(event)
    """

    __slots__ = ("_capacity", "_events", "_closed", "_cond")

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._events: deque[Event] = deque()
        self._closed = False
        self._cond = threading.Condition(threading.Lock())

    # =========================================================================
    # PRODUCER SIDE
    # =========================================================================
    def offer(self, event: Event) -> bool:
        """
        Enqueue without blocking.

        Returns False when the buffer is full.

        Raises:
            RuntimeError: the stream is closed
        """
        with self._cond:
            if self._closed:
                raise RuntimeError("offer on closed event stream")
            if len(self._events) >= self._capacity:
                return False
            self._events.append(event)
            self._cond.notify()
            return True

    def close(self) -> None:
        """Close the stream. Idempotent."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    # =========================================================================
    # CONSUMER SIDE
    # =========================================================================
    def receive(self, timeout: Optional[float] = None) -> Optional[Event]:
        """
        Next event, blocking up to ``timeout`` seconds.

        Returns None on timeout and CLOSED_EVENT once closed and drained.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._events or self._closed, timeout):
                return None
            if self._events:
                return self._events.popleft()
            return CLOSED_EVENT

    def poll(self) -> Optional[Event]:
        """Next event without waiting (None when nothing is buffered)."""
        with self._cond:
            if self._events:
                return self._events.popleft()
            if self._closed:
                return CLOSED_EVENT
            return None

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.receive()
            if event is None or event.is_closed:
                return
            yield event

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._cond:
            return len(self._events)

    def __repr__(self) -> str:
        return (
            f"EventStream(buffered={len(self)}, capacity={self._capacity}, "
            f"closed={self.closed})"
        )
