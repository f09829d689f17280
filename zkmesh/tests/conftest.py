"""
Shared fixtures.

Every test gets its own InMemoryRuntime, WatchRegistry and EventDispatcher,
so watch counts never leak between tests.
"""

from __future__ import annotations

from typing import Callable

import pytest

from zkmesh.core.types import Event
from zkmesh.observability.metrics import ClientMetrics, MetricsCollector
from zkmesh.runtime.memory import InMemoryRuntime
from zkmesh.session import Session, dial
from zkmesh.watch import EventDispatcher, EventStream, WatchRegistry

SERVERS = "localhost:2181"

# Seconds to wait for an event the dispatcher thread must deliver
WAIT = 2.0


def expect_event(stream: EventStream, timeout: float = WAIT) -> Event:
    event = stream.receive(timeout=timeout)
    assert event is not None, "no event delivered in time"
    return event


@pytest.fixture
def runtime() -> InMemoryRuntime:
    return InMemoryRuntime()


@pytest.fixture
def metrics() -> ClientMetrics:
    return ClientMetrics(MetricsCollector())


@pytest.fixture
def registry(metrics: ClientMetrics) -> WatchRegistry:
    return WatchRegistry(metrics=metrics)


@pytest.fixture
def overflows() -> list:
    """Overflow errors reported to the dispatcher's hook."""
    return []


@pytest.fixture
def dispatcher(runtime, registry, metrics, overflows) -> EventDispatcher:
    return EventDispatcher(runtime, registry, on_overflow=overflows.append, metrics=metrics)


@pytest.fixture
def connect(dispatcher, registry) -> Callable[..., tuple[Session, EventStream]]:
    """
    Dial a session and wait for it to connect.

    Every session is closed on teardown, after which no watch may remain.
    """
    opened: list[Session] = []

    def _connect(servers: str = SERVERS, timeout: float = 5.0) -> tuple[Session, EventStream]:
        session, events = dial(servers, timeout, dispatcher=dispatcher).unwrap()
        opened.append(session)
        event = expect_event(events)
        assert event.ok, str(event)
        return session, events

    yield _connect

    for session in opened:
        if not session.closed:
            session.close()
    assert registry.count_pending() == 0


@pytest.fixture
def zk(connect) -> Session:
    session, _ = connect()
    return session
