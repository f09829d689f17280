"""
Unit Tests: Event Dispatcher

Tests:
    - Routing of raw notifications through the registry
    - Overflow policies
    - Background loop lifecycle
"""

from zkmesh.core.config import OverflowPolicy, WatchConfig
from zkmesh.core.errors import WatchOverflowError
from zkmesh.core.types import Event, EventType, State, CLOSED_EVENT
from zkmesh.runtime.base import RawNotification
from zkmesh.watch.dispatcher import EventDispatcher
from zkmesh.watch.registry import DeliveryStatus, WatchKind

from zkmesh.tests.conftest import expect_event


class Owner:
    """Stand-in for a session."""


def notification(context, type=EventType.SESSION, path="", state=State.CONNECTED):
    return RawNotification(context, type, path, state)


class TestDispatch:
    """Tests for dispatch()."""

    def test_routes_to_stream(self, dispatcher, registry, metrics):
        watch_id, stream = registry.register(Owner(), WatchKind.SESSION).unwrap()
        status = dispatcher.dispatch(notification(watch_id))
        assert status is DeliveryStatus.DELIVERED
        assert stream.poll() == Event(EventType.SESSION, "", State.CONNECTED)
        assert metrics.events_dispatched.get(kind="session", type="SESSION") == 1

    def test_node_event(self, dispatcher, registry):
        watch_id, stream = registry.register(Owner(), WatchKind.ONE_SHOT).unwrap()
        dispatcher.dispatch(notification(watch_id, EventType.DELETED, "/a"))
        assert stream.receive() == Event(EventType.DELETED, "/a", State.CONNECTED)
        assert stream.receive() is CLOSED_EVENT

    def test_unknown_is_dropped(self, dispatcher, metrics):
        assert dispatcher.dispatch(notification(999)) is DeliveryStatus.UNKNOWN
        assert metrics.events_dropped.get(reason="unknown_watch") == 1

    def test_filtered_is_dropped(self, dispatcher, registry, metrics):
        watch_id, _ = registry.register(Owner(), WatchKind.ONE_SHOT).unwrap()
        status = dispatcher.dispatch(notification(watch_id, state=State.CONNECTING))
        assert status is DeliveryStatus.FILTERED
        assert metrics.events_dropped.get(reason="filtered") == 1


class TestOverflow:
    """Tests for full streams."""

    def test_abort_policy_calls_hook(self, dispatcher, registry, metrics, overflows):
        watch_id, stream = registry.register(Owner(), WatchKind.SESSION).unwrap()
        for _ in range(stream.capacity):
            dispatcher.dispatch(notification(watch_id))
        assert overflows == []

        status = dispatcher.dispatch(notification(watch_id))
        assert status is DeliveryStatus.OVERFLOW
        assert len(overflows) == 1
        assert isinstance(overflows[0], WatchOverflowError)
        assert overflows[0].watch_id == watch_id
        assert metrics.watch_overflows.get() == 1

    def test_report_policy_closes_stream(self, runtime, registry, metrics, overflows):
        dispatcher = EventDispatcher(
            runtime, registry,
            overflow_policy=OverflowPolicy.REPORT,
            on_overflow=overflows.append,
            metrics=metrics,
        )
        watch_id, stream = registry.register(Owner(), WatchKind.SESSION).unwrap()
        for _ in range(stream.capacity + 1):
            dispatcher.dispatch(notification(watch_id))

        assert overflows == []
        assert metrics.watch_overflows.get() == 1
        assert registry.get(watch_id) is None
        drained = list(stream)
        assert len(drained) == stream.capacity

    def test_from_config(self, runtime):
        dispatcher = EventDispatcher.from_config(
            runtime, WatchConfig(session_buffer=2, overflow_policy=OverflowPolicy.REPORT),
        )
        _, stream = dispatcher.registry.register(Owner(), WatchKind.SESSION).unwrap()
        assert stream.capacity == 2
        assert "report" in repr(dispatcher)


class TestLifecycle:
    """Tests for acquire/release and the background loop."""

    def test_lazy_start(self, dispatcher):
        assert not dispatcher.running
        assert dispatcher.references == 0
        dispatcher.acquire()
        dispatcher.acquire()
        assert dispatcher.running
        assert dispatcher.references == 2

    def test_release_keeps_loop(self, dispatcher):
        dispatcher.acquire()
        dispatcher.release()
        dispatcher.release()
        assert dispatcher.references == 0
        assert dispatcher.running

    def test_loop_routes_runtime_notifications(self, dispatcher, registry, runtime):
        watch_id, stream = registry.register(Owner(), WatchKind.ONE_SHOT).unwrap()
        dispatcher.acquire()
        runtime._push(watch_id, EventType.CREATED, "/b", State.CONNECTED)
        event = expect_event(stream)
        assert event == Event(EventType.CREATED, "/b", State.CONNECTED)
        assert expect_event(stream) is CLOSED_EVENT
