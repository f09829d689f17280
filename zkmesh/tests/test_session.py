"""
Integration Tests: Session Lifecycle

Tests:
    - dial / redial / close against the in-memory runtime
    - Session stream events: connect, reconnect, expiry, auth failure
    - Watch bookkeeping across close
"""

import threading

import pytest

from zkmesh.core.errors import ErrorCode, SessionError
from zkmesh.core.types import CreateFlag, EventType, State, CLOSED_EVENT
from zkmesh.session import dial, redial

from zkmesh.tests.conftest import SERVERS, expect_event


class TestDial:
    """Tests for opening sessions."""

    def test_first_event_is_connected(self, connect):
        session, events = connect()
        assert not session.closed
        assert session.servers == SERVERS
        assert session.watch_count == 1
        assert events.poll() is None

    def test_dispatcher_references(self, connect, dispatcher):
        first, _ = connect()
        second, _ = connect()
        assert dispatcher.running
        assert dispatcher.references == 2
        first.close()
        second.close()
        assert dispatcher.references == 0

    @pytest.mark.parametrize("servers", ["localhost:lala", "", "localhost", "host:0"])
    def test_bad_address(self, dispatcher, registry, servers):
        """A malformed server list fails synchronously and leaks no watch."""
        result = dial(servers, 5.0, dispatcher=dispatcher)
        assert result.is_err()
        assert result.error.code is ErrorCode.BADARGUMENTS
        assert registry.count_pending() == 0
        assert dispatcher.references == 0

    def test_negative_timeout(self, dispatcher):
        result = dial(SERVERS, -1, dispatcher=dispatcher)
        assert result.error.code is ErrorCode.BADARGUMENTS

    def test_zero_timeout_never_connects(self, dispatcher):
        """With no receive timeout the handshake never completes."""
        session, events = dial(SERVERS, 0, dispatcher=dispatcher).unwrap()
        try:
            assert events.receive(timeout=0.2) is None
            result = session.get("/")
            assert result.error.code is ErrorCode.OPERATIONTIMEOUT
        finally:
            session.close()


class TestClose:
    """Tests for closing sessions."""

    def test_close_closes_every_stream(self, connect, registry):
        session, events = connect()
        session.create("/watched", b"x").unwrap()
        _, data_watch = session.exists_and_watch("/watched").unwrap()
        _, _, get_watch = session.get_and_watch("/watched").unwrap()
        _, _, child_watch = session.children_and_watch("/").unwrap()
        assert session.watch_count == 4
        assert registry.count_pending() == 4

        assert session.close().is_ok()
        assert registry.count_pending() == 0
        for stream in (events, data_watch, get_watch, child_watch):
            assert stream.receive(timeout=0.1) is CLOSED_EVENT

    def test_double_close(self, zk):
        assert zk.close().is_ok()
        result = zk.close()
        assert result.is_err()
        assert isinstance(result.error, SessionError)
        assert result.error.code is ErrorCode.CLOSING

    def test_concurrent_close(self, connect, registry):
        """Two threads racing to close: exactly one wins."""
        session, events = connect()
        session.exists_and_watch("/raced").unwrap()
        start = threading.Barrier(2)
        results = []

        def close():
            start.wait()
            results.append(session.close())

        threads = [threading.Thread(target=close) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5.0)
            assert not thread.is_alive()

        assert sorted(result.is_ok() for result in results) == [False, True]
        failed = next(result for result in results if result.is_err())
        assert failed.error.code is ErrorCode.CLOSING
        assert registry.count_pending() == 0
        assert events.receive(timeout=0.1) is CLOSED_EVENT

    def test_operations_after_close(self, zk):
        zk.close()
        assert zk.closed
        assert zk.get("/").error.code is ErrorCode.CLOSING
        assert zk.exists_and_watch("/").error.code is ErrorCode.CLOSING
        assert zk.create("/a").error.code is ErrorCode.CLOSING
        assert zk.client_id().error.code is ErrorCode.CLOSING

    def test_context_manager(self, connect):
        session, events = connect()
        with session:
            session.create("/ctx", b"").unwrap()
        assert session.closed
        assert events.receive(timeout=0.1) is CLOSED_EVENT

    def test_ephemerals_removed_on_close(self, connect):
        first, _ = connect()
        second, _ = connect()
        first.create("/ephemeral", b"", flags=CreateFlag.EPHEMERAL).unwrap()
        stat, watch = second.exists_and_watch("/ephemeral").unwrap()
        assert stat.is_ephemeral

        first.close()
        event = expect_event(watch)
        assert event.type == EventType.DELETED
        assert second.exists("/ephemeral").unwrap() is None


class TestRedial:
    """Tests for session resumption."""

    def test_same_client_id(self, connect, dispatcher):
        session, _ = connect()
        client_id = session.client_id().unwrap()

        resumed, events = redial(SERVERS, 5.0, client_id, dispatcher=dispatcher).unwrap()
        try:
            assert expect_event(events).ok
            assert resumed.client_id().unwrap() == client_id
        finally:
            resumed.close()

    def test_stale_client_id_expires(self, connect, dispatcher):
        session, _ = connect()
        client_id = session.client_id().unwrap()
        session.close()

        resumed, events = redial(SERVERS, 5.0, client_id, dispatcher=dispatcher).unwrap()
        try:
            event = expect_event(events)
            assert event.type == EventType.SESSION
            assert event.state == State.EXPIRED_SESSION
            assert resumed.get("/").error.code is ErrorCode.SESSIONEXPIRED
        finally:
            resumed.close()


class TestConnectivity:
    """Tests for connection loss, expiry and auth failure."""

    def test_reconnect(self, zk, runtime, connect):
        session, events = connect()
        _, watch = session.exists_and_watch("/later").unwrap()

        runtime.suspend()
        event = expect_event(events)
        assert event.state == State.CONNECTING
        assert session.get("/").error.code is ErrorCode.CONNECTIONLOSS

        runtime.resume()
        event = expect_event(events)
        assert event.state == State.CONNECTED
        assert session.get("/").is_ok()

        # Transient states never reach one-shot watches
        assert watch.poll() is None
        zk.create("/later", b"").unwrap()
        assert expect_event(watch).type == EventType.CREATED

    def test_expiry_by_closing_a_resumed_session(self, connect, dispatcher):
        """Closing any handle of a session expires its other handles."""
        session, events = connect()
        _, watch = session.exists_and_watch("/missing").unwrap()
        client_id = session.client_id().unwrap()

        twin, twin_events = redial(SERVERS, 5.0, client_id, dispatcher=dispatcher).unwrap()
        assert expect_event(twin_events).ok
        twin.close()

        event = expect_event(events)
        assert event.state == State.EXPIRED_SESSION
        assert not event.ok
        event = expect_event(watch)
        assert event.type == EventType.SESSION
        assert event.state == State.EXPIRED_SESSION
        assert expect_event(watch) is CLOSED_EVENT
        assert session.get("/").error.code is ErrorCode.SESSIONEXPIRED

    def test_server_side_expiry(self, connect, runtime):
        session, events = connect()
        session_id = session.client_id().unwrap().session_id
        assert runtime.expire_session(session_id)
        assert not runtime.expire_session(session_id)
        assert expect_event(events).state == State.EXPIRED_SESSION

    def test_auth_failure_is_fatal(self, connect):
        session, events = connect()
        _, watch = session.exists_and_watch("/missing").unwrap()

        result = session.add_auth("bogus", "credential")
        assert result.error.code is ErrorCode.AUTHFAILED
        assert expect_event(events).state == State.AUTH_FAILED
        assert expect_event(watch).state == State.AUTH_FAILED
        assert session.get("/").error.code is ErrorCode.AUTHFAILED


class TestMetrics:
    """Tests for instrumentation wired through the dispatcher."""

    def test_operation_latency_recorded(self, zk, metrics):
        zk.get("/").unwrap()
        zk.get("/").unwrap()
        assert metrics.operation_seconds.count(operation="get") == 2

    def test_session_watch_pending(self, zk, metrics):
        assert metrics.watches_registered.get(kind="session") == 1
        assert metrics.watches_pending.get() == 1
