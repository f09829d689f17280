"""
Unit Tests: Core Types

Tests:
    - Result monad behaviour
    - Event rendering and ok()
    - Stat, ACL helpers and ClientId
"""

import pytest

from zkmesh.core.types import (
    Ok,
    Err,
    Event,
    EventType,
    State,
    CLOSED_EVENT,
    Stat,
    ACL,
    Perm,
    CreateFlag,
    ClientId,
    Timestamp,
    world_acl,
    auth_acl,
    digest_acl,
    digest_id,
)


class TestResult:
    """Tests for Ok/Err."""

    def test_ok_unwrap(self):
        """Ok exposes its value."""
        result = Ok(3)
        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == 3
        assert result.unwrap_or(5) == 3

    def test_err_unwrap_raises(self):
        """Unwrapping an Err is a programming error."""
        result = Err("boom")
        assert result.is_err()
        assert result.unwrap_or(5) == 5
        with pytest.raises(RuntimeError, match="boom"):
            result.unwrap()

    def test_map_and_flat_map(self):
        """Transformations apply to Ok and skip Err."""
        assert Ok(2).map(lambda v: v * 2) == Ok(4)
        assert Ok(2).flat_map(lambda v: Err(f"bad {v}")) == Err("bad 2")
        assert Err("e").map(lambda v: v * 2) == Err("e")
        assert Err("e").flat_map(lambda v: Ok(v)) == Err("e")


class TestEvent:
    """Tests for Event."""

    def test_session_event_string(self):
        """Session events render only the state."""
        event = Event(EventType.SESSION, "/path", State.CONNECTED)
        assert str(event) == "ZooKeeper connected"

    def test_node_event_string(self):
        """Node events render the state, the change and the path."""
        event = Event(EventType.CREATED, "/path", State.CONNECTED)
        assert str(event) == "ZooKeeper connected; path created: /path"

        event = Event(EventType.CHILD, "/", State.CONNECTED)
        assert str(event) == "ZooKeeper connected; path children changed: /"

    def test_closed_event_string(self):
        """A closed state renders as a closed connection."""
        event = Event(EventType.SESSION, "/path", State.CLOSED)
        assert str(event) == "ZooKeeper connection closed"
        assert str(CLOSED_EVENT) == "ZooKeeper connection closed"

    @pytest.mark.parametrize("event,ok", [
        (Event(EventType.SESSION, "", State.CONNECTED), True),
        (Event(EventType.CREATED, "", State.CONNECTED), True),
        (Event(EventType.CLOSED, "", State.CLOSED), False),
        (Event(EventType.SESSION, "", State.EXPIRED_SESSION), False),
        (Event(EventType.SESSION, "", State.AUTH_FAILED), False),
        (Event(EventType.SESSION, "", State.CONNECTING), False),
    ])
    def test_ok(self, event, ok):
        """Only the connected state is ok."""
        assert event.ok is ok

    def test_closed_sentinel(self):
        """CLOSED_EVENT is the zero event."""
        assert CLOSED_EVENT.type == EventType.CLOSED
        assert CLOSED_EVENT.state == State.CLOSED
        assert CLOSED_EVENT.is_closed
        assert not Event(EventType.SESSION, "", State.CONNECTED).is_closed

    def test_fatal_states(self):
        """Expiry and auth failure are the session-fatal states."""
        assert State.EXPIRED_SESSION.is_fatal
        assert State.AUTH_FAILED.is_fatal
        assert not State.CONNECTING.is_fatal
        assert not State.CONNECTED.is_fatal

    def test_wire_values(self):
        """Enum values match the protocol."""
        assert EventType.CREATED == 1
        assert EventType.SESSION == -1
        assert State.CONNECTED == 3
        assert State.EXPIRED_SESSION == -112


class TestStat:
    """Tests for Stat."""

    def test_defaults_are_zero(self):
        stat = Stat()
        assert stat.version == 0
        assert stat.num_children == 0
        assert not stat.is_ephemeral

    def test_ephemeral(self):
        assert Stat(ephemeral_owner=0x1234).is_ephemeral

    def test_immutable(self):
        with pytest.raises(AttributeError):
            Stat().version = 3


class TestACL:
    """Tests for ACL helpers."""

    def test_world_acl(self):
        assert world_acl() == [ACL(31, "world", "anyone")]
        assert world_acl(Perm.READ) == [ACL(1, "world", "anyone")]

    def test_auth_acl(self):
        assert auth_acl(Perm.READ | Perm.WRITE) == [ACL(3, "auth", "")]

    def test_digest_id(self):
        """Digest identities use base64(sha1(user:password))."""
        assert digest_id("joe", "passwd") == "joe:enQcM3mIEHQx7IrPNStYBc0qfs8="

    def test_digest_acl(self):
        assert digest_acl("joe", "passwd", Perm.READ) == [
            ACL(1, "digest", "joe:enQcM3mIEHQx7IrPNStYBc0qfs8="),
        ]

    def test_create_flags(self):
        assert CreateFlag.EPHEMERAL | CreateFlag.SEQUENCE == 3
        assert CreateFlag.PERSISTENT == 0


class TestClientId:
    """Tests for ClientId."""

    def test_equality(self):
        assert ClientId(1, b"pw") == ClientId(1, b"pw")
        assert ClientId(1, b"pw") != ClientId(1, b"other")

    def test_password_hidden(self):
        """The password never appears in repr or str."""
        client_id = ClientId(0x1f, b"secret")
        assert "secret" not in repr(client_id)
        assert str(client_id) == "0x1f"


class TestTimestamp:
    """Tests for Timestamp."""

    def test_conversions(self):
        ts = Timestamp.from_millis(1500)
        assert ts.millis == 1500
        assert ts.seconds == 1.5
        assert Timestamp(nanos=10) - Timestamp(nanos=4) == 6

    def test_ordering(self):
        assert Timestamp(nanos=1) < Timestamp(nanos=2)
