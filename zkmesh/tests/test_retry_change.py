"""
Integration Tests: RetryChange

Tests:
    - Create, update and no-op paths
    - Restart on lost races (set and create)
    - Errors that end the loop
    - Bounded retry policies
"""

from zkmesh.core.errors import ErrorCode, RetryExhaustedError
from zkmesh.core.types import Ok, Err, CreateFlag, Perm, world_acl
from zkmesh.nodes.retry_change import retry_change
from zkmesh.reliability.retry import RetryPolicy

ACL = world_acl()


class TestOutcomes:
    """Tests for the single-writer paths."""

    def test_creates_missing_node(self, zk):
        seen = []

        def change(old, stat):
            seen.append((old, stat))
            return Ok(b"new")

        assert zk.retry_change("/counter", CreateFlag.PERSISTENT, ACL, change).is_ok()
        assert seen == [(b"", None)]
        data, stat = zk.get("/counter").unwrap()
        assert data == b"new"
        assert stat.version == 0

    def test_creates_with_flags(self, zk):
        zk.retry_change("/eph", CreateFlag.EPHEMERAL, ACL, lambda old, stat: Ok(b"x")).unwrap()
        assert zk.exists("/eph").unwrap().is_ephemeral

    def test_updates_existing_node(self, zk):
        zk.create("/counter", b"old").unwrap()

        def change(old, stat):
            assert stat.version == 0
            return Ok(old + b" new")

        assert zk.retry_change("/counter", CreateFlag.PERSISTENT, ACL, change).is_ok()
        data, stat = zk.get("/counter").unwrap()
        assert data == b"old new"
        assert stat.version == 1

    def test_unchanged_value_skips_write(self, zk):
        zk.create("/counter", b"same").unwrap()
        result = zk.retry_change("/counter", CreateFlag.PERSISTENT, ACL, lambda old, stat: Ok(old))
        assert result.is_ok()
        assert zk.get("/counter").unwrap()[1].version == 0

    def test_change_error_is_returned(self, zk):
        zk.create("/counter", b"").unwrap()
        result = zk.retry_change(
            "/counter", CreateFlag.PERSISTENT, ACL, lambda old, stat: Err("refused"),
        )
        assert result == Err("refused")


class TestConflicts:
    """Tests for restarts after a concurrent writer wins."""

    def test_lost_set_race(self, connect, metrics):
        session, _ = connect()
        rival, _ = connect()
        session.create("/counter", b"0").unwrap()
        calls = []

        def bump(old, stat):
            calls.append(old)
            if len(calls) == 1:
                rival.set("/counter", b"10").unwrap()
            return Ok(str(int(old) + 1).encode())

        assert session.retry_change("/counter", CreateFlag.PERSISTENT, ACL, bump).is_ok()
        assert calls == [b"0", b"10"]
        assert session.get("/counter").unwrap()[0] == b"11"
        assert metrics.retry_change_conflicts.get(reason="BADVERSION") == 1

    def test_lost_create_race(self, connect, metrics):
        session, _ = connect()
        rival, _ = connect()
        calls = []

        def change(old, stat):
            calls.append(stat)
            if stat is None:
                rival.create("/counter", b"rival").unwrap()
            return Ok(old + b"+mine")

        assert session.retry_change("/counter", CreateFlag.PERSISTENT, ACL, change).is_ok()
        assert calls[0] is None
        assert calls[1] is not None
        assert session.get("/counter").unwrap()[0] == b"rival+mine"
        assert metrics.retry_change_conflicts.get(reason="NODEEXISTS") == 1

    def test_node_deleted_between_read_and_write(self, connect):
        session, _ = connect()
        rival, _ = connect()
        session.create("/counter", b"0").unwrap()
        calls = []

        def change(old, stat):
            calls.append(stat)
            if len(calls) == 1:
                rival.delete("/counter").unwrap()
            return Ok(b"1")

        assert session.retry_change("/counter", CreateFlag.PERSISTENT, ACL, change).is_ok()
        assert calls[1] is None
        assert session.get("/counter").unwrap()[0] == b"1"

    def test_bounded_policy_gives_up(self, connect):
        session, _ = connect()
        rival, _ = connect()
        session.create("/counter", b"0").unwrap()

        def always_lose(old, stat):
            rival.set("/counter", old + b"!").unwrap()
            return Ok(b"mine")

        policy = RetryPolicy(max_retries=2, base_delay_ms=0, jitter=False)
        result = retry_change(session, "/counter", CreateFlag.PERSISTENT, ACL, always_lose, policy)
        assert result.is_err()
        assert isinstance(result.error, RetryExhaustedError)
        assert result.error.code is ErrorCode.RETRY_EXHAUSTED
        assert result.error.context["attempts"] == 3
        assert result.error.cause.code is ErrorCode.BADVERSION


class TestErrors:
    """Tests for errors that end the loop."""

    def test_set_error_is_returned(self, zk):
        zk.create("/readonly", b"", acl=world_acl(Perm.READ)).unwrap()
        result = zk.retry_change(
            "/readonly", CreateFlag.PERSISTENT, ACL, lambda old, stat: Ok(b"x"),
        )
        assert result.is_err()
        assert result.error.code is ErrorCode.NOAUTH

    def test_read_error_is_returned(self, zk):
        zk.create("/writeonly", b"", acl=world_acl(Perm.WRITE)).unwrap()
        calls = []

        def change(old, stat):
            calls.append(old)
            return Ok(b"x")

        result = zk.retry_change("/writeonly", CreateFlag.PERSISTENT, ACL, change)
        assert result.error.code is ErrorCode.NOAUTH
        assert calls == []

    def test_create_error_is_returned(self, zk):
        result = zk.retry_change(
            "/missing/child", CreateFlag.PERSISTENT, ACL, lambda old, stat: Ok(b"x"),
        )
        assert result.error.code is ErrorCode.NONODE

    def test_closed_session(self, zk):
        zk.close()
        result = zk.retry_change("/a", CreateFlag.PERSISTENT, ACL, lambda old, stat: Ok(b"x"))
        assert result.error.code is ErrorCode.CLOSING
