"""
RetryChange: Optimistic Read-Modify-Write

Applies a pure change function to a node, retrying whenever a concurrent
writer wins the race:

    1. Read the node. A missing node is fine; any other error aborts.
    2. Call change(old_value, old_stat) (b"" and None for a missing node).
       An Err from the change function aborts with that same error.
    3. Node missing: create it. NODEEXISTS restarts; anything else returns.
    4. Value unchanged: nothing to write.
    5. Set at the read version. BADVERSION or NONODE restarts; any other
       error is returned.

Not suited to nodes that are modified concurrently all the time; those
want a pessimistic lock instead.

Usage:
    def bump(old: bytes, stat: Optional[Stat]) -> Result[bytes, str]:
        return Ok(str(int(old or b"0") + 1).encode())

    session.retry_change("/counter", CreateFlag.PERSISTENT, world_acl(), bump)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

from zkmesh.core.types import Result, Ok, Err, ACL, Stat
from zkmesh.core.errors import ErrorCode, RetryExhaustedError, ZkError
from zkmesh.nodes.operations import NodeOperations
from zkmesh.reliability.retry import RetryPolicy, RetryStats

logger = logging.getLogger(__name__)

ChangeFunc = Callable[[bytes, Optional[Stat]], Result[bytes, Any]]

_RESTART_ON_SET = (ErrorCode.BADVERSION, ErrorCode.NONODE)


def retry_change(
    ops: NodeOperations,
    path: str,
    flags: int,
    acl: Sequence[ACL],
    change: ChangeFunc,
    policy: Optional[RetryPolicy] = None,
) -> Result[None, Any]:
    """
    Run the optimistic loop on ``path``.

    ``policy`` defaults to RetryPolicy.unbounded(); a bounded policy
    returns RetryExhaustedError once its attempts run out.
    """
    policy = policy or RetryPolicy.unbounded()
    stats = RetryStats()
    last_conflict: Optional[ZkError] = None

    for attempt in policy.attempts():
        if attempt > 0:
            stats.total_delay_ms += policy.sleep(attempt - 1)
        stats.total_attempts += 1

        read = ops.get(path)
        if read.is_ok():
            old_value, old_stat = read.unwrap()
        elif read.error.code is ErrorCode.NONODE:
            old_value, old_stat = b"", None
        else:
            return Err(read.error)

        changed = change(old_value, old_stat)
        if changed.is_err():
            return changed
        new_value = changed.unwrap()

        if old_stat is None:
            created = ops.create(path, new_value, flags, acl)
            if created.is_ok():
                return Ok(None)
            if created.error.code is not ErrorCode.NODEEXISTS:
                return Err(created.error)
            last_conflict = created.error
        else:
            if new_value == old_value:
                return Ok(None)
            written = ops.set(path, new_value, old_stat.version)
            if written.is_ok():
                return Ok(None)
            if written.error.code not in _RESTART_ON_SET:
                return Err(written.error)
            last_conflict = written.error

        stats.conflicts += 1
        stats.last_error = last_conflict.code.name
        ops.metrics.retry_change_conflicts.inc(reason=last_conflict.code.name)
        logger.debug(
            "Lost race on %s (%s), restarting (attempt %d)",
            path, last_conflict.code.name, attempt + 1,
        )

    logger.warning(
        "Giving up on %s after %d attempts (%d conflicts)",
        path, stats.total_attempts, stats.conflicts,
    )
    return Err(RetryExhaustedError.attempts(path, stats.total_attempts, last_conflict))
