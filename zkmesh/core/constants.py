"""
System-Wide Constants for the zkmesh Coordination Client

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
MS: Final[int] = 1
SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS

NS_PER_MS: Final[int] = 1_000_000

# =============================================================================
# SESSION
# =============================================================================
DEFAULT_SERVERS: Final[str] = "localhost:2181"
DEFAULT_TIMEOUT_MS: Final[int] = 5 * SECOND_MS
DEFAULT_RUNTIME: Final[str] = "kazoo"
KNOWN_RUNTIMES: Final[frozenset[str]] = frozenset({"kazoo", "memory"})

# =============================================================================
# WATCH STREAMS
# =============================================================================
# Session streams see every connectivity transition; the application
# must drain them or the dispatcher treats the overflow as fatal.
SESSION_STREAM_CAPACITY: Final[int] = 32
# One-shot streams receive a single node event or a single session event.
WATCH_STREAM_CAPACITY: Final[int] = 1

# =============================================================================
# NODES
# =============================================================================
ANY_VERSION: Final[int] = -1
SEQUENCE_DIGITS: Final[int] = 10
SYSTEM_NODE: Final[str] = "/zookeeper"
MAX_DATA_BYTES: Final[int] = 1024 * 1024

# =============================================================================
# RETRY CHANGE
# =============================================================================
RETRY_CHANGE_BASE_DELAY_MS: Final[int] = 0
RETRY_CHANGE_MAX_DELAY_MS: Final[int] = 1 * SECOND_MS

# =============================================================================
# DISPATCHER
# =============================================================================
DISPATCHER_THREAD_NAME: Final[str] = "zkmesh-dispatcher"
# Exit status used when the process is torn down on a stream overflow.
OVERFLOW_EXIT_CODE: Final[int] = 70
