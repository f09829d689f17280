"""
Watch module: event streams, the watch registry and the dispatcher.
"""

from zkmesh.watch.stream import EventStream
from zkmesh.watch.registry import (
    WatchRegistry,
    WatchKind,
    Watch,
    Delivery,
    DeliveryStatus,
)
from zkmesh.watch.dispatcher import EventDispatcher

__all__ = [
    "EventStream",
    "WatchRegistry",
    "WatchKind",
    "Watch",
    "Delivery",
    "DeliveryStatus",
    "EventDispatcher",
]
