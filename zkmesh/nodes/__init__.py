"""
Nodes module: the node operation facade and the optimistic retry loop.
"""

from zkmesh.nodes.operations import NodeOperations
from zkmesh.nodes.retry_change import retry_change, ChangeFunc

__all__ = [
    "NodeOperations",
    "retry_change",
    "ChangeFunc",
]
