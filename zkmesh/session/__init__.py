"""
Session module: dialing, closing and resuming coordination sessions.
"""

from zkmesh.session.session import Session, dial, redial

__all__ = [
    "Session",
    "dial",
    "redial",
]
