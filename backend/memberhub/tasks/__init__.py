"""
Background task management for roster sync.
"""

from .sync_tasks import SyncScheduler

__all__ = [
    "SyncScheduler",
]
