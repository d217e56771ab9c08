"""
Repository layer for the local record store.
"""

from cogcommit.db.repositories.base import BaseRepository
from cogcommit.db.repositories.commit import CommitRepository
from cogcommit.db.repositories.sync_state import SyncStateRepository
from cogcommit.db.repositories.visual import VisualRepository

__all__ = [
    "BaseRepository",
    "CommitRepository",
    "SyncStateRepository",
    "VisualRepository",
]
