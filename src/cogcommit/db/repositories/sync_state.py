"""
Sync state repository: the persisted pull watermark.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from cogcommit.db.repositories.base import BaseRepository
from cogcommit.models.db import SyncStateRow

SYNC_STATE_ID = 1


class SyncStateRepository(BaseRepository[SyncStateRow]):
    """Single-row repository holding the last sync time."""

    def __init__(self, session: Session):
        super().__init__(SyncStateRow, session)

    def get_last_sync_time(self) -> Optional[str]:
        """
        Get the pull watermark.

        Returns:
            ISO-8601 timestamp of the last processed remote update, or None if
            this store has never pulled
        """
        row = self.get(SYNC_STATE_ID)
        return row.last_sync_at if row else None

    def set_last_sync_time(self, value: str) -> None:
        now = datetime.now(timezone.utc)
        row = self.get(SYNC_STATE_ID)
        if row is None:
            self.create(id=SYNC_STATE_ID, last_sync_at=value, updated_at=now)
        else:
            self.update(SYNC_STATE_ID, last_sync_at=value, updated_at=now)
