"""
Visual attachment repository.
"""

from typing import Optional

from sqlalchemy.orm import Session

from cogcommit.db.repositories.base import BaseRepository
from cogcommit.models.commit import Visual
from cogcommit.models.db import VisualRow


def visual_from_row(row: VisualRow) -> Visual:
    return Visual(
        id=row.id,
        commit_id=row.commit_id,
        path=row.path,
        captured_at=row.captured_at,
        type=row.type,
        caption=row.caption,
        cloud_url=row.cloud_url,
        storage_key=row.storage_key,
    )


class VisualRepository(BaseRepository[VisualRow]):
    """Repository for visuals attached to commits."""

    def __init__(self, session: Session):
        super().__init__(VisualRow, session)

    def get_visual(self, visual_id: str) -> Optional[Visual]:
        row = self.get(visual_id)
        return visual_from_row(row) if row else None

    def get_for_commit(self, commit_id: str) -> list[Visual]:
        """
        Get all visuals of a commit, oldest capture first.

        Args:
            commit_id: Commit id

        Returns:
            List of visuals
        """
        rows = (
            self.session.query(VisualRow)
            .filter(VisualRow.commit_id == commit_id)
            .order_by(VisualRow.captured_at)
            .all()
        )
        return [visual_from_row(row) for row in rows]

    def upsert_visual(self, visual: Visual) -> None:
        values = {
            "commit_id": visual.commit_id,
            "path": visual.path,
            "captured_at": visual.captured_at,
            "type": visual.type,
            "caption": visual.caption,
            "cloud_url": visual.cloud_url,
            "storage_key": visual.storage_key,
        }
        if self.get(visual.id) is None:
            self.create(id=visual.id, **values)
        else:
            self.update(visual.id, **values)

    def set_cloud_location(self, visual_id: str, cloud_url: str, storage_key: str) -> bool:
        """
        Record where a visual lives in object storage.

        Returns:
            True if the visual exists
        """
        return (
            self.update(visual_id, cloud_url=cloud_url, storage_key=storage_key)
            is not None
        )
