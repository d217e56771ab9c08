"""
Local record store.

``LocalStore`` is the synchronous facade the sync engines consume: CRUD over
commits and visuals, status-indexed queries, version-mutation primitives and
the persisted pull watermark. Each mutating call is its own transaction.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, Optional

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from cogcommit.db.connection import (
    check_connection,
    create_db_engine,
    create_session_factory,
)
from cogcommit.db.repositories import (
    CommitRepository,
    SyncStateRepository,
    VisualRepository,
)
from cogcommit.models.commit import Commit, SyncStatus, Visual

logger = logging.getLogger(__name__)


class LocalStore:
    """
    Facade over the local SQLite database.

    Usage:
        store = LocalStore.open()  # ~/.cogcommit/cogcommit.db
        pending = store.get_by_sync_status(SyncStatus.PENDING)
        store.update_sync_status(pending[0].id, SyncStatus.SYNCED)
        store.close()
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._factory = create_session_factory(engine)
        self._session: Session = self._factory()
        self.commits = CommitRepository(self._session)
        self.visuals = VisualRepository(self._session)
        self.state = SyncStateRepository(self._session)

    @classmethod
    def open(cls, database_url: Optional[str] = None) -> "LocalStore":
        """
        Open (and create if needed) a local store.

        Args:
            database_url: SQLAlchemy URL; defaults to the configured file.
                Use ``sqlite://`` for an in-memory store.

        Returns:
            LocalStore
        """
        return cls(create_db_engine(database_url))

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Commit on success, roll back on any exception."""
        try:
            yield self._session
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def close(self) -> None:
        self._session.close()
        self.engine.dispose()

    def is_healthy(self) -> bool:
        return check_connection(self.engine)

    # Commits

    def get_commit(self, commit_id: str) -> Optional[Commit]:
        return self.commits.get_commit(commit_id)

    def get_commit_by_cloud_id(self, cloud_id: str) -> Optional[Commit]:
        return self.commits.get_by_cloud_id(cloud_id)

    def get_by_sync_status(self, status: SyncStatus) -> list[Commit]:
        return self.commits.get_by_sync_status(status)

    def count_by_sync_status(self) -> dict[str, int]:
        return self.commits.count_by_sync_status()

    def insert_commit(self, commit: Commit) -> None:
        with self.transaction():
            self.commits.insert_commit(commit)

    def delete_commit(self, commit_id: str) -> bool:
        """Hard-delete a commit; sessions, turns and visuals cascade."""
        with self.transaction():
            return self.commits.delete(commit_id)

    def update_sync_status(self, commit_id: str, status: SyncStatus) -> bool:
        with self.transaction():
            return self.commits.update_sync_status(commit_id, status)

    def update_sync_metadata(
        self,
        commit_id: str,
        cloud_id: Optional[str] = None,
        sync_status: Optional[SyncStatus] = None,
        cloud_version: Optional[int] = None,
        local_version: Optional[int] = None,
        last_synced_at: Optional[datetime] = None,
    ) -> bool:
        with self.transaction():
            return self.commits.update_sync_metadata(
                commit_id,
                cloud_id=cloud_id,
                sync_status=sync_status,
                cloud_version=cloud_version,
                local_version=local_version,
                last_synced_at=last_synced_at,
            )

    def increment_local_version(self, commit_id: str) -> Optional[int]:
        with self.transaction():
            return self.commits.increment_local_version(commit_id)

    def reset_all_sync_status(self) -> int:
        with self.transaction():
            count = self.commits.reset_all_sync_status()
        logger.info(f"Reset sync status of {count} commits")
        return count

    def update_commit(self, commit_id: str, **fields: Any) -> Optional[Commit]:
        """
        Apply a curation edit (title, published, hidden, display_order).

        Returns:
            Updated commit or None if not found
        """
        with self.transaction():
            return self.commits.apply_curation(commit_id, **fields)

    def apply_remote_commit(
        self,
        commit_id: str,
        remote: Commit,
        cloud_version: int,
        last_synced_at: datetime,
        local_version: Optional[int] = None,
    ) -> bool:
        """
        Overwrite a local commit from its remote copy and mark it synced.

        Content, children and sync metadata are written in one transaction.

        Args:
            commit_id: Local commit id
            remote: Commit built from the remote record
            cloud_version: Remote version now held locally
            last_synced_at: Reconciliation time
            local_version: New local version, if it should change

        Returns:
            True if the commit exists
        """
        with self.transaction():
            if not self.commits.apply_remote(commit_id, remote):
                return False
            return self.commits.update_sync_metadata(
                commit_id,
                cloud_id=remote.id,
                sync_status=SyncStatus.SYNCED,
                cloud_version=cloud_version,
                local_version=local_version,
                last_synced_at=last_synced_at,
            )

    # Visuals

    def get_visual(self, visual_id: str) -> Optional[Visual]:
        return self.visuals.get_visual(visual_id)

    def get_visuals_for_commit(self, commit_id: str) -> list[Visual]:
        return self.visuals.get_for_commit(commit_id)

    def save_visual(self, visual: Visual) -> None:
        with self.transaction():
            self.visuals.upsert_visual(visual)

    def set_visual_cloud_location(
        self, visual_id: str, cloud_url: str, storage_key: str
    ) -> bool:
        with self.transaction():
            return self.visuals.set_cloud_location(visual_id, cloud_url, storage_key)

    # Pull watermark

    def get_last_sync_time(self) -> Optional[str]:
        return self.state.get_last_sync_time()

    def set_last_sync_time(self, value: str) -> None:
        with self.transaction():
            self.state.set_last_sync_time(value)
