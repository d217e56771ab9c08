"""
Commit repository.

Reads hand back ``cogcommit.models.commit`` dataclasses so sync runs work on
detached copies; writes go through the ORM rows and are flushed, leaving the
transaction boundary to the caller.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from cogcommit.db.repositories.base import BaseRepository
from cogcommit.models.commit import ClosedBy, Commit, SyncStatus, ToolCall, Turn
from cogcommit.models.commit import Session as CommitSession
from cogcommit.models.db import CommitRow, SessionRow, TurnRow

# Columns a curation action may change
CURATION_FIELDS = frozenset({"title", "published", "hidden", "display_order"})

# Columns overwritten from the remote copy on pull / keep-cloud
REMOTE_FIELDS = (
    "git_hash",
    "closed_by",
    "parallel",
    "files_read",
    "files_changed",
    "source",
    "project_name",
    "title",
    "published",
    "hidden",
    "display_order",
)


def turn_from_row(row: TurnRow) -> Turn:
    return Turn(
        id=row.id,
        role=row.role,
        content=row.content,
        timestamp=row.timestamp,
        model=row.model,
        tool_calls=[ToolCall.from_dict(tc) for tc in (row.tool_calls or [])],
        triggers_visual_update=row.triggers_visual_update,
    )


def session_from_row(row: SessionRow) -> CommitSession:
    return CommitSession(
        id=row.id,
        started_at=row.started_at,
        ended_at=row.ended_at,
        turns=[turn_from_row(turn) for turn in row.turns],
    )


def commit_from_row(row: CommitRow) -> Commit:
    """
    Convert an ORM row (with its sessions and turns) to a detached Commit.

    Args:
        row: Commit row

    Returns:
        Commit dataclass
    """
    return Commit(
        id=row.id,
        started_at=row.started_at,
        closed_at=row.closed_at,
        closed_by=ClosedBy(row.closed_by),
        sessions=[session_from_row(s) for s in row.sessions],
        files_read=list(row.files_read or []),
        files_changed=list(row.files_changed or []),
        git_hash=row.git_hash,
        parallel=row.parallel,
        source=row.source,
        project_name=row.project_name,
        title=row.title,
        published=row.published,
        hidden=row.hidden,
        display_order=row.display_order,
        cloud_id=row.cloud_id,
        sync_status=SyncStatus(row.sync_status),
        cloud_version=row.cloud_version,
        local_version=row.local_version,
        last_synced_at=row.last_synced_at,
    )


class CommitRepository(BaseRepository[CommitRow]):
    """Repository for commits and their sessions and turns."""

    def __init__(self, session: Session):
        super().__init__(CommitRow, session)

    def get_commit(self, commit_id: str) -> Optional[Commit]:
        row = self.get(commit_id)
        return commit_from_row(row) if row else None

    def get_by_cloud_id(self, cloud_id: str) -> Optional[Commit]:
        """
        Find the local commit linked to a remote record.

        A commit materialized by a pull uses the remote id as its local id, so
        both the ``cloud_id`` column and the primary key are checked.

        Args:
            cloud_id: Remote record id

        Returns:
            Commit or None
        """
        row = (
            self.session.query(CommitRow)
            .filter(CommitRow.cloud_id == cloud_id)
            .first()
        )
        if row is None:
            row = self.get(cloud_id)
        return commit_from_row(row) if row else None

    def get_by_sync_status(
        self, status: SyncStatus, limit: Optional[int] = None
    ) -> list[Commit]:
        """
        Get commits in a sync status, most recently closed first.

        Args:
            status: Sync status to select
            limit: Maximum number of commits

        Returns:
            List of commits
        """
        query = (
            self.session.query(CommitRow)
            .filter(CommitRow.sync_status == status.value)
            .order_by(desc(CommitRow.closed_at))
        )
        if limit:
            query = query.limit(limit)
        return [commit_from_row(row) for row in query.all()]

    def count_by_sync_status(self) -> dict[str, int]:
        """Count commits per sync status; statuses with no commits are 0."""
        counts = {status.value: 0 for status in SyncStatus}
        rows = (
            self.session.query(CommitRow.sync_status, func.count(CommitRow.id))
            .group_by(CommitRow.sync_status)
            .all()
        )
        for status, count in rows:
            counts[status] = count
        return counts

    def insert_commit(self, commit: Commit) -> None:
        """
        Insert a commit together with its sessions and turns.

        Args:
            commit: Commit to insert
        """
        row = CommitRow(
            id=commit.id,
            git_hash=commit.git_hash,
            started_at=commit.started_at,
            closed_at=commit.closed_at,
            closed_by=ClosedBy(commit.closed_by).value,
            parallel=commit.parallel,
            files_read=list(commit.files_read),
            files_changed=list(commit.files_changed),
            source=commit.source,
            project_name=commit.project_name,
            title=commit.title,
            published=commit.published,
            hidden=commit.hidden,
            display_order=commit.display_order,
            cloud_id=commit.cloud_id,
            sync_status=SyncStatus(commit.sync_status).value,
            cloud_version=commit.cloud_version,
            local_version=commit.local_version,
            last_synced_at=commit.last_synced_at,
        )
        self.session.add(row)
        self.session.flush()
        for session in commit.sessions:
            self.upsert_session(commit.id, session)
        self.session.expire(row, ["sessions"])

    def update_sync_status(self, commit_id: str, status: SyncStatus) -> bool:
        return self.update(commit_id, sync_status=status.value) is not None

    def update_sync_metadata(
        self,
        commit_id: str,
        cloud_id: Optional[str] = None,
        sync_status: Optional[SyncStatus] = None,
        cloud_version: Optional[int] = None,
        local_version: Optional[int] = None,
        last_synced_at: Optional[datetime] = None,
    ) -> bool:
        """
        Update sync metadata columns; arguments left as None are unchanged.

        Returns:
            True if the commit exists
        """
        values: dict[str, Any] = {}
        if cloud_id is not None:
            values["cloud_id"] = cloud_id
        if sync_status is not None:
            values["sync_status"] = sync_status.value
        if cloud_version is not None:
            values["cloud_version"] = cloud_version
        if local_version is not None:
            values["local_version"] = local_version
        if last_synced_at is not None:
            values["last_synced_at"] = last_synced_at
        return self.update(commit_id, **values) is not None

    def increment_local_version(self, commit_id: str) -> Optional[int]:
        """
        Bump the local edit counter.

        Returns:
            New local version, or None if the commit does not exist
        """
        row = self.get(commit_id)
        if row is None:
            return None
        row.local_version += 1
        self.session.flush()
        return row.local_version

    def reset_all_sync_status(self) -> int:
        """
        Unlink every commit from the remote: pending, no cloud id, version 0.

        Returns:
            Number of commits reset
        """
        count = self.session.query(CommitRow).update(
            {
                CommitRow.sync_status: SyncStatus.PENDING.value,
                CommitRow.cloud_id: None,
                CommitRow.cloud_version: 0,
                CommitRow.last_synced_at: None,
            },
            synchronize_session="fetch",
        )
        self.session.flush()
        return count

    def apply_curation(self, commit_id: str, **fields: Any) -> Optional[Commit]:
        """
        Apply a local curation edit (title, published, hidden, display order).

        Every edit bumps ``local_version`` and flips the commit to pending so the
        next push carries it.

        Args:
            commit_id: Commit id
            **fields: Curation columns to set

        Returns:
            Updated commit or None if not found

        Raises:
            ValueError: If a non-curation column is passed
        """
        unknown = set(fields) - CURATION_FIELDS
        if unknown:
            raise ValueError(f"Not a curation field: {', '.join(sorted(unknown))}")

        row = self.get(commit_id)
        if row is None:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        row.local_version += 1
        row.sync_status = SyncStatus.PENDING.value
        self.session.flush()
        return commit_from_row(row)

    def apply_remote(self, commit_id: str, remote: Commit) -> bool:
        """
        Overwrite content and curation columns from a remote copy.

        Sessions and turns are upserted; local ones the remote copy no longer
        has are removed. Sync metadata is left to the caller.

        Args:
            commit_id: Local commit id
            remote: Commit built from the remote record

        Returns:
            True if the commit exists
        """
        row = self.get(commit_id)
        if row is None:
            return False
        for name in REMOTE_FIELDS:
            value = getattr(remote, name)
            if name == "closed_by":
                value = ClosedBy(value).value
            elif name in ("files_read", "files_changed"):
                value = list(value)
            setattr(row, name, value)
        row.started_at = remote.started_at
        row.closed_at = remote.closed_at
        self.session.flush()
        for session in remote.sessions:
            self.upsert_session(commit_id, session)
        self._prune_children(commit_id, remote)
        self.session.expire(row, ["sessions"])
        return True

    def _prune_children(self, commit_id: str, remote: Commit) -> None:
        keep_sessions = {s.id for s in remote.sessions}
        keep_turns = {t.id for s in remote.sessions for t in s.turns}
        stale_sessions = (
            self.session.query(SessionRow)
            .filter(SessionRow.commit_id == commit_id)
            .filter(SessionRow.id.notin_(keep_sessions))
            .all()
        )
        for row in stale_sessions:
            self.session.delete(row)
        stale_turns = (
            self.session.query(TurnRow)
            .filter(TurnRow.session_id.in_(keep_sessions))
            .filter(TurnRow.id.notin_(keep_turns))
            .all()
        )
        for row in stale_turns:
            self.session.delete(row)
        self.session.flush()

    def upsert_session(self, commit_id: str, session: CommitSession) -> SessionRow:
        """
        Insert or update a session and its turns by identifier.

        Args:
            commit_id: Owning commit id
            session: Session to write

        Returns:
            The session row
        """
        row = self.session.get(SessionRow, session.id)
        if row is None:
            row = SessionRow(
                id=session.id,
                commit_id=commit_id,
                started_at=session.started_at,
                ended_at=session.ended_at,
            )
            self.session.add(row)
        else:
            row.started_at = session.started_at
            row.ended_at = session.ended_at
        self.session.flush()

        for position, turn in enumerate(session.turns):
            self.upsert_turn(session.id, turn, position)
        self.session.expire(row, ["turns"])
        return row

    def upsert_turn(self, session_id: str, turn: Turn, position: int) -> TurnRow:
        values = {
            "session_id": session_id,
            "position": position,
            "role": turn.role,
            "content": turn.content,
            "timestamp": turn.timestamp,
            "model": turn.model,
            "tool_calls": [tc.to_dict() for tc in turn.tool_calls] or None,
            "triggers_visual_update": turn.triggers_visual_update,
        }
        row = self.session.get(TurnRow, turn.id)
        if row is None:
            row = TurnRow(id=turn.id, **values)
            self.session.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
        self.session.flush()
        return row
