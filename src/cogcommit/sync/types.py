"""
Result and option types shared by the sync engines.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from cogcommit.sync.retry import RetryConfig


@dataclass
class DryRunCounts:
    """What a push would upload."""

    commits: int = 0
    sessions: int = 0
    turns: int = 0


@dataclass
class SyncResult:
    """Outcome of a push, pull, auto-resolve or full sync."""

    pushed: int = 0
    pulled: int = 0
    conflicts: int = 0
    errors: list[str] = field(default_factory=list)

    # Push details
    filtered: int = 0  # Empty or warm-up commits marked synced without upload
    total_pending: int = 0  # Candidates before filtering
    deferred: int = 0  # Left pending because of the usage quota
    quota_exhausted: bool = False
    dry_run_counts: Optional[DryRunCounts] = None

    # Pull details
    deleted: int = 0
    visuals_downloaded: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def merge(self, other: "SyncResult") -> "SyncResult":
        """
        Add another phase's counts and errors into this result.

        Returns:
            self
        """
        self.pushed += other.pushed
        self.pulled += other.pulled
        self.conflicts += other.conflicts
        self.errors.extend(other.errors)
        self.filtered += other.filtered
        self.total_pending += other.total_pending
        self.deferred += other.deferred
        self.deleted += other.deleted
        self.visuals_downloaded += other.visuals_downloaded
        self.quota_exhausted = self.quota_exhausted or other.quota_exhausted
        if other.dry_run_counts is not None:
            self.dry_run_counts = other.dry_run_counts
        return self


@dataclass
class SyncState:
    """Point-in-time sync status summary."""

    last_sync_at: Optional[str] = None
    pending_count: int = 0
    synced_count: int = 0
    conflict_count: int = 0
    error_count: int = 0
    filtered_count: int = 0
    is_online: bool = False
    is_syncing: bool = False


@dataclass
class PushOptions:
    """
    Options for a push.

    ``retry`` selects commits in ``error`` status instead of ``pending``.
    ``retry_policy`` controls the extra passes the engine makes over commits
    that failed during this run; None uses the configured default.
    """

    verbose: bool = False
    force: bool = False
    dry_run: bool = False
    retry: bool = False
    retry_policy: Optional[RetryConfig] = None
    batch_size: Optional[int] = None


@dataclass
class PullOptions:
    verbose: bool = False
    visuals: bool = True  # Download missing visuals of pulled commits


@dataclass
class ConflictInfo:
    """A commit in conflict, with both sides' versions."""

    local_id: str
    cloud_id: str
    local_version: int
    cloud_version: int
    local_updated_at: datetime
    cloud_updated_at: Optional[datetime]
    resolution: str = "pending"  # 'local', 'cloud' or 'pending'
