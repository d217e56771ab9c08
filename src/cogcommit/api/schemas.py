"""
API schemas for CogCommit.

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

# ===== Sync Schemas =====


class SyncStateResponse(BaseModel):
    """Point-in-time sync status summary."""

    model_config = ConfigDict(from_attributes=True)

    last_sync_at: Optional[str] = None
    pending_count: int = 0
    synced_count: int = 0
    conflict_count: int = 0
    error_count: int = 0
    filtered_count: int = 0
    is_online: bool = False
    is_syncing: bool = False


class SyncStatusResponse(BaseModel):
    """Response schema for GET /sync/status."""

    sync_state: SyncStateResponse


class DryRunCountsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    commits: int = 0
    sessions: int = 0
    turns: int = 0


class SyncResultResponse(BaseModel):
    """Outcome of an on-demand sync."""

    model_config = ConfigDict(from_attributes=True)

    pushed: int = 0
    pulled: int = 0
    conflicts: int = 0
    errors: list[str] = []
    filtered: int = 0
    total_pending: int = 0
    deferred: int = 0
    quota_exhausted: bool = False
    deleted: int = 0
    visuals_downloaded: int = 0
    dry_run_counts: Optional[DryRunCountsResponse] = None


# ===== Conflict Schemas =====


class ConflictResponse(BaseModel):
    """A commit in conflict, with both sides' versions."""

    model_config = ConfigDict(from_attributes=True)

    local_id: str
    cloud_id: str
    local_version: int
    cloud_version: int
    local_updated_at: datetime
    cloud_updated_at: Optional[datetime] = None
    resolution: str = "pending"


class ResolveRequest(BaseModel):
    """Which side of a conflict to keep."""

    keep: Literal["local", "cloud"]


class ResolveResponse(BaseModel):
    commit_id: str
    kept: Literal["local", "cloud"]
    sync_status: str
    local_version: int
    cloud_version: int


# ===== Visual Schemas =====


class VisualResponse(BaseModel):
    """A visual attached to a commit."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    commit_id: str
    type: str
    captured_at: datetime
    caption: Optional[str] = None
    cloud_url: Optional[str] = None


class VisualSyncStatusResponse(BaseModel):
    """Where a commit's visuals live."""

    model_config = ConfigDict(from_attributes=True)

    synced: int = 0
    local_only: int = 0
    cloud_only: int = 0
    missing: int = 0
