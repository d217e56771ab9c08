"""
Remote row schemas.

Pydantic models for rows of the remote record service. Column names are the
service's snake_case names; conversion to and from the local dataclasses lives
in ``cogcommit.sync.transforms``.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class RemoteRow(BaseModel):
    """Base for all remote rows; unknown columns are ignored."""

    model_config = ConfigDict(extra="ignore")


class RemoteTurn(RemoteRow):
    """Row of the ``turns`` table."""

    id: str
    session_id: str
    role: str
    content: Optional[str] = None
    timestamp: datetime
    tool_calls: Any = None  # JSON text or the decoded list, depending on the column type
    triggers_visual: bool = False
    model: Optional[str] = None
    version: int = 1
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class RemoteSession(RemoteRow):
    """Row of the ``sessions`` table, optionally with embedded turns."""

    id: str
    commit_id: str
    started_at: datetime
    ended_at: datetime
    version: int = 1
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    turns: list[RemoteTurn] = Field(default_factory=list)


class RemoteCommit(RemoteRow):
    """Row of the ``cognitive_commits`` table, optionally with embedded sessions."""

    id: str
    user_id: Optional[str] = None
    origin_machine_id: Optional[str] = None
    git_hash: Optional[str] = None
    started_at: datetime
    closed_at: datetime
    closed_by: str = "session_end"
    parallel: bool = False
    files_read: list[str] = Field(default_factory=list)
    files_changed: list[str] = Field(default_factory=list)
    source: Optional[str] = None
    project_name: Optional[str] = None
    published: bool = False
    hidden: bool = False
    display_order: int = 0
    title: Optional[str] = None
    prompt_count: int = 0
    version: int = 1
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    sessions: list[RemoteSession] = Field(default_factory=list)


class RemoteVisual(RemoteRow):
    """Row of the ``visuals`` table."""

    id: str
    commit_id: str
    type: str = "screenshot"
    path: str
    cloud_url: Optional[str] = None
    storage_key: Optional[str] = None
    captured_at: datetime
    caption: Optional[str] = None
    version: int = 1
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class RemoteVersion(RemoteRow):
    """Version check row of a commit: just enough to detect conflicts."""

    id: str
    version: int
    updated_at: datetime


class RemoteDeletion(RemoteRow):
    """Soft-deleted commit marker."""

    id: str
    deleted_at: datetime


class UsageInfo(RemoteRow):
    """Read-only usage projection consulted before pushing."""

    commit_count: int = 0
    commit_limit: int = 0
    tier: str = "free"

    def remaining_slots(self) -> int:
        return max(0, self.commit_limit - self.commit_count)
