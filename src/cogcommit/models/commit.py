"""
Local commit data models.

Plain dataclasses the sync engines work on. The local store converts its ORM
rows to these on read, so a sync run only ever holds transient copies and
never mutates database state by touching attributes.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class SyncStatus(str, enum.Enum):
    """Sync state of a commit."""

    PENDING = "pending"  # Local edits not yet pushed
    SYNCED = "synced"  # Local and remote agree as of last_synced_at
    CONFLICT = "conflict"  # Both sides advanced since the last common version
    ERROR = "error"  # Last push attempt failed
    FILTERED = "filtered"  # Excluded from sync (legacy rows)


class ClosedBy(str, enum.Enum):
    """Why a commit was closed."""

    GIT_COMMIT = "git_commit"
    SESSION_END = "session_end"
    EXPLICIT = "explicit"


class TurnRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ToolCall:
    """Tool invocation made during a turn."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    result: Optional[str] = None
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase JSON shape stored in ``tool_calls``."""
        data: dict[str, Any] = {"id": self.id, "name": self.name, "input": self.input}
        if self.result is not None:
            data["result"] = self.result
        if self.is_error:
            data["isError"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            input=data["input"] if isinstance(data.get("input"), dict) else {},
            result=data.get("result"),
            is_error=bool(data.get("isError", data.get("is_error", False))),
        )


@dataclass
class Turn:
    """Single message in a session."""

    id: str
    role: str  # 'user' or 'assistant'
    content: Optional[str]  # None for tool-only turns
    timestamp: datetime
    model: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    triggers_visual_update: bool = False


@dataclass
class Session:
    """One assistant session inside a commit."""

    id: str
    started_at: datetime
    ended_at: datetime
    turns: list[Turn] = field(default_factory=list)


@dataclass
class Commit:
    """A cognitive commit: one coherent unit of AI-assisted work."""

    id: str
    started_at: datetime
    closed_at: datetime
    closed_by: ClosedBy = ClosedBy.SESSION_END
    sessions: list[Session] = field(default_factory=list)
    files_read: list[str] = field(default_factory=list)
    files_changed: list[str] = field(default_factory=list)
    git_hash: Optional[str] = None
    parallel: bool = False
    source: Optional[str] = None
    project_name: Optional[str] = None
    title: Optional[str] = None

    # Curation
    published: bool = False
    hidden: bool = False
    display_order: int = 0

    # Sync metadata
    cloud_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    cloud_version: int = 0
    local_version: int = 1
    last_synced_at: Optional[datetime] = None

    @property
    def total_turns(self) -> int:
        return sum(len(session.turns) for session in self.sessions)

    @property
    def first_turn_content(self) -> str:
        """Content of the first turn of the first session, or empty string."""
        if not self.sessions or not self.sessions[0].turns:
            return ""
        return self.sessions[0].turns[0].content or ""

    @property
    def prompt_count(self) -> int:
        """Number of user prompts across all sessions."""
        return sum(
            1
            for session in self.sessions
            for turn in session.turns
            if turn.role == TurnRole.USER.value
        )

    @property
    def has_unpushed_edits(self) -> bool:
        return self.local_version > self.cloud_version


@dataclass
class Visual:
    """Screenshot or other media captured for a commit."""

    id: str
    commit_id: str
    path: str
    captured_at: datetime
    type: str = "screenshot"
    caption: Optional[str] = None
    cloud_url: Optional[str] = None
    storage_key: Optional[str] = None

    @property
    def is_uploaded(self) -> bool:
        return self.cloud_url is not None
