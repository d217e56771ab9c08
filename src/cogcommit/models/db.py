"""
SQLAlchemy database models for the CogCommit local record store.

Commits own sessions, sessions own turns; visuals hang off commits. Deleting a
commit cascades to everything below it. Sync metadata lives in columns on the
commit row, and a single ``sync_state`` row holds the pull watermark.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class UTCDateTime(TypeDecorator):
    """Store naive UTC in SQLite and always hand back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class CommitRow(Base):
    """A cognitive commit and its sync metadata."""

    __tablename__ = "cognitive_commits"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    git_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    closed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    closed_by: Mapped[str] = mapped_column(String(32), nullable=False)
    parallel: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    files_read: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    files_changed: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    source: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    project_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    cloud_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    sync_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    cloud_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    local_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    sessions: Mapped[list["SessionRow"]] = relationship(
        back_populates="commit",
        cascade="all, delete-orphan",
        order_by="SessionRow.started_at",
    )
    visuals: Mapped[list["VisualRow"]] = relationship(
        back_populates="commit",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_cognitive_commits_sync_status", "sync_status"),)


class SessionRow(Base):
    """Assistant session within a commit."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    commit_id: Mapped[str] = mapped_column(
        ForeignKey("cognitive_commits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ended_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    commit: Mapped["CommitRow"] = relationship(back_populates="sessions")
    turns: Mapped[list["TurnRow"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="TurnRow.position",
    )


class TurnRow(Base):
    """A user or assistant turn."""

    __tablename__ = "turns"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    tool_calls: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    triggers_visual_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    session: Mapped["SessionRow"] = relationship(back_populates="turns")


class VisualRow(Base):
    """Screenshot or media attachment."""

    __tablename__ = "visuals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    commit_id: Mapped[str] = mapped_column(
        ForeignKey("cognitive_commits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="screenshot")
    path: Mapped[str] = mapped_column(Text, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cloud_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    storage_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    commit: Mapped["CommitRow"] = relationship(back_populates="visuals")


class SyncStateRow(Base):
    """Single-row table holding the pull watermark."""

    __tablename__ = "sync_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    last_sync_at: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
