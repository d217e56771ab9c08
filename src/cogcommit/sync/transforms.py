"""
Conversion between local dataclasses and remote row schemas.

``*_to_remote`` build the typed rows sent to the remote service and
``*_from_remote`` rebuild local objects from fetched rows. Child identifiers are
normalized through ``to_uuid`` on the way out; tool calls travel as a JSON
string column.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from cogcommit.constants import TITLE_MAX_LENGTH
from cogcommit.models.commit import (
    ClosedBy,
    Commit,
    Session,
    SyncStatus,
    ToolCall,
    Turn,
    TurnRole,
    Visual,
)
from cogcommit.models.remote import (
    RemoteCommit,
    RemoteSession,
    RemoteTurn,
    RemoteVisual,
)
from cogcommit.sync.identifiers import to_uuid

logger = logging.getLogger(__name__)


def derive_title(commit: Commit) -> Optional[str]:
    """
    Title to publish for a commit.

    The human title wins; otherwise the first line of the first user prompt,
    cut to ``TITLE_MAX_LENGTH`` characters.

    Args:
        commit: Commit

    Returns:
        Title or None if there is nothing to derive it from
    """
    if commit.title:
        return commit.title

    for session in commit.sessions:
        for turn in session.turns:
            if turn.role == TurnRole.USER.value and turn.content and turn.content.strip():
                first_line = turn.content.strip().splitlines()[0]
                return first_line[:TITLE_MAX_LENGTH]
    return None


def encode_tool_calls(tool_calls: list[ToolCall]) -> Optional[str]:
    if not tool_calls:
        return None
    return json.dumps([tc.to_dict() for tc in tool_calls])


def decode_tool_calls(raw: Any, turn_id: str = "") -> list[ToolCall]:
    """
    Decode the ``tool_calls`` column.

    The service returns either JSON text or an already decoded list.
    Anything else is dropped with a warning; the turn is kept.

    Args:
        raw: Column value from the remote row
        turn_id: Turn id for the log message

    Returns:
        List of tool calls (empty if absent or malformed)
    """
    if not raw:
        return []
    data = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Dropping malformed tool_calls on turn {turn_id}: {e}")
            return []
    if not isinstance(data, list):
        logger.warning(f"Dropping non-list tool_calls on turn {turn_id}")
        return []
    return [ToolCall.from_dict(item) for item in data if isinstance(item, dict)]


def turn_to_remote(turn: Turn, session_id: str) -> RemoteTurn:
    return RemoteTurn(
        id=to_uuid(turn.id),
        session_id=session_id,
        role=turn.role,
        content=turn.content,
        timestamp=turn.timestamp,
        tool_calls=encode_tool_calls(turn.tool_calls),
        triggers_visual=turn.triggers_visual_update,
        model=turn.model,
    )


def turn_from_remote(row: RemoteTurn) -> Turn:
    return Turn(
        id=row.id,
        role=row.role,
        content=row.content,
        timestamp=row.timestamp,
        model=row.model,
        tool_calls=decode_tool_calls(row.tool_calls, row.id),
        triggers_visual_update=row.triggers_visual,
    )


def session_to_remote(session: Session, commit_id: str) -> RemoteSession:
    """Session row without turns; turns are uploaded separately in batches."""
    return RemoteSession(
        id=to_uuid(session.id),
        commit_id=commit_id,
        started_at=session.started_at,
        ended_at=session.ended_at,
        version=1,
    )


def session_from_remote(row: RemoteSession) -> Session:
    turns = [turn_from_remote(t) for t in row.turns if t.deleted_at is None]
    turns.sort(key=lambda t: t.timestamp)
    return Session(
        id=row.id,
        started_at=row.started_at,
        ended_at=row.ended_at,
        turns=turns,
    )


def commit_to_remote(
    commit: Commit,
    user_id: str,
    version: int,
    updated_at: datetime,
    origin_machine_id: Optional[str] = None,
) -> RemoteCommit:
    """
    Build the remote commit row for an upsert.

    Args:
        commit: Local commit
        user_id: Authenticated user id
        version: Version to propose (last known cloud version + 1)
        updated_at: Write time
        origin_machine_id: Remote id of this machine, if registered

    Returns:
        RemoteCommit without embedded sessions
    """
    return RemoteCommit(
        id=commit.cloud_id or to_uuid(commit.id),
        user_id=user_id,
        origin_machine_id=origin_machine_id,
        git_hash=commit.git_hash,
        started_at=commit.started_at,
        closed_at=commit.closed_at,
        closed_by=ClosedBy(commit.closed_by).value,
        parallel=commit.parallel,
        files_read=list(commit.files_read),
        files_changed=list(commit.files_changed),
        source=commit.source,
        project_name=commit.project_name,
        published=commit.published,
        hidden=commit.hidden,
        display_order=commit.display_order,
        title=derive_title(commit),
        prompt_count=commit.prompt_count,
        version=version,
        updated_at=updated_at,
    )


def _closed_by(value: str, commit_id: str) -> ClosedBy:
    try:
        return ClosedBy(value)
    except ValueError:
        logger.warning(f"Unknown closed_by '{value}' on commit {commit_id}")
        return ClosedBy.SESSION_END


def commit_from_remote(row: RemoteCommit) -> Commit:
    """
    Build a local commit from a remote row (with embedded sessions, if any).

    The result is linked to the remote record and synced at its version.

    Args:
        row: Remote commit row

    Returns:
        Commit
    """
    sessions = [session_from_remote(s) for s in row.sessions if s.deleted_at is None]
    sessions.sort(key=lambda s: s.started_at)
    return Commit(
        id=row.id,
        started_at=row.started_at,
        closed_at=row.closed_at,
        closed_by=_closed_by(row.closed_by, row.id),
        sessions=sessions,
        files_read=list(row.files_read),
        files_changed=list(row.files_changed),
        git_hash=row.git_hash,
        parallel=row.parallel,
        source=row.source,
        project_name=row.project_name,
        title=row.title,
        published=row.published,
        hidden=row.hidden,
        display_order=row.display_order,
        cloud_id=row.id,
        sync_status=SyncStatus.SYNCED,
        cloud_version=row.version,
        local_version=row.version,
    )


def visual_to_remote(
    visual: Visual, commit_id: str, cloud_url: str, storage_key: str
) -> RemoteVisual:
    return RemoteVisual(
        id=to_uuid(visual.id),
        commit_id=commit_id,
        type=visual.type,
        path=visual.path,
        cloud_url=cloud_url,
        storage_key=storage_key,
        captured_at=visual.captured_at,
        caption=visual.caption,
    )


def visual_from_remote(row: RemoteVisual, commit_id: str, path: str) -> Visual:
    return Visual(
        id=row.id,
        commit_id=commit_id,
        path=path,
        captured_at=row.captured_at,
        type=row.type,
        caption=row.caption,
        cloud_url=row.cloud_url,
        storage_key=row.storage_key,
    )


def to_payload(row: Any) -> dict[str, Any]:
    """
    JSON-ready dict for an upsert.

    Embedded child lists are left out, and so are unset server-managed
    timestamps so an upsert never nulls them.
    """
    payload = row.model_dump(mode="json", exclude={"sessions", "turns"})
    for key in ("updated_at", "deleted_at"):
        if payload.get(key) is None:
            payload.pop(key, None)
    return payload
