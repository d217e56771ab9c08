"""
Pytest configuration and fixtures for CogCommit tests.

This module provides an in-memory local store, an in-memory stand-in for the
remote record service, and factories for commits.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Generator, Optional

import pytest

from cogcommit.constants import (
    COMMITS_TABLE,
    MACHINES_TABLE,
    SESSIONS_TABLE,
    TURNS_TABLE,
    USAGE_TABLE,
    VISUALS_TABLE,
)
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import NotAuthenticatedError, RemoteError
from cogcommit.models.commit import Commit, Session, SyncStatus, ToolCall, Turn
from cogcommit.models.remote import UsageInfo
from cogcommit.sync.credentials import AuthTokens
from cogcommit.sync.retry import RetryConfig
from cogcommit.sync.transforms import (
    commit_to_remote,
    session_to_remote,
    to_payload,
    turn_to_remote,
)

USER_ID = "11111111-2222-3333-4444-555555555555"
BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


# ===== Fake remote service =====


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def _matches(row: dict[str, Any], column: str, expression: str) -> bool:
    value = row.get(column)
    if expression == "is.null":
        return value is None
    if expression == "not.is.null":
        return value is not None
    op, _, operand = expression.partition(".")
    if op == "eq":
        return value is not None and _format(value) == operand
    if op == "gt":
        return value is not None and _comparable(value) > _comparable(operand)
    if op == "in":
        return value is not None and _format(value) in operand.strip("()").split(",")
    raise ValueError(f"Unsupported filter: {expression}")


class FakeCredentials:
    def __init__(self, remote: "FakeRemoteClient"):
        self.remote = remote

    def load_tokens(self) -> Optional[AuthTokens]:
        if not self.remote.authenticated:
            return None
        return AuthTokens(
            access_token="token",
            refresh_token="refresh",
            expires_at=datetime.now(timezone.utc).timestamp() + 3600,
            user_id=self.remote.user,
        )

    async def refresh_if_needed(self) -> bool:
        return self.remote.authenticated


class FakeRemoteClient:
    """
    In-memory remote record service with the ``RemoteClient`` surface.

    Tables are dicts keyed by row id. Upserts merge into existing rows and fill
    in ``updated_at`` when the caller leaves it out, like the real service.
    ``fail_upserts`` maps a table to a number of upcoming upserts that fail.
    """

    def __init__(self, user_id: str = USER_ID):
        self.user = user_id
        self.authenticated = True
        self.is_configured = True
        self.credentials = FakeCredentials(self)
        self.retry_config = RetryConfig(max_retries=0)
        self.tables: dict[str, dict[str, dict[str, Any]]] = {
            name: {}
            for name in (
                COMMITS_TABLE,
                SESSIONS_TABLE,
                TURNS_TABLE,
                VISUALS_TABLE,
                MACHINES_TABLE,
                USAGE_TABLE,
            )
        }
        self.objects: dict[tuple[str, str], bytes] = {}
        self.upsert_calls: list[tuple[str, int]] = []
        self.delete_calls: list[tuple[str, list[tuple[str, str]]]] = []
        self.fail_upserts: dict[str, int] = {}
        self.fail_selects = False
        self.usage: Optional[UsageInfo] = None
        self.machine_uuid: Optional[str] = None
        self.machine_id = "test-machine"
        self.closed = False

    # Identity

    @property
    def is_authenticated(self) -> bool:
        return self.authenticated

    @property
    def user_id(self) -> str:
        if not self.authenticated:
            raise NotAuthenticatedError()
        return self.user

    async def ensure_authenticated(self) -> AuthTokens:
        tokens = self.credentials.load_tokens()
        if tokens is None:
            raise NotAuthenticatedError()
        return tokens

    def reset(self) -> None:
        pass

    async def close(self) -> None:
        self.closed = True

    # REST

    async def select(
        self,
        table: str,
        filters: Optional[list[tuple[str, str]]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        if self.fail_selects:
            raise RemoteError("HTTP 500: select failed", status_code=500)
        rows = [
            dict(row)
            for row in self.tables[table].values()
            if all(_matches(row, col, expr) for col, expr in filters or [])
        ]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(
                key=lambda r: _comparable(r.get(column)), reverse=direction == "desc"
            )
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [self._project(table, row, columns) for row in rows]

    def _project(self, table: str, row: dict[str, Any], columns: str) -> dict[str, Any]:
        if columns == "*":
            return row
        if "sessions(" in columns:
            sessions = [
                dict(s)
                for s in self.tables[SESSIONS_TABLE].values()
                if s["commit_id"] == row["id"]
            ]
            for session in sessions:
                session["turns"] = [
                    dict(t)
                    for t in self.tables[TURNS_TABLE].values()
                    if t["session_id"] == session["id"]
                ]
            row["sessions"] = sessions
            return row
        return {name: row.get(name) for name in columns.split(",")}

    async def select_one(
        self,
        table: str,
        filters: Optional[list[tuple[str, str]]] = None,
        columns: str = "*",
    ) -> Optional[dict[str, Any]]:
        rows = await self.select(table, filters=filters, columns=columns, limit=1)
        return rows[0] if rows else None

    async def upsert(
        self, table: str, records: list[dict[str, Any]], on_conflict: str = "id"
    ) -> list[dict[str, Any]]:
        if not records:
            return []
        self.upsert_calls.append((table, len(records)))
        if self.fail_upserts.get(table, 0) > 0:
            self.fail_upserts[table] -= 1
            raise RemoteError("HTTP 400: upsert rejected", status_code=400)

        stored = []
        for record in records:
            row = dict(self.tables[table].get(record[on_conflict], {}))
            row.update(record)
            row.setdefault("deleted_at", None)
            if "updated_at" not in record:
                row["updated_at"] = datetime.now(timezone.utc).isoformat()
            self.tables[table][record[on_conflict]] = row
            stored.append(dict(row))
        return stored

    async def delete(self, table: str, filters: list[tuple[str, str]]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        self.delete_calls.append((table, filters))
        self.tables[table] = {
            key: row
            for key, row in self.tables[table].items()
            if not all(_matches(row, col, expr) for col, expr in filters)
        }

    async def get_usage(self) -> Optional[UsageInfo]:
        return self.usage

    async def get_machine_uuid(self) -> Optional[str]:
        return self.machine_uuid

    # Storage

    async def upload(
        self,
        bucket: str,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        self.objects[(bucket, key)] = content
        return self.public_url(bucket, key)

    async def download(self, bucket: str, key: str) -> bytes:
        if (bucket, key) not in self.objects:
            raise RemoteError("HTTP 404: object not found", status_code=404)
        return self.objects[(bucket, key)]

    def public_url(self, bucket: str, key: str) -> str:
        return f"https://remote.test/storage/v1/object/public/{bucket}/{key}"

    # Test helpers

    def seed_commit(
        self,
        commit: Commit,
        version: int = 1,
        updated_at: Optional[datetime] = None,
        deleted_at: Optional[datetime] = None,
    ) -> str:
        """Store a commit (with sessions and turns) as if another device pushed it."""
        row = commit_to_remote(
            commit,
            user_id=self.user,
            version=version,
            updated_at=updated_at or BASE_TIME,
        )
        payload = to_payload(row)
        payload["deleted_at"] = deleted_at.isoformat() if deleted_at else None
        self.tables[COMMITS_TABLE][row.id] = payload
        for session in commit.sessions:
            remote_session = session_to_remote(session, row.id)
            session_payload = to_payload(remote_session)
            session_payload.update(updated_at=payload["updated_at"], deleted_at=None)
            self.tables[SESSIONS_TABLE][remote_session.id] = session_payload
            for turn in session.turns:
                turn_payload = to_payload(turn_to_remote(turn, remote_session.id))
                turn_payload.update(updated_at=payload["updated_at"], deleted_at=None)
                self.tables[TURNS_TABLE][turn_payload["id"]] = turn_payload
        return row.id

    def bump_commit(self, cloud_id: str, updated_at: datetime, **fields: Any) -> None:
        """Simulate an edit made on another device."""
        row = self.tables[COMMITS_TABLE][cloud_id]
        row.update(fields)
        row["version"] += 1
        row["updated_at"] = updated_at.isoformat()

    def soft_delete(self, cloud_id: str, deleted_at: datetime) -> None:
        row = self.tables[COMMITS_TABLE][cloud_id]
        row["deleted_at"] = deleted_at.isoformat()
        row["updated_at"] = deleted_at.isoformat()

    def count_upserts(self, table: str) -> list[int]:
        return [n for name, n in self.upsert_calls if name == table]


# ===== Factories =====


def make_turn(
    role: str = "user",
    content: Optional[str] = "Add a login page",
    offset_seconds: int = 0,
    turn_id: Optional[str] = None,
    tool_calls: Optional[list[ToolCall]] = None,
) -> Turn:
    return Turn(
        id=turn_id or f"turn-{next(_ids)}",
        role=role,
        content=content,
        timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
        tool_calls=tool_calls or [],
    )


def make_commit(
    commit_id: Optional[str] = None,
    turns: int = 2,
    first_content: str = "Add a login page",
    closed_at: Optional[datetime] = None,
    sessions: int = 1,
    **fields: Any,
) -> Commit:
    """
    Build a commit with ``sessions`` sessions of ``turns`` alternating turns.

    The first turn of the first session is a user turn with ``first_content``.
    """
    closed = closed_at or BASE_TIME + timedelta(hours=1)
    built_sessions = []
    for s in range(sessions):
        session_turns = []
        for i in range(turns):
            role = "user" if i % 2 == 0 else "assistant"
            content = first_content if (s == 0 and i == 0) else f"{role} message {i}"
            session_turns.append(make_turn(role=role, content=content, offset_seconds=i))
        built_sessions.append(
            Session(
                id=f"session-{next(_ids)}",
                started_at=BASE_TIME + timedelta(minutes=s),
                ended_at=closed,
                turns=session_turns,
            )
        )
    return Commit(
        id=commit_id or f"commit-{next(_ids)}",
        started_at=BASE_TIME,
        closed_at=closed,
        sessions=built_sessions,
        **fields,
    )


# ===== Fixtures =====


@pytest.fixture
def store() -> Generator[LocalStore, None, None]:
    """In-memory local store, fresh for each test."""
    local = LocalStore.open("sqlite://")
    yield local
    local.close()


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def no_retry() -> RetryConfig:
    """Engine retry policy with no extra passes."""
    return RetryConfig(max_retries=0)


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Engine retry policy with one immediate extra pass."""
    return RetryConfig(max_retries=1, initial_delay=0, max_delay=0, jitter=False)


@pytest.fixture
def pending_commit(store: LocalStore) -> Commit:
    commit = make_commit()
    store.insert_commit(commit)
    return commit


def synced(store: LocalStore, commit_id: str) -> Commit:
    commit = store.get_commit(commit_id)
    assert commit is not None
    assert commit.sync_status == SyncStatus.SYNCED
    return commit
