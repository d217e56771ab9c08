"""
Conflict listing and resolution.

A commit is in conflict when both the local copy and the remote record
advanced past the last version they shared. It stays that way until it is
resolved by keeping one side, either explicitly or by the last-write-wins
auto-resolver that runs before every full sync.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from cogcommit.config import settings
from cogcommit.constants import COMMITS_TABLE
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import (
    CommitNotFoundError,
    MissingCloudIdError,
    NotAuthenticatedError,
    NotInConflictError,
    RemoteError,
)
from cogcommit.models.commit import Commit, SyncStatus
from cogcommit.models.remote import RemoteCommit, RemoteVersion
from cogcommit.sync.client import RemoteClient, eq
from cogcommit.sync.pull import COMMIT_WITH_CHILDREN, align_child_ids
from cogcommit.sync.transforms import commit_from_remote
from cogcommit.sync.types import ConflictInfo, PullOptions, SyncResult

logger = logging.getLogger(__name__)


def get_conflicts(store: LocalStore) -> list[ConflictInfo]:
    """
    List commits in conflict.

    The local side's update time is approximated by ``closed_at``; the cloud
    side's by the last reconciliation time until the remote is consulted.

    Args:
        store: Local record store

    Returns:
        One ConflictInfo per conflicted commit
    """
    return [
        ConflictInfo(
            local_id=commit.id,
            cloud_id=commit.cloud_id or "",
            local_version=commit.local_version,
            cloud_version=commit.cloud_version,
            local_updated_at=commit.closed_at,
            cloud_updated_at=commit.last_synced_at or commit.closed_at,
        )
        for commit in store.get_by_sync_status(SyncStatus.CONFLICT)
    ]


def get_conflict_count(store: LocalStore) -> int:
    return store.count_by_sync_status()[SyncStatus.CONFLICT.value]


def has_conflicts(store: LocalStore) -> bool:
    return get_conflict_count(store) > 0


def _require_conflict(store: LocalStore, commit_id: str) -> Commit:
    commit = store.get_commit(commit_id)
    if commit is None:
        raise CommitNotFoundError(commit_id)
    if commit.sync_status != SyncStatus.CONFLICT:
        raise NotInConflictError(commit_id, commit.sync_status.value)
    return commit


async def _fetch_remote_version(client: RemoteClient, cloud_id: str) -> RemoteVersion:
    row = await client.select_one(
        COMMITS_TABLE,
        filters=[("id", eq(cloud_id))],
        columns="id,version,updated_at",
    )
    if row is None:
        raise RemoteError(f"Cloud commit {cloud_id} not found", status_code=404)
    return RemoteVersion.model_validate(row)


async def resolve_keep_local(
    store: LocalStore,
    client: RemoteClient,
    commit_id: str,
    remote_version: Optional[int] = None,
) -> Commit:
    """
    Resolve a conflict in favour of the local copy.

    The commit goes back to ``pending``. Its cloud version is moved up to the
    remote's live version so the next push is not flagged again, and its local
    version is bumped past it so the push proposes a strictly newer version.

    Args:
        store: Local record store
        client: Remote client (used to read the live remote version)
        commit_id: Local commit id
        remote_version: Live remote version, if the caller already fetched it

    Returns:
        The updated commit

    Raises:
        CommitNotFoundError: If the commit does not exist
        NotInConflictError: If the commit is not in conflict
    """
    commit = _require_conflict(store, commit_id)

    if remote_version is None and commit.cloud_id:
        await client.ensure_authenticated()
        remote_version = (await _fetch_remote_version(client, commit.cloud_id)).version

    cloud_version = max(commit.cloud_version, remote_version or 0)
    store.update_sync_metadata(
        commit_id,
        sync_status=SyncStatus.PENDING,
        cloud_version=cloud_version,
        local_version=max(commit.local_version, cloud_version),
    )
    store.increment_local_version(commit_id)
    logger.info(f"Resolved conflict on {commit_id[:8]}: kept local")
    return store.get_commit(commit_id)


async def resolve_keep_cloud(
    store: LocalStore, client: RemoteClient, commit_id: str
) -> Commit:
    """
    Resolve a conflict in favour of the remote copy.

    Fetches the full remote commit and overwrites the local one with it.

    Args:
        store: Local record store
        client: Remote client
        commit_id: Local commit id

    Returns:
        The updated commit

    Raises:
        CommitNotFoundError: If the commit does not exist
        NotInConflictError: If the commit is not in conflict
        MissingCloudIdError: If the commit was never pushed
        NotAuthenticatedError: If no valid credential is available
    """
    commit = _require_conflict(store, commit_id)
    if not commit.cloud_id:
        raise MissingCloudIdError(commit_id)

    await client.ensure_authenticated()
    row = await client.select_one(
        COMMITS_TABLE,
        filters=[("id", eq(commit.cloud_id))],
        columns=COMMIT_WITH_CHILDREN,
    )
    if row is None:
        raise RemoteError(f"Cloud commit {commit.cloud_id} not found", status_code=404)

    remote_row = RemoteCommit.model_validate(row)
    incoming = commit_from_remote(remote_row)
    align_child_ids(commit, incoming)
    store.apply_remote_commit(
        commit_id,
        incoming,
        cloud_version=remote_row.version,
        local_version=remote_row.version,
        last_synced_at=datetime.now(timezone.utc),
    )
    logger.info(f"Resolved conflict on {commit_id[:8]}: kept cloud")
    return store.get_commit(commit_id)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def auto_resolve_conflicts(
    store: LocalStore,
    client: RemoteClient,
    options: Optional[PullOptions] = None,
) -> SyncResult:
    """
    Resolve every conflict by last-write-wins on wall-clock time.

    The remote copy wins when its ``updated_at`` is strictly later than the
    local ``closed_at``; ties keep the local copy. Decisions taken within the
    clock skew tolerance are logged as warnings.

    Args:
        store: Local record store
        client: Remote client
        options: Verbosity

    Returns:
        SyncResult: ``pulled`` counts cloud wins, ``pushed`` local wins,
        ``conflicts`` the commits that could not be resolved

    Raises:
        NotAuthenticatedError: If no valid credential is available
    """
    options = options or PullOptions()
    result = SyncResult()
    log = logger.info if options.verbose else logger.debug

    conflicts = get_conflicts(store)
    if not conflicts:
        return result

    await client.ensure_authenticated()
    log(f"Auto-resolving {len(conflicts)} conflicts")
    tolerance = settings.clock_skew_tolerance_seconds

    for conflict in conflicts:
        try:
            if not conflict.cloud_id:
                raise MissingCloudIdError(conflict.local_id)
            remote = await _fetch_remote_version(client, conflict.cloud_id)
            local_at = _as_utc(conflict.local_updated_at)
            cloud_at = _as_utc(remote.updated_at)

            if abs((cloud_at - local_at).total_seconds()) < tolerance:
                logger.warning(
                    f"Conflict on {conflict.local_id[:8]} resolved by timestamps "
                    f"{abs((cloud_at - local_at).total_seconds()):.0f}s apart; "
                    "result is sensitive to clock skew"
                )

            if cloud_at > local_at:
                await resolve_keep_cloud(store, client, conflict.local_id)
                result.pulled += 1
                log(f"Resolved {conflict.local_id[:8]}: kept cloud")
            else:
                await resolve_keep_local(
                    store, client, conflict.local_id, remote_version=remote.version
                )
                result.pushed += 1
                log(f"Resolved {conflict.local_id[:8]}: kept local")
        except NotAuthenticatedError:
            raise
        except Exception as e:
            result.errors.append(f"Failed to resolve conflict {conflict.local_id}: {e}")
            result.conflicts += 1

    return result
