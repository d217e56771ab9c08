"""
Pull engine: bring remote changes since the last watermark into the local store.

Remote commits updated after the watermark are processed oldest first. New
ones are materialized locally, existing ones are overwritten unless the local
copy has unpushed edits, in which case a remote advance becomes a conflict.
The watermark then moves to the last fetched ``updated_at``, and remote
soft-deletes newer than the previous watermark are applied as local deletes.
Visuals of pulled commits that are missing locally are downloaded last.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from cogcommit.constants import COMMITS_TABLE, EPOCH_WATERMARK
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import NotAuthenticatedError
from cogcommit.models.commit import Commit, SyncStatus
from cogcommit.models.remote import RemoteCommit, RemoteDeletion
from cogcommit.sync.client import RemoteClient, eq, gt, is_null, not_null
from cogcommit.sync.identifiers import to_uuid
from cogcommit.sync.transforms import commit_from_remote
from cogcommit.sync.types import PullOptions, SyncResult
from cogcommit.sync.visuals import pull_visuals

logger = logging.getLogger(__name__)

COMMIT_WITH_CHILDREN = "*,sessions(*,turns(*))"

# Local statuses whose edits have not reached the remote yet
UNPUSHED_STATUSES = (SyncStatus.PENDING, SyncStatus.ERROR)


async def pull_from_cloud(
    store: LocalStore,
    client: RemoteClient,
    options: Optional[PullOptions] = None,
) -> SyncResult:
    """
    Pull remote commits changed since the last sync.

    Args:
        store: Local record store
        client: Remote client
        options: Pull options

    Returns:
        SyncResult with pulled/conflicts counts and per-record errors

    Raises:
        NotAuthenticatedError: If no valid credential is available
    """
    options = options or PullOptions()
    result = SyncResult()
    log = logger.info if options.verbose else logger.debug

    await client.ensure_authenticated()
    user_id = client.user_id
    watermark = store.get_last_sync_time() or EPOCH_WATERMARK
    log(f"Pulling commits updated since {watermark}")

    try:
        rows = await client.select(
            COMMITS_TABLE,
            filters=[
                ("user_id", eq(user_id)),
                ("deleted_at", is_null()),
                ("updated_at", gt(watermark)),
            ],
            columns=COMMIT_WITH_CHILDREN,
            order="updated_at.asc",
        )
    except NotAuthenticatedError:
        raise
    except Exception as e:
        result.errors.append(f"Failed to fetch commits: {e}")
        logger.warning(result.errors[-1])
        return result

    log(f"Found {len(rows)} commits to pull")

    pulled_ids: list[str] = []
    for row in rows:
        try:
            outcome, commit_id = _apply_remote_row(store, row, log)
        except Exception as e:
            message = f"Failed to process commit {row.get('id')}: {e}"
            result.errors.append(message)
            logger.warning(message)
            continue
        if outcome == "pulled":
            result.pulled += 1
            pulled_ids.append(commit_id)
        elif outcome == "conflict":
            result.conflicts += 1

    if rows and rows[-1].get("updated_at"):
        store.set_last_sync_time(str(rows[-1]["updated_at"]))

    if options.visuals:
        for commit_id in pulled_ids:
            visuals = await pull_visuals(store, client, commit_id, verbose=options.verbose)
            result.visuals_downloaded += visuals.downloaded
            result.errors.extend(visuals.errors)

    await _pull_deletions(store, client, user_id, watermark, result, log)
    return result


def _apply_remote_row(
    store: LocalStore, row: dict[str, Any], log: Any
) -> tuple[str, str]:
    """
    Reconcile one remote commit with the local store.

    Returns:
        ('pulled', 'conflict' or 'skipped'; local commit id)
    """
    remote_row = RemoteCommit.model_validate(row)
    incoming = commit_from_remote(remote_row)
    now = datetime.now(timezone.utc)

    local = store.get_commit_by_cloud_id(remote_row.id)
    if local is None:
        incoming.last_synced_at = now
        store.insert_commit(incoming)
        log(f"Created commit {incoming.id[:8]}")
        return "pulled", incoming.id

    if local.sync_status == SyncStatus.CONFLICT:
        return "skipped", local.id

    remote_advanced = remote_row.version > local.cloud_version
    if local.sync_status in UNPUSHED_STATUSES and local.has_unpushed_edits:
        if remote_advanced:
            store.update_sync_status(local.id, SyncStatus.CONFLICT)
            log(
                f"Conflict on commit {local.id[:8]}: local v{local.local_version}, "
                f"remote v{remote_row.version}, last seen v{local.cloud_version}"
            )
            return "conflict", local.id
        return "skipped", local.id

    if not remote_advanced:
        return "skipped", local.id

    align_child_ids(local, incoming)
    store.apply_remote_commit(
        local.id,
        incoming,
        cloud_version=remote_row.version,
        local_version=remote_row.version,
        last_synced_at=now,
    )
    log(f"Updated commit {local.id[:8]} to v{remote_row.version}")
    return "pulled", local.id


def align_child_ids(local: Commit, incoming: Commit) -> None:
    """
    Rename incoming sessions and turns to the local ids they were pushed from.

    Remote child ids are the normalized form of local ids, so a commit that
    originated here keeps its original session and turn ids.
    """
    session_ids = {to_uuid(s.id): s.id for s in local.sessions}
    turn_ids = {to_uuid(t.id): t.id for s in local.sessions for t in s.turns}
    for session in incoming.sessions:
        session.id = session_ids.get(session.id, session.id)
        for turn in session.turns:
            turn.id = turn_ids.get(turn.id, turn.id)


async def _pull_deletions(
    store: LocalStore,
    client: RemoteClient,
    user_id: str,
    since: str,
    result: SyncResult,
    log: Any,
) -> None:
    """Hard-delete local commits whose remote copy was soft-deleted after ``since``."""
    try:
        rows = await client.select(
            COMMITS_TABLE,
            filters=[
                ("user_id", eq(user_id)),
                ("deleted_at", not_null()),
                ("deleted_at", gt(since)),
            ],
            columns="id,deleted_at",
        )
    except NotAuthenticatedError:
        raise
    except Exception as e:
        result.errors.append(f"Failed to fetch deleted commits: {e}")
        logger.warning(result.errors[-1])
        return

    for row in rows:
        try:
            deletion = RemoteDeletion.model_validate(row)
            local = store.get_commit_by_cloud_id(deletion.id)
            if local is None:
                continue
            store.delete_commit(local.id)
        except Exception as e:
            result.errors.append(f"Failed to delete commit {row.get('id')}: {e}")
            continue
        result.deleted += 1
        log(f"Deleted commit {local.id[:8]}")
