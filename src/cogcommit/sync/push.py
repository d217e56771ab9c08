"""
Push engine: upload pending local commits to the remote record service.

Per commit: check the remote version for a conflict, upsert the commit row at
``cloud_version + 1``, upsert each session, then upload its turns in fixed-size
batches. A failing commit is marked ``error`` and the run moves on. Commits
that failed during the run get extra passes according to the retry policy.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from cogcommit.config import settings
from cogcommit.constants import COMMITS_TABLE, SESSIONS_TABLE, TURNS_TABLE
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import NotAuthenticatedError
from cogcommit.models.commit import Commit, SyncStatus
from cogcommit.models.remote import RemoteVersion
from cogcommit.sync.client import RemoteClient, eq
from cogcommit.sync.retry import RetryConfig, calculate_delay
from cogcommit.sync.transforms import (
    commit_to_remote,
    session_to_remote,
    to_payload,
    turn_to_remote,
)
from cogcommit.sync.types import DryRunCounts, PushOptions, SyncResult

logger = logging.getLogger(__name__)

PUSHED = "pushed"
CONFLICT = "conflict"


def default_retry_policy() -> RetryConfig:
    """Engine retry policy from settings."""
    return RetryConfig(
        max_retries=settings.sync_max_retries,
        initial_delay=settings.sync_retry_initial_delay,
        max_delay=settings.sync_retry_max_delay,
    )


def is_syncable(commit: Commit, warmup_marker: Optional[str] = None) -> bool:
    """
    Whether a commit should be uploaded at all.

    Commits without turns, and warm-up commits (first turn mentions the
    warm-up marker, any case), are never uploaded.

    Args:
        commit: Candidate commit
        warmup_marker: Marker text (default: ``settings.warmup_marker``)

    Returns:
        True if the commit is worth pushing
    """
    if commit.total_turns == 0:
        return False
    marker = (warmup_marker or settings.warmup_marker).lower()
    return marker not in commit.first_turn_content.lower()


def chunked(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def push_to_cloud(
    store: LocalStore,
    client: RemoteClient,
    options: Optional[PushOptions] = None,
) -> SyncResult:
    """
    Push pending (or, with ``retry``, errored) commits.

    Args:
        store: Local record store
        client: Remote client
        options: Push options

    Returns:
        SyncResult with pushed/conflicts counts and errors of commits that
        still failed after the retry policy ran out

    Raises:
        NotAuthenticatedError: If no valid credential is available
    """
    options = options or PushOptions()
    result = SyncResult()
    log = logger.info if options.verbose else logger.debug

    if not options.dry_run:
        await client.ensure_authenticated()
        if options.force:
            store.reset_all_sync_status()

    status = SyncStatus.ERROR if options.retry else SyncStatus.PENDING
    candidates = store.get_by_sync_status(status)
    result.total_pending = len(candidates)
    log(f"Found {len(candidates)} {status.value} commits to push")

    invalid = [c for c in candidates if not is_syncable(c)]
    candidates = [c for c in candidates if is_syncable(c)]
    result.filtered = len(invalid)

    if options.dry_run:
        result.dry_run_counts = DryRunCounts(
            commits=len(candidates),
            sessions=sum(len(c.sessions) for c in candidates),
            turns=sum(c.total_turns for c in candidates),
        )
        return result

    # Mark empty and warm-up commits synced so they are not selected again
    for commit in invalid:
        store.update_sync_status(commit.id, SyncStatus.SYNCED)
    if invalid:
        log(f"Skipped {len(invalid)} warm-up/empty commits")

    if not candidates:
        return result

    # Candidates arrive newest first; the quota keeps the most recent ones
    candidates.sort(key=lambda c: c.closed_at, reverse=True)
    usage = await client.get_usage()
    if usage is not None and usage.tier == settings.free_tier_name:
        remaining = usage.remaining_slots()
        if remaining == 0:
            logger.info(
                f"Cloud full ({usage.commit_count}/{usage.commit_limit} commits), "
                "nothing pushed"
            )
            result.quota_exhausted = True
            result.deferred = len(candidates)
            return result
        if len(candidates) > remaining:
            logger.info(
                f"Syncing most recent {remaining} of {len(candidates)} commits "
                f"({usage.tier} tier)"
            )
            result.deferred = len(candidates) - remaining
            candidates = candidates[:remaining]

    try:
        machine_uuid = await client.get_machine_uuid()
    except NotAuthenticatedError:
        raise
    except Exception as e:
        logger.warning(f"Could not resolve machine id: {e}")
        machine_uuid = None

    batch_size = options.batch_size or settings.sync_batch_size
    errors: dict[str, str] = {}

    async def run_pass(commits: list[Commit]) -> None:
        for commit in commits:
            try:
                outcome = await _push_commit(
                    store, client, commit, machine_uuid, batch_size, log
                )
            except NotAuthenticatedError:
                raise
            except Exception as e:
                errors[commit.id] = f"Failed to push commit {commit.id}: {e}"
                store.update_sync_status(commit.id, SyncStatus.ERROR)
                logger.warning(errors[commit.id])
                continue

            errors.pop(commit.id, None)
            if outcome == CONFLICT:
                result.conflicts += 1
            else:
                result.pushed += 1

    await run_pass(candidates)

    policy = options.retry_policy or default_retry_policy()
    for attempt in range(policy.max_retries):
        if not errors:
            break
        delay = calculate_delay(attempt, policy)
        logger.info(
            f"Retrying {len(errors)} failed commits "
            f"({attempt + 1}/{policy.max_retries}) in {delay:.2f}s"
        )
        await asyncio.sleep(delay)
        retry_commits = []
        for commit_id in list(errors):
            commit = store.get_commit(commit_id)
            if commit is not None and commit.sync_status == SyncStatus.ERROR:
                retry_commits.append(commit)
        await run_pass(retry_commits)

    result.errors = list(errors.values())
    return result


async def _push_commit(
    store: LocalStore,
    client: RemoteClient,
    commit: Commit,
    machine_uuid: Optional[str],
    batch_size: int,
    log: Callable[[str], None],
) -> str:
    """
    Push one commit with its sessions and turns.

    Returns:
        PUSHED, or CONFLICT if the remote advanced past our cloud version
    """
    if commit.cloud_id:
        row = await client.select_one(
            COMMITS_TABLE,
            filters=[("id", eq(commit.cloud_id))],
            columns="id,version,updated_at",
        )
        if row is not None:
            remote = RemoteVersion.model_validate(row)
            if remote.version > commit.cloud_version:
                store.update_sync_status(commit.id, SyncStatus.CONFLICT)
                log(
                    f"Conflict on commit {commit.id[:8]}: remote v{remote.version} "
                    f"> local cloud v{commit.cloud_version}"
                )
                return CONFLICT

    now = datetime.now(timezone.utc)
    remote_commit = commit_to_remote(
        commit,
        user_id=client.user_id,
        version=commit.cloud_version + 1,
        updated_at=now,
        origin_machine_id=machine_uuid,
    )
    rows = await client.upsert(COMMITS_TABLE, [to_payload(remote_commit)])
    stored = rows[0] if rows else {}
    cloud_id = stored.get("id", remote_commit.id)
    cloud_version = int(stored.get("version", remote_commit.version))

    for session in commit.sessions:
        remote_session = session_to_remote(session, cloud_id)
        await client.upsert(SESSIONS_TABLE, [to_payload(remote_session)])
        turns = [to_payload(turn_to_remote(t, remote_session.id)) for t in session.turns]
        for batch in chunked(turns, batch_size):
            await client.upsert(TURNS_TABLE, batch)

    store.update_sync_metadata(
        commit.id,
        cloud_id=cloud_id,
        sync_status=SyncStatus.SYNCED,
        cloud_version=cloud_version,
        local_version=cloud_version,
        last_synced_at=now,
    )
    log(f"Pushed commit {commit.id[:8]} (v{cloud_version})")
    return PUSHED
