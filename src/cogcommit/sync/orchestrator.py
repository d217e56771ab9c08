"""
Sync orchestrator: one full bidirectional sync and the status summary.

Order is fixed: resolve outstanding conflicts, pull, then push. Pulling first
absorbs remote changes before local ones are asserted, which keeps spurious
conflicts down. A failing phase is recorded in ``errors`` and the next phase
still runs; only a missing credential aborts the whole sync.
"""

import logging
from typing import Awaitable, Callable, Optional

from cogcommit.config import settings
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import NotAuthenticatedError
from cogcommit.models.commit import SyncStatus
from cogcommit.sync.client import RemoteClient
from cogcommit.sync.conflict import auto_resolve_conflicts, get_conflict_count
from cogcommit.sync.pull import pull_from_cloud
from cogcommit.sync.push import push_to_cloud
from cogcommit.sync.retry import RetryConfig
from cogcommit.sync.types import PullOptions, PushOptions, SyncResult, SyncState

logger = logging.getLogger(__name__)


async def _run_phase(
    name: str, phase: Callable[[], Awaitable[SyncResult]], result: SyncResult
) -> Optional[SyncResult]:
    try:
        return await phase()
    except NotAuthenticatedError:
        raise
    except Exception as e:
        logger.error(f"Sync {name} phase failed: {e}", exc_info=True)
        result.errors.append(f"{name.capitalize()} failed: {e}")
        return None


async def sync(
    store: LocalStore,
    client: RemoteClient,
    verbose: bool = False,
    auto_resolve: Optional[bool] = None,
    retry_policy: Optional[RetryConfig] = None,
) -> SyncResult:
    """
    Run one full sync: auto-resolve, pull, push.

    Args:
        store: Local record store
        client: Remote client
        verbose: Log per-commit progress at INFO
        auto_resolve: Resolve conflicts by last-write-wins first
            (default: ``settings.auto_resolve_conflicts``)
        retry_policy: Push retry policy (default from settings)

    Returns:
        Combined SyncResult of all phases

    Raises:
        NotAuthenticatedError: If no valid credential is available
    """
    result = SyncResult()
    await client.ensure_authenticated()

    if auto_resolve is None:
        auto_resolve = settings.auto_resolve_conflicts

    if get_conflict_count(store) > 0:
        if auto_resolve:
            resolved = await _run_phase(
                "conflict resolution",
                lambda: auto_resolve_conflicts(store, client, PullOptions(verbose=verbose)),
                result,
            )
            if resolved is not None:
                result.conflicts += resolved.conflicts
                result.errors.extend(resolved.errors)
        else:
            result.conflicts += get_conflict_count(store)
            logger.info(f"{result.conflicts} conflicts left for manual resolution")

    pulled = await _run_phase(
        "pull", lambda: pull_from_cloud(store, client, PullOptions(verbose=verbose)), result
    )
    if pulled is not None:
        result.merge(pulled)

    pushed = await _run_phase(
        "push",
        lambda: push_to_cloud(
            store, client, PushOptions(verbose=verbose, retry_policy=retry_policy)
        ),
        result,
    )
    if pushed is not None:
        result.merge(pushed)

    logger.info(
        f"Sync complete: {result.pulled} pulled, {result.pushed} pushed, "
        f"{result.conflicts} conflicts, {len(result.errors)} errors"
    )
    return result


def get_sync_status(
    store: LocalStore,
    client: Optional[RemoteClient] = None,
    is_syncing: bool = False,
) -> SyncState:
    """
    Summarize sync state without touching the network.

    Args:
        store: Local record store
        client: Remote client used to decide whether cloud sync is possible
        is_syncing: Whether a sync is running right now

    Returns:
        SyncState
    """
    counts = store.count_by_sync_status()
    is_online = False
    if client is not None and client.is_configured:
        is_online = client.credentials.load_tokens() is not None

    return SyncState(
        last_sync_at=store.get_last_sync_time(),
        pending_count=counts[SyncStatus.PENDING.value],
        synced_count=counts[SyncStatus.SYNCED.value],
        conflict_count=counts[SyncStatus.CONFLICT.value],
        error_count=counts[SyncStatus.ERROR.value],
        filtered_count=counts[SyncStatus.FILTERED.value],
        is_online=is_online,
        is_syncing=is_syncing,
    )
