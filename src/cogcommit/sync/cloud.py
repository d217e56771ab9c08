"""
Explicit wipe of a user's cloud data.

This is the only code path that physically deletes remote rows. Children go
first: turns, then sessions and visuals, then the commits themselves.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from cogcommit.constants import (
    COMMITS_TABLE,
    EPOCH_WATERMARK,
    SESSIONS_TABLE,
    TURNS_TABLE,
    VISUALS_TABLE,
)
from cogcommit.db.store import LocalStore
from cogcommit.sync.client import RemoteClient, eq, in_

logger = logging.getLogger(__name__)

# Ids per ``in.(...)`` filter, keeping request URLs short
DELETE_CHUNK_SIZE = 100


@dataclass
class WipeResult:
    commits: int = 0
    sessions: int = 0


def _chunks(ids: list[str]) -> list[list[str]]:
    return [ids[i : i + DELETE_CHUNK_SIZE] for i in range(0, len(ids), DELETE_CHUNK_SIZE)]


async def wipe_cloud_data(
    client: RemoteClient, store: Optional[LocalStore] = None
) -> WipeResult:
    """
    Delete all of the authenticated user's remote commits and their children.

    Args:
        client: Remote client
        store: If given, local commits are unlinked from the cloud afterwards
            and the pull watermark is reset, so a later push re-uploads them

    Returns:
        WipeResult with the number of commits and sessions removed

    Raises:
        NotAuthenticatedError: If no valid credential is available
        RemoteError: If a delete fails
    """
    await client.ensure_authenticated()
    result = WipeResult()

    commits = await client.select(
        COMMITS_TABLE, filters=[("user_id", eq(client.user_id))], columns="id"
    )
    commit_ids = [row["id"] for row in commits]
    if commit_ids:
        await _delete_commits(client, commit_ids, result)
    else:
        logger.info("No cloud data to delete")

    if store is not None:
        store.reset_all_sync_status()
        store.set_last_sync_time(EPOCH_WATERMARK)
    return result


async def _delete_commits(
    client: RemoteClient, commit_ids: list[str], result: WipeResult
) -> None:
    session_ids: list[str] = []
    for chunk in _chunks(commit_ids):
        rows = await client.select(
            SESSIONS_TABLE, filters=[("commit_id", in_(chunk))], columns="id"
        )
        session_ids.extend(row["id"] for row in rows)

    for chunk in _chunks(session_ids):
        await client.delete(TURNS_TABLE, [("session_id", in_(chunk))])
    for chunk in _chunks(commit_ids):
        await client.delete(SESSIONS_TABLE, [("commit_id", in_(chunk))])
        await client.delete(VISUALS_TABLE, [("commit_id", in_(chunk))])
    await client.delete(COMMITS_TABLE, [("user_id", eq(client.user_id))])

    result.commits = len(commit_ids)
    result.sessions = len(session_ids)
    logger.info(f"Deleted {result.commits} commits and {result.sessions} sessions from cloud")
