"""
Sync API routes.

Endpoints for the sync status summary, on-demand sync and manual conflict
resolution. The store, remote client and sync queue are created by the
application lifespan and read from ``app.state``.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from cogcommit.api.schemas import (
    ConflictResponse,
    ResolveRequest,
    ResolveResponse,
    SyncResultResponse,
    SyncStateResponse,
    SyncStatusResponse,
)
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import (
    CloudNotConfiguredError,
    CommitNotFoundError,
    MissingCloudIdError,
    NotAuthenticatedError,
    NotInConflictError,
    RemoteError,
    SyncInProgressError,
)
from cogcommit.sync.client import RemoteClient
from cogcommit.sync.conflict import get_conflicts, resolve_keep_cloud, resolve_keep_local
from cogcommit.sync.queue import SyncQueue

logger = logging.getLogger(__name__)
router = APIRouter()


def get_store(request: Request) -> LocalStore:
    return request.app.state.store


def get_client(request: Request) -> RemoteClient:
    return request.app.state.client


def get_queue(request: Request) -> SyncQueue:
    return request.app.state.queue


async def _require_cloud(client: RemoteClient) -> None:
    try:
        await client.ensure_authenticated()
    except CloudNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except NotAuthenticatedError as e:
        raise HTTPException(status_code=401, detail=str(e))


@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_status(queue: SyncQueue = Depends(get_queue)) -> SyncStatusResponse:
    """
    Get the sync status summary.

    Never touches the network.

    Returns:
        Counts per sync status, last pull time, online and syncing flags
    """
    state = queue.get_state()
    return SyncStatusResponse(sync_state=SyncStateResponse.model_validate(state))


@router.post("/sync", response_model=SyncResultResponse)
async def trigger_sync(
    queue: SyncQueue = Depends(get_queue),
    client: RemoteClient = Depends(get_client),
) -> SyncResultResponse:
    """
    Run one full sync and wait for its result.

    Returns:
        Counts of pulled, pushed and conflicted commits and any errors

    Raises:
        HTTPException: 409 if a sync is already running, 401 if not logged in,
            503 if the cloud is not configured
    """
    if queue.is_syncing:
        raise HTTPException(status_code=409, detail=str(SyncInProgressError()))

    await _require_cloud(client)

    result = await queue.sync_now()
    logger.info(f"On-demand sync: {result.pulled} pulled, {result.pushed} pushed")
    return SyncResultResponse.model_validate(result)


@router.get("/sync/conflicts", response_model=list[ConflictResponse])
async def list_conflicts(
    store: LocalStore = Depends(get_store),
) -> list[ConflictResponse]:
    """List commits waiting for manual conflict resolution."""
    return [ConflictResponse.model_validate(c) for c in get_conflicts(store)]


@router.post("/sync/conflicts/{commit_id}/resolve", response_model=ResolveResponse)
async def resolve_conflict(
    commit_id: str,
    request: ResolveRequest,
    store: LocalStore = Depends(get_store),
    client: RemoteClient = Depends(get_client),
    queue: SyncQueue = Depends(get_queue),
) -> ResolveResponse:
    """
    Resolve a conflict by keeping one side.

    Refused while a sync is running.

    Args:
        commit_id: Local commit id
        request: ``{"keep": "local" | "cloud"}``

    Returns:
        The commit's sync metadata after resolution

    Raises:
        HTTPException: 409 if a sync is running or the commit is not in conflict,
            404 if the commit does not exist
    """
    if queue.is_syncing:
        raise HTTPException(status_code=409, detail=str(SyncInProgressError()))

    await _require_cloud(client)

    try:
        if request.keep == "local":
            commit = await resolve_keep_local(store, client, commit_id)
        else:
            commit = await resolve_keep_cloud(store, client, commit_id)
    except CommitNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotInConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MissingCloudIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RemoteError as e:
        logger.error(f"Failed to resolve conflict on {commit_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return ResolveResponse(
        commit_id=commit.id,
        kept=request.keep,
        sync_status=commit.sync_status.value,
        local_version=commit.local_version,
        cloud_version=commit.cloud_version,
    )
