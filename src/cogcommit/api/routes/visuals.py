"""
Visual API routes.

Endpoints for listing a commit's visuals, their sync status, and serving the
image files themselves (re-downloaded from the cloud when the cache is stale).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from cogcommit.api.routes.sync import get_client, get_store
from cogcommit.api.schemas import VisualResponse, VisualSyncStatusResponse
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import CogCommitError
from cogcommit.sync.client import RemoteClient
from cogcommit.sync.visuals import get_mime_type, get_visual, get_visual_sync_status

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_commit(store: LocalStore, commit_id: str) -> None:
    if store.get_commit(commit_id) is None:
        raise HTTPException(status_code=404, detail=f"Commit not found: {commit_id}")


@router.get("/commits/{commit_id}/visuals", response_model=list[VisualResponse])
async def list_visuals(
    commit_id: str,
    store: LocalStore = Depends(get_store),
) -> list[VisualResponse]:
    """List a commit's visuals, oldest capture first."""
    _require_commit(store, commit_id)
    return [
        VisualResponse.model_validate(v) for v in store.get_visuals_for_commit(commit_id)
    ]


@router.get(
    "/commits/{commit_id}/visuals/status", response_model=VisualSyncStatusResponse
)
async def visual_status(
    commit_id: str,
    store: LocalStore = Depends(get_store),
) -> VisualSyncStatusResponse:
    """
    Count a commit's visuals by where they live.

    Returns:
        Synced, local-only, cloud-only and missing counts
    """
    _require_commit(store, commit_id)
    status = get_visual_sync_status(store, commit_id)
    return VisualSyncStatusResponse.model_validate(status)


@router.get("/visuals/{visual_id}")
async def serve_visual(
    visual_id: str,
    store: LocalStore = Depends(get_store),
    client: RemoteClient = Depends(get_client),
) -> FileResponse:
    """
    Serve a visual's image file.

    Raises:
        HTTPException: 404 if the visual is unknown or has no file anywhere
    """
    try:
        path, fetched = await get_visual(store, client, visual_id)
    except CogCommitError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if fetched:
        logger.debug(f"Refreshed visual {visual_id[:8]} from cloud")
    return FileResponse(path, media_type=get_mime_type(str(path)))
