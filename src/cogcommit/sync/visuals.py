"""
Visual attachment sync.

Screenshots are uploaded to object storage under
``<user_id>/<commit_id>/<visual_id><ext>``. The storage key is stored next to
the public URL, so downloads never have to take the URL apart. A visual with a
``cloud_url`` counts as synced; there is no version counter.
"""

import logging
import mimetypes
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from cogcommit.config import settings
from cogcommit.constants import VISUALS_TABLE
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import (
    CloudNotConfiguredError,
    CogCommitError,
    NotAuthenticatedError,
    RemoteError,
    TransientRemoteError,
)
from cogcommit.models.commit import Visual
from cogcommit.models.remote import RemoteVisual
from cogcommit.sync.client import RemoteClient, eq, not_null
from cogcommit.sync.identifiers import to_uuid
from cogcommit.sync.transforms import to_payload, visual_from_remote, visual_to_remote

logger = logging.getLogger(__name__)


@dataclass
class VisualSyncResult:
    uploaded: int = 0
    downloaded: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class VisualSyncStatus:
    """Where a commit's visuals live."""

    synced: int = 0  # Local file and cloud copy
    local_only: int = 0  # Waiting for upload
    cloud_only: int = 0  # Waiting for download
    missing: int = 0  # Neither


def get_mime_type(path: str) -> str:
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or "application/octet-stream"


def storage_key_for(user_id: str, commit_id: str, visual: Visual) -> str:
    ext = Path(visual.path).suffix or ".png"
    return f"{user_id}/{commit_id}/{visual.id}{ext}"


def cache_path_for(commit_id: str, visual_id: str, storage_key: Optional[str]) -> Path:
    """Local path for a visual that only exists in the cloud."""
    ext = Path(storage_key).suffix if storage_key else ".png"
    return settings.data_directory / "visual-cache" / commit_id / f"{visual_id}{ext}"


async def upload_visual(store: LocalStore, client: RemoteClient, visual: Visual) -> str:
    """
    Upload one visual and record its location locally and remotely.

    Args:
        store: Local record store
        client: Authenticated remote client
        visual: Visual to upload

    Returns:
        Public URL

    Raises:
        CogCommitError: If the local file or the commit's cloud id is missing
    """
    if visual.cloud_url:
        return visual.cloud_url

    path = Path(visual.path)
    if not path.exists():
        raise CogCommitError(f"File not found: {visual.path}")

    commit = store.get_commit(visual.commit_id)
    if commit is None or not commit.cloud_id:
        raise CogCommitError(f"Commit {visual.commit_id} has not been pushed yet")

    key = storage_key_for(client.user_id, commit.cloud_id, visual)
    cloud_url = await client.upload(
        settings.visual_bucket, key, path.read_bytes(), get_mime_type(visual.path)
    )
    row = visual_to_remote(visual, commit.cloud_id, cloud_url, key)
    await client.upsert(VISUALS_TABLE, [to_payload(row)])
    store.set_visual_cloud_location(visual.id, cloud_url, key)
    return cloud_url


async def push_visuals(
    store: LocalStore, client: RemoteClient, commit_id: str, verbose: bool = False
) -> VisualSyncResult:
    """
    Upload every visual of a commit that has no cloud copy yet.

    Missing files and failed uploads are collected in ``errors``.

    Raises:
        NotAuthenticatedError: If no valid credential is available
    """
    result = VisualSyncResult()
    await client.ensure_authenticated()
    log = logger.info if verbose else logger.debug

    for visual in store.get_visuals_for_commit(commit_id):
        if visual.cloud_url:
            continue
        try:
            await upload_visual(store, client, visual)
        except NotAuthenticatedError:
            raise
        except Exception as e:
            result.errors.append(f"Failed to upload visual {visual.id}: {e}")
            continue
        result.uploaded += 1
        log(f"Uploaded visual {visual.id[:8]}")
    return result


async def download_visual(
    client: RemoteClient, storage_key: str, local_path: Path
) -> None:
    content = await client.download(settings.visual_bucket, storage_key)
    local_path.parent.mkdir(parents=True, exist_ok=True)
    local_path.write_bytes(content)


async def pull_visuals(
    store: LocalStore, client: RemoteClient, commit_id: str, verbose: bool = False
) -> VisualSyncResult:
    """
    Download a commit's cloud visuals that are missing locally.

    Args:
        store: Local record store
        client: Remote client
        commit_id: Local commit id
        verbose: Log each download at INFO

    Returns:
        VisualSyncResult

    Raises:
        NotAuthenticatedError: If no valid credential is available
    """
    result = VisualSyncResult()
    commit = store.get_commit(commit_id)
    if commit is None or not commit.cloud_id:
        return result

    await client.ensure_authenticated()
    log = logger.info if verbose else logger.debug

    try:
        rows = await client.select(
            VISUALS_TABLE,
            filters=[("commit_id", eq(commit.cloud_id)), ("cloud_url", not_null())],
        )
    except NotAuthenticatedError:
        raise
    except Exception as e:
        result.errors.append(f"Failed to fetch visuals: {e}")
        return result

    local_by_remote_id = {
        to_uuid(v.id): v for v in store.get_visuals_for_commit(commit_id)
    }
    for row in rows:
        try:
            remote = RemoteVisual.model_validate(row)
            local = local_by_remote_id.get(remote.id)
            if local is not None and Path(local.path).exists():
                continue
            if not remote.storage_key:
                raise CogCommitError("no storage key")

            if local is not None:
                path = Path(local.path)
                visual = local
                visual.cloud_url = remote.cloud_url
                visual.storage_key = remote.storage_key
            else:
                path = cache_path_for(commit_id, remote.id, remote.storage_key)
                visual = visual_from_remote(remote, commit_id, str(path))

            await download_visual(client, remote.storage_key, path)
            store.save_visual(visual)
        except NotAuthenticatedError:
            raise
        except Exception as e:
            result.errors.append(f"Failed to download visual {row.get('id')}: {e}")
            continue
        result.downloaded += 1
        log(f"Downloaded visual {remote.id[:8]}")
    return result


async def get_visual(
    store: LocalStore, client: RemoteClient, visual_id: str
) -> tuple[Path, bool]:
    """
    Get a visual's file, re-downloading it when the local copy is stale.

    Args:
        store: Local record store
        client: Remote client
        visual_id: Visual id

    Returns:
        (path, fetched_from_cloud)

    Raises:
        CogCommitError: If the visual is unknown or unavailable
    """
    visual = store.get_visual(visual_id)
    if visual is None:
        raise CogCommitError(f"Visual not found: {visual_id}")

    path = Path(visual.path)
    ttl_seconds = settings.visual_cache_ttl_hours * 3600
    if path.exists() and time.time() - path.stat().st_mtime < ttl_seconds:
        return path, False

    if visual.storage_key:
        try:
            await client.ensure_authenticated()
            await download_visual(client, visual.storage_key, path)
            return path, True
        except (CloudNotConfiguredError, NotAuthenticatedError) as e:
            logger.debug(f"Serving cached visual {visual_id[:8]}: {e}")
        except (RemoteError, TransientRemoteError) as e:
            logger.warning(f"Failed to refresh visual {visual_id[:8]}: {e}")

    if not path.exists():
        raise CogCommitError(f"Visual not available: {visual_id}")
    return path, False


def get_visual_sync_status(store: LocalStore, commit_id: str) -> VisualSyncStatus:
    status = VisualSyncStatus()
    for visual in store.get_visuals_for_commit(commit_id):
        has_file = Path(visual.path).exists()
        if has_file and visual.cloud_url:
            status.synced += 1
        elif has_file:
            status.local_only += 1
        elif visual.cloud_url:
            status.cloud_only += 1
        else:
            status.missing += 1
    return status
