"""
CogCommit CLI - command-line interface for cloud sync.

Push, pull and reconcile cognitive commits with the cloud, inspect and resolve
conflicts, run continuous sync, and serve the studio API.
"""

import asyncio
import enum
import logging
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from cogcommit.config import settings
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import CogCommitError, RemoteError, TransientRemoteError
from cogcommit.logging_config import setup_logging
from cogcommit.sync.client import RemoteClient
from cogcommit.sync.types import PullOptions, PushOptions, SyncResult

app = typer.Typer(
    name="cogcommit",
    help="CogCommit - sync cognitive commits with the cloud",
    no_args_is_help=True,
)

console = Console()

# Failures reported as a one-line error instead of a traceback
EXPECTED_ERRORS = (CogCommitError, RemoteError, TransientRemoteError)


class KeepSide(str, enum.Enum):
    LOCAL = "local"
    CLOUD = "cloud"


def _init_logging() -> None:
    # Fallback to console if file logging not permitted
    try:
        setup_logging(context="cli")
    except PermissionError:
        logging.basicConfig(level=logging.INFO)


def _open_store() -> LocalStore:
    return LocalStore.open()


def _open_client() -> RemoteClient:
    return RemoteClient()


def _fail(message: str) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


def _print_errors(result: SyncResult) -> None:
    if not result.errors:
        return
    console.print(f"[red]✗ {len(result.errors)} error(s):[/red]")
    for error in result.errors:
        console.print(f"  - {error}")


def _print_conflict_hint(result: SyncResult) -> None:
    if result.conflicts:
        console.print(
            f"[yellow]⚠ {result.conflicts} conflict(s).[/yellow] "
            "Run 'cogcommit conflicts' to review and 'cogcommit resolve' to fix."
        )


async def _run_push(options: PushOptions) -> SyncResult:
    from cogcommit.sync.push import push_to_cloud

    store = _open_store()
    client = _open_client()
    try:
        return await push_to_cloud(store, client, options)
    finally:
        await client.close()
        store.close()


@app.command()
def push(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-commit progress"),
    force: bool = typer.Option(
        False, "--force", help="Reset sync state and re-push every commit"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be pushed"),
    retry: bool = typer.Option(False, "--retry", help="Retry commits that failed before"),
) -> None:
    """
    Push local commits to the cloud.

    Pending commits are uploaded newest first, limited by the account quota.
    """
    _init_logging()
    options = PushOptions(verbose=verbose, force=force, dry_run=dry_run, retry=retry)

    try:
        result = asyncio.run(_run_push(options))
    except EXPECTED_ERRORS as e:
        _fail(str(e))

    if dry_run and result.dry_run_counts is not None:
        counts = result.dry_run_counts
        console.print("[bold]Dry run[/bold] - nothing was uploaded")
        console.print(f"  Commits: {counts.commits}")
        console.print(f"  Sessions: {counts.sessions}")
        console.print(f"  Turns: {counts.turns}")
        if result.filtered:
            console.print(f"  Filtered (empty or warm-up): {result.filtered}")
        return

    if result.quota_exhausted:
        console.print(
            "[yellow]⚠ Commit limit reached on the free plan.[/yellow] "
            f"{result.deferred} commit(s) left pending."
        )
    elif result.deferred:
        console.print(
            f"[yellow]⚠ {result.deferred} commit(s) deferred by the plan limit[/yellow]"
        )

    if result.pushed:
        console.print(f"[green]✓ Pushed {result.pushed} commit(s)[/green]")
    elif not result.errors and not result.conflicts and not result.quota_exhausted:
        console.print("[green]✓ Everything is up to date[/green]")
    if result.filtered:
        console.print(f"  Filtered (empty or warm-up): {result.filtered}")

    _print_conflict_hint(result)
    _print_errors(result)
    if result.errors:
        raise typer.Exit(1)


async def _run_pull(verbose: bool) -> SyncResult:
    from cogcommit.sync.pull import pull_from_cloud

    store = _open_store()
    client = _open_client()
    try:
        return await pull_from_cloud(store, client, PullOptions(verbose=verbose))
    finally:
        await client.close()
        store.close()


@app.command()
def pull(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-commit progress"),
) -> None:
    """Pull commits changed in the cloud since the last pull."""
    _init_logging()

    try:
        result = asyncio.run(_run_pull(verbose))
    except EXPECTED_ERRORS as e:
        _fail(str(e))

    console.print(f"[green]✓ Pulled {result.pulled} commit(s)[/green]")
    if result.visuals_downloaded:
        console.print(f"  Downloaded {result.visuals_downloaded} visual(s)")
    if result.deleted:
        console.print(f"  Removed {result.deleted} commit(s) deleted in the cloud")
    _print_conflict_hint(result)
    _print_errors(result)
    if result.errors:
        raise typer.Exit(1)


def _print_status() -> None:
    from cogcommit.sync.orchestrator import get_sync_status

    store = _open_store()
    try:
        state = get_sync_status(store, _open_client())
    finally:
        store.close()

    console.print("[bold]Sync status[/bold]")
    console.print(f"  Cloud: {'connected' if state.is_online else 'offline'}")
    console.print(f"  Last pull: {state.last_sync_at or 'never'}")
    console.print(f"  Pending: {state.pending_count}")
    console.print(f"  Synced: {state.synced_count}")
    console.print(f"  Conflicts: {state.conflict_count}")
    console.print(f"  Errors: {state.error_count}")
    console.print(f"  Filtered: {state.filtered_count}")


async def _run_sync(verbose: bool) -> SyncResult:
    from cogcommit.sync.orchestrator import sync as run_sync

    store = _open_store()
    client = _open_client()
    try:
        return await run_sync(store, client, verbose=verbose)
    finally:
        await client.close()
        store.close()


@app.command()
def sync(
    status: bool = typer.Option(False, "--status", help="Only show sync status"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-commit progress"),
) -> None:
    """
    Run a full sync: resolve conflicts, pull, then push.
    """
    _init_logging()
    if status:
        _print_status()
        return

    try:
        result = asyncio.run(_run_sync(verbose))
    except EXPECTED_ERRORS as e:
        _fail(str(e))

    console.print(
        f"[green]✓ Sync complete:[/green] {result.pulled} pulled, {result.pushed} pushed"
    )
    _print_conflict_hint(result)
    _print_errors(result)
    if result.errors:
        raise typer.Exit(1)


@app.command(name="status")
def status_command() -> None:
    """Show the sync status summary without contacting the cloud."""
    _init_logging()
    _print_status()


@app.command()
def conflicts() -> None:
    """List commits in conflict."""
    from cogcommit.sync.conflict import get_conflicts

    _init_logging()
    store = _open_store()
    try:
        items = get_conflicts(store)
    finally:
        store.close()

    if not items:
        console.print("[green]✓ No conflicts[/green]")
        return

    table = Table(title=f"{len(items)} conflict(s)")
    table.add_column("Commit")
    table.add_column("Local version", justify="right")
    table.add_column("Cloud version", justify="right")
    table.add_column("Local updated")
    for item in items:
        table.add_row(
            item.local_id,
            str(item.local_version),
            str(item.cloud_version),
            item.local_updated_at.isoformat(),
        )
    console.print(table)
    console.print("Resolve with: cogcommit resolve <commit> --keep local|cloud")


async def _run_resolve(commit_id: str, keep: KeepSide):
    from cogcommit.sync.conflict import resolve_keep_cloud, resolve_keep_local

    store = _open_store()
    client = _open_client()
    try:
        if keep == KeepSide.LOCAL:
            return await resolve_keep_local(store, client, commit_id)
        return await resolve_keep_cloud(store, client, commit_id)
    finally:
        await client.close()
        store.close()


@app.command()
def resolve(
    commit_id: str = typer.Argument(..., help="Local commit id"),
    keep: KeepSide = typer.Option(..., "--keep", help="Side to keep: local or cloud"),
) -> None:
    """Resolve a conflict by keeping the local or the cloud copy."""
    _init_logging()

    try:
        commit = asyncio.run(_run_resolve(commit_id, keep))
    except EXPECTED_ERRORS as e:
        _fail(str(e))

    console.print(f"[green]✓ Resolved {commit.id}: kept {keep.value}[/green]")
    if keep == KeepSide.LOCAL:
        console.print("  Run 'cogcommit push' to upload the local copy.")


async def _run_watch(verbose: bool, interval: Optional[float]) -> None:
    from cogcommit.sync.queue import SyncQueue

    store = _open_store()
    client = _open_client()
    queue = SyncQueue(store, client, verbose=verbose, interval_seconds=interval)

    def on_completed(result: SyncResult) -> None:
        console.print(
            f"[green]✓ Synced:[/green] {result.pulled} pulled, {result.pushed} pushed"
            + (f", [red]{len(result.errors)} error(s)[/red]" if result.errors else "")
        )

    queue.on("sync_completed", on_completed)
    queue.on("sync_error", lambda e: console.print(f"[red]✗ Sync failed:[/red] {e}"))

    try:
        await client.ensure_authenticated()
        queue.start()
        await queue.sync_now()
        await asyncio.Event().wait()
    finally:
        await queue.stop()
        await client.close()
        store.close()


@app.command()
def watch(
    interval: Optional[float] = typer.Option(
        None, help="Seconds between periodic syncs (default from settings)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-commit progress"),
) -> None:
    """Sync continuously until interrupted."""
    _init_logging()
    console.print("[bold blue]Watching for changes[/bold blue] (Ctrl+C to stop)")

    try:
        asyncio.run(_run_watch(verbose, interval))
    except KeyboardInterrupt:
        console.print("\nStopped")
    except EXPECTED_ERRORS as e:
        _fail(str(e))


async def _run_wipe():
    from cogcommit.sync.cloud import wipe_cloud_data

    store = _open_store()
    client = _open_client()
    try:
        return await wipe_cloud_data(client, store)
    finally:
        await client.close()
        store.close()


@app.command(name="cloud-clear")
def cloud_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Delete all of your data from the cloud.

    Local commits are kept and marked pending, so a later push re-uploads them.
    """
    _init_logging()
    if not yes:
        typer.confirm("Delete all of your commits from the cloud?", abort=True)

    try:
        result = asyncio.run(_run_wipe())
    except EXPECTED_ERRORS as e:
        _fail(str(e))

    console.print(
        f"[green]✓ Deleted {result.commits} commit(s) and "
        f"{result.sessions} session(s) from the cloud[/green]"
    )


@app.command()
def studio(
    host: str = typer.Option(settings.api_host, help="Host to bind to"),
    port: int = typer.Option(settings.api_port, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """
    Start the studio API server.

    Serves sync status and on-demand sync, with continuous sync in the background.
    """
    import uvicorn

    console.print("[bold green]Starting CogCommit studio...[/bold green]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"\n  API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "cogcommit.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
