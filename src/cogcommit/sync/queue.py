"""
Background sync queue for continuous sync.

Runs the orchestrator on an asyncio event loop: after local changes (debounced),
on a fixed interval, and on demand. At most one sync runs at a time; a trigger
that arrives while one is running marks the queue dirty and exactly one
follow-up sync runs when it finishes. ``stop()`` lets an in-flight sync
complete and prevents new ones from starting.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from cogcommit.config import settings
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import NotAuthenticatedError
from cogcommit.sync.client import RemoteClient
from cogcommit.sync.orchestrator import get_sync_status, sync
from cogcommit.sync.types import SyncResult, SyncState
from cogcommit.sync.visuals import push_visuals

logger = logging.getLogger(__name__)

SyncFn = Callable[..., Awaitable[SyncResult]]

EVENTS = ("started", "stopped", "sync_started", "sync_completed", "sync_error")


class SyncQueue:
    """
    Debounced, non-overlapping background sync.

    Usage:
        queue = SyncQueue(store, client)
        queue.on("sync_completed", lambda result: print(result.pushed))
        queue.start()            # inside a running event loop
        queue.on_commit_changed(commit_id)
        ...
        await queue.stop()
    """

    def __init__(
        self,
        store: LocalStore,
        client: RemoteClient,
        verbose: bool = False,
        continuous: bool = True,
        debounce_seconds: Optional[float] = None,
        interval_seconds: Optional[float] = None,
        retry_interval_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        sync_fn: Optional[SyncFn] = None,
    ):
        """
        Initialize the queue.

        Args:
            store: Local record store
            client: Remote client
            verbose: Log per-commit progress at INFO
            continuous: React to commit and visual notifications
            debounce_seconds: Delay coalescing rapid triggers
            interval_seconds: Periodic sync interval (0 disables the timer)
            retry_interval_seconds: Delay before retrying a failed sync
            max_retries: Consecutive failed syncs before retries stop
            sync_fn: Sync coroutine (default: the orchestrator's ``sync``)
        """
        self.store = store
        self.client = client
        self.verbose = verbose
        self.continuous = continuous
        self.debounce_seconds = (
            settings.queue_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.interval_seconds = (
            settings.queue_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.retry_interval_seconds = (
            settings.queue_retry_interval_seconds
            if retry_interval_seconds is None
            else retry_interval_seconds
        )
        self.max_retries = settings.queue_max_retries if max_retries is None else max_retries
        self._sync_fn = sync_fn or sync

        self._running = False
        self._stopped = False
        self._dirty = False
        self._retry_count = 0
        self._debounce: Optional[asyncio.TimerHandle] = None
        self._current: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._listeners: dict[str, list[Callable[..., Any]]] = {name: [] for name in EVENTS}
        self.last_result: Optional[SyncResult] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_syncing(self) -> bool:
        return self._current is not None and not self._current.done()

    @property
    def retry_count(self) -> int:
        return self._retry_count

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """
        Register a listener.

        Args:
            event: One of started, stopped, sync_started, sync_completed, sync_error
            callback: Called with the event's arguments

        Raises:
            ValueError: If the event name is unknown
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown sync queue event: {event}")
        self._listeners[event].append(callback)

    def _emit(self, event: str, *args: Any) -> None:
        for callback in self._listeners[event]:
            try:
                callback(*args)
            except Exception as e:
                logger.warning(f"Sync queue listener for {event} failed: {e}")

    def start(self) -> None:
        """Start accepting triggers and the periodic timer. Needs a running loop."""
        if self._running:
            return
        self._running = True
        self._stopped = False
        if self.interval_seconds > 0:
            self._timer_task = asyncio.create_task(self._interval_loop())
        self._emit("started")
        logger.info("Sync queue started")

    async def stop(self) -> None:
        """
        Stop the queue.

        Pending debounce, timer and retry are cancelled; a sync already in
        flight runs to completion before this returns. No new sync starts
        afterwards, not even through ``sync_now``, until ``start`` is called.
        """
        self._stopped = True
        if not self._running:
            return
        self._running = False
        self._dirty = False

        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        for task in (self._timer_task, self._retry_task):
            if task is not None and not task.done():
                task.cancel()
        self._timer_task = None
        self._retry_task = None

        if self.is_syncing:
            await self._current

        self._emit("stopped")
        logger.info("Sync queue stopped")

    def queue_sync(self) -> None:
        """Request a sync after the debounce delay; repeated calls coalesce."""
        if not self._running:
            return
        if self._debounce is not None:
            self._debounce.cancel()
        loop = asyncio.get_running_loop()
        self._debounce = loop.call_later(self.debounce_seconds, self._trigger)

    async def sync_now(self) -> SyncResult:
        """
        Sync immediately, skipping the debounce.

        If a sync is already running, its result is returned and a follow-up
        sync is scheduled. A stopped queue starts nothing and returns the last
        result.

        Returns:
            SyncResult
        """
        if self._stopped:
            logger.debug("Sync queue stopped, sync request ignored")
            return self.last_result or SyncResult()
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        if self.is_syncing:
            self._dirty = True
            return await self._current
        self._current = asyncio.create_task(self._perform_sync())
        return await self._current

    def on_commit_changed(self, commit_id: str) -> None:
        if self.continuous:
            logger.debug(f"Commit {commit_id[:8]} changed, queueing sync")
            self.queue_sync()

    async def on_visual_captured(self, commit_id: str, visual_id: str) -> None:
        """Upload a newly captured visual; failures are logged, not raised."""
        if not self.continuous or not self.client.is_configured:
            return
        try:
            result = await push_visuals(self.store, self.client, commit_id)
        except NotAuthenticatedError:
            logger.debug("Not authenticated, visual upload skipped")
            return
        except Exception as e:
            logger.warning(f"Failed to sync visual {visual_id[:8]}: {e}")
            return
        for error in result.errors:
            logger.warning(f"Visual sync for {commit_id[:8]}: {error}")

    def get_state(self) -> SyncState:
        return get_sync_status(self.store, self.client, is_syncing=self.is_syncing)

    def _trigger(self) -> None:
        self._debounce = None
        if not self._running:
            return
        if self.is_syncing:
            self._dirty = True
            return
        self._current = asyncio.create_task(self._perform_sync())

    async def _interval_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            if self._running:
                self._trigger()

    async def _retry_later(self) -> None:
        await asyncio.sleep(self.retry_interval_seconds)
        self._retry_task = None
        if self._running:
            self._trigger()

    async def _perform_sync(self) -> SyncResult:
        self._emit("sync_started")
        try:
            result = await self._sync_fn(self.store, self.client, verbose=self.verbose)
        except Exception as e:
            result = SyncResult(errors=[str(e)])
            self.last_result = result
            self._emit("sync_error", e)
            self._schedule_retry(e)
        else:
            if not result.errors:
                self._retry_count = 0
            self.last_result = result
            self._emit("sync_completed", result)

        if self._dirty and self._running:
            self._dirty = False
            asyncio.get_running_loop().call_soon(self._trigger)
        return result

    def _schedule_retry(self, error: Exception) -> None:
        if isinstance(error, NotAuthenticatedError):
            logger.warning(f"Sync skipped: {error}")
            return
        self._retry_count += 1
        if self._retry_count >= self.max_retries or not self._running:
            logger.error(f"Sync failed ({self._retry_count} attempts): {error}")
            return
        logger.warning(
            f"Sync failed, retrying in {self.retry_interval_seconds:.0f}s "
            f"(attempt {self._retry_count}/{self.max_retries}): {error}"
        )
        self._retry_task = asyncio.create_task(self._retry_later())
