"""
Background sync manager.

Flushes the offline sync queue while the app is running:
- periodically, every ``interval_seconds``
- immediately when ``notify_reconnect()`` signals restored connectivity

Runs as an asyncio task on the caller's event loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from loguru import logger

from .sync_queue import FlushResult, OfflineSyncQueue


@dataclass
class SyncStatus:
    """Current sync status."""

    is_running: bool = False
    is_syncing: bool = False
    last_sync_at: datetime | None = None
    last_sync_success: bool = True
    last_succeeded: int = 0
    pending: int = 0
    error_message: str | None = None
    total_syncs: int = 0


@dataclass
class BackgroundSync:
    """
    Background flush loop for the offline sync queue.

    Usage:
        sync = BackgroundSync(queue, interval_seconds=60)
        sync.start()
        # ... session runs ...
        sync.notify_reconnect()
        await sync.stop()
    """

    queue: OfflineSyncQueue
    interval_seconds: float = 60.0
    on_sync_complete: Callable[[SyncStatus], None] | None = None

    # Internal state
    _status: SyncStatus = field(default_factory=SyncStatus)
    _task: asyncio.Task | None = field(default=None, repr=False)
    _wake: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _stopping: bool = field(default=False, repr=False)

    @property
    def status(self) -> SyncStatus:
        return self._status

    def start(self) -> None:
        """Start the loop on the running event loop."""
        if self._status.is_running:
            logger.warning("Background sync already running")
            return

        self._stopping = False
        self._wake.clear()
        self._task = asyncio.get_running_loop().create_task(self._sync_loop(), name="review-background-sync")
        self._status.is_running = True
        logger.info("Background sync started (interval: {}s)", self.interval_seconds)

    async def stop(self) -> None:
        """Stop the loop, letting an in-progress flush finish."""
        if not self._status.is_running:
            return

        logger.info("Stopping background sync...")
        self._stopping = True
        self._wake.set()
        if self._task is not None:
            await self._task
            self._task = None
        self._status.is_running = False
        logger.info("Background sync stopped")

    def notify_reconnect(self) -> None:
        """Connectivity is back: flush without waiting for the interval."""
        self._wake.set()

    async def sync_now(self) -> FlushResult:
        """Trigger an immediate flush and wait for it."""
        return await self._do_sync()

    async def _sync_loop(self) -> None:
        while not self._stopping:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
            if self._stopping:
                break
            try:
                await self._do_sync()
            except Exception:
                continue  # Logged in _do_sync; the queue keeps its actions

    async def _do_sync(self) -> FlushResult:
        self._status.is_syncing = True
        try:
            result = await self.queue.flush()
        except Exception as exc:
            logger.error("Background sync error: {}", exc)
            self._status.last_sync_success = False
            self._status.error_message = str(exc)
            raise
        finally:
            self._status.is_syncing = False

        self._status.last_sync_at = datetime.now()
        self._status.last_succeeded = result.succeeded
        self._status.pending = result.remaining
        self._status.last_sync_success = result.complete and result.error is None
        if result.error:
            self._status.error_message = result.error
        elif not result.complete:
            self._status.error_message = f"{result.remaining} action(s) still pending"
        else:
            self._status.error_message = None
        self._status.total_syncs += 1

        if result.succeeded or result.remaining:
            logger.info("Background sync: replayed={}, pending={}", result.succeeded, result.remaining)

        if self.on_sync_complete:
            try:
                self.on_sync_complete(self._status)
            except Exception as exc:
                logger.warning("Sync callback failed: {}", exc)

        return result

    def get_status_line(self) -> str:
        """One-line status for display."""
        if not self._status.is_running:
            return "Sync: stopped"
        if self._status.is_syncing:
            return "Sync: syncing..."
        if self._status.pending:
            return f"Sync: {self._status.pending} pending"
        if self._status.last_sync_at is None:
            return "Sync: idle"
        return f"Sync: up to date ({self._status.last_sync_at:%H:%M})"
