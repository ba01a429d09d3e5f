"""
Offline Sync Queue.

Buffers grading actions taken while the review store is unreachable and
replays them, oldest first, once it is back. An action leaves the queue
only after the store has confirmed its write, so delivery is
at-least-once; the store's upsert is keyed by (user, type, item) and the
action carries a fixed state snapshot, which makes a repeat harmless.

Only one flush runs at a time: a flush requested while another is in
progress waits for that one and shares its result.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass

from loguru import logger

from .local_cache import STORAGE_KEYS, LocalCache
from .models import PendingReviewAction, now_ms
from .storage import KeyValueStorage, StorageError
from .store import ReviewItemStore, StoreUnavailableError


class SyncQueueWriteError(Exception):
    """Raised when a pending action cannot be durably recorded."""


@dataclass(frozen=True)
class FlushResult:
    """Outcome of one flush attempt."""

    succeeded: int
    remaining: int
    error: str | None = None  # Set when a replay was rejected, not just unreachable

    @property
    def complete(self) -> bool:
        return self.remaining == 0


class OfflineSyncQueue:
    """Persisted FIFO of grading actions awaiting replay."""

    def __init__(
        self,
        storage: KeyValueStorage,
        store: ReviewItemStore,
        cache: LocalCache | None = None,
        timeout: float | None = None,
        key: str = STORAGE_KEYS["pending_sync"],
    ):
        """
        Initialize the queue.

        Args:
            storage: Durable local storage holding the pending list
            store: Review store the actions are replayed against
            cache: Local cache that records the last successful sync time
            timeout: Seconds per replayed upsert before giving up
            key: Storage key of the pending list
        """
        self.storage = storage
        self.store = store
        self.cache = cache
        self.timeout = timeout
        self.key = key
        self._inflight: asyncio.Task[FlushResult] | None = None

    # =========================================================================
    # Persistence
    # =========================================================================

    def _read(self, strict: bool = False) -> list[PendingReviewAction]:
        """
        Load the pending list.

        A storage read failure is logged and read as an empty queue, unless
        ``strict`` is set: callers that rewrite the list must not overwrite
        actions they could not see.
        """
        try:
            raw = self.storage.get(self.key)
        except StorageError as exc:
            if strict:
                raise
            logger.warning(f"Pending sync queue could not be read, treating as empty: {exc}")
            return []
        if not raw:
            return []
        try:
            return [PendingReviewAction.from_dict(entry) for entry in json.loads(raw)]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Pending sync queue unreadable, treating as empty: {exc}")
            return []

    def _write(self, actions: list[PendingReviewAction]) -> None:
        if actions:
            self.storage.set(self.key, json.dumps([a.to_dict() for a in actions]))
        else:
            self.storage.remove(self.key)

    # =========================================================================
    # Public API
    # =========================================================================

    def enqueue(self, action: PendingReviewAction) -> PendingReviewAction:
        """
        Append a grading action to the durable queue.

        Assigns an id and timestamp when the action has none.

        Raises:
            SyncQueueWriteError: If the action could not be persisted
        """
        if action.id is None:
            action.id = uuid.uuid4().hex
        if action.timestamp is None:
            action.timestamp = now_ms()

        try:
            pending = self._read(strict=True)
            pending.append(action)
            self._write(pending)
        except StorageError as exc:
            raise SyncQueueWriteError(f"Could not queue review for {action.item_id}: {exc}") from exc

        logger.debug(f"Queued review for {action.item_type.value}:{action.item_id} ({len(pending)} pending)")
        return action

    def list_pending(self) -> list[PendingReviewAction]:
        """Queued actions in replay order."""
        return self._read()

    def __len__(self) -> int:
        return len(self._read())

    async def flush(self) -> FlushResult:
        """
        Replay queued actions against the store in FIFO order.

        Stops at the first failure, leaving that action and everything
        after it queued for the next attempt. An unreachable store is the
        expected failure; any other replay error is reported through
        ``FlushResult.error`` rather than raised.

        Returns:
            FlushResult with succeeded and remaining counts
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Flush already in progress - awaiting it")
            return await asyncio.shield(self._inflight)

        self._inflight = asyncio.ensure_future(self._flush())
        return await asyncio.shield(self._inflight)

    async def _flush(self) -> FlushResult:
        pending = self._read()
        if not pending:
            return FlushResult(succeeded=0, remaining=0)

        succeeded = 0
        error: str | None = None
        for action in pending:
            try:
                await self._replay(action)
            except StoreUnavailableError as exc:
                logger.info(f"Sync paused after {succeeded} action(s): {exc}")
                break
            except Exception as exc:
                error = f"Replay of {action.item_type.value}:{action.item_id} rejected: {exc}"
                logger.warning(error)
                break

            try:
                self._remove(action.id)
            except StorageError as exc:
                # Delivered but still queued; the next flush repeats it harmlessly
                error = f"Could not dequeue {action.item_id}: {exc}"
                logger.warning(error)
                break
            succeeded += 1

        remaining = len(self._read())
        if succeeded and self.cache is not None:
            try:
                self.cache.set_last_sync_time(now_ms())
            except StorageError as exc:
                logger.warning(f"Could not record last sync time: {exc}")

        logger.info(f"Sync flush: {succeeded} replayed, {remaining} remaining")
        return FlushResult(succeeded=succeeded, remaining=remaining, error=error)

    async def _replay(self, action: PendingReviewAction) -> None:
        upsert = self.store.upsert(action.user_id, action.item_type, action.item_id, action.state)
        if self.timeout is None:
            await upsert
            return
        try:
            await asyncio.wait_for(upsert, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(f"Replay timed out after {self.timeout}s") from exc

    def _remove(self, action_id: str | None) -> None:
        # Re-read so actions queued during the flush are kept
        self._write([a for a in self._read(strict=True) if a.id != action_id])
