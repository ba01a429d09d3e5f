"""
Local Cache for offline review.

Keeps the last known review deck and learnable items in local storage so
a session can still be built when the review store is unreachable. The
snapshot is best-effort: it may be stale, and unreadable data is treated
as an empty cache rather than an error.
"""

from __future__ import annotations

import json
from typing import Any, Callable, TypeVar

from loguru import logger

from .models import (
    DEFAULT_STATUS_PRIORITY,
    LearnableItem,
    ReviewState,
    ReviewStatus,
    order_due,
)
from .storage import KeyValueStorage, StorageError

T = TypeVar("T")

STORAGE_KEYS = {
    "items": "hanzi_review_items_v1",
    "review_deck": "hanzi_review_deck_v1",
    "pending_sync": "hanzi_review_pending_sync_v1",
    "last_sync": "hanzi_review_last_sync_timestamp",
}


def load_json_list(
    storage: KeyValueStorage,
    key: str,
    parse: Callable[[dict[str, Any]], T],
) -> list[T]:
    """
    Read a JSON array of records from storage.

    Missing, unreadable or malformed data yields an empty list.
    """
    try:
        raw = storage.get(key)
    except StorageError as exc:
        logger.warning(f"Local storage read failed for {key}: {exc}")
        return []
    if not raw:
        return []
    try:
        return [parse(entry) for entry in json.loads(raw)]
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        logger.warning(f"Discarding corrupt cache entry {key}: {exc}")
        return []


class LocalCache:
    """Read-through snapshot of review state and items."""

    def __init__(
        self,
        storage: KeyValueStorage,
        status_priority: tuple[ReviewStatus, ...] | None = None,
    ):
        self.storage = storage
        self.status_priority = status_priority or DEFAULT_STATUS_PRIORITY

    # =========================================================================
    # Review Deck
    # =========================================================================

    def save(self, states: list[ReviewState]) -> None:
        """Replace the cached review deck."""
        payload = json.dumps([state.to_dict() for state in states])
        self.storage.set(STORAGE_KEYS["review_deck"], payload)
        logger.debug(f"Cached {len(states)} review records")

    def load(self) -> list[ReviewState]:
        """Last cached review deck, or empty."""
        return load_json_list(self.storage, STORAGE_KEYS["review_deck"], ReviewState.from_dict)

    def apply(self, state: ReviewState) -> None:
        """Replace one record in the snapshot, adding it if absent."""
        deck = [s for s in self.load() if s.key != state.key]
        deck.append(state)
        self.save(deck)

    def due(self, as_of: int, limit: int | None = None) -> list[ReviewState]:
        """Due records from the snapshot, ordered like the store orders them."""
        due = order_due([s for s in self.load() if s.is_due(as_of)], self.status_priority)
        return due[:limit] if limit is not None else due

    # =========================================================================
    # Items
    # =========================================================================

    def save_items(self, items: list[LearnableItem]) -> None:
        """Merge items into the cached item snapshot."""
        if not items:
            return
        merged = {item.key: item for item in self.load_items()}
        merged.update({item.key: item for item in items})
        payload = json.dumps([item.to_dict() for item in merged.values()])
        self.storage.set(STORAGE_KEYS["items"], payload)
        logger.debug(f"Cached {len(items)} items ({len(merged)} total)")

    def load_items(self) -> list[LearnableItem]:
        return load_json_list(self.storage, STORAGE_KEYS["items"], LearnableItem.from_dict)

    # =========================================================================
    # Sync State
    # =========================================================================

    def set_last_sync_time(self, timestamp: int) -> None:
        self.storage.set(STORAGE_KEYS["last_sync"], str(timestamp))

    def get_last_sync_time(self) -> int | None:
        try:
            raw = self.storage.get(STORAGE_KEYS["last_sync"])
            return int(raw) if raw else None
        except (StorageError, ValueError) as exc:
            logger.warning(f"Ignoring unreadable last sync time: {exc}")
            return None
