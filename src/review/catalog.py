"""
Item catalog: the content-generation boundary.

Learnable items arrive as an opaque stream of {id, type, payload} records.
The catalog indexes them by (type, id) for the session builder, and
enrollment gives each unseen item its initial "new" review record.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .local_cache import LocalCache
from .models import ItemType, LearnableItem, now_ms
from .scheduler import SM2Scheduler
from .store import ReviewItemStore


@dataclass(frozen=True)
class EnrollmentResult:
    created: int
    existing: int


class ItemCatalog:
    """In-memory index of learnable items."""

    def __init__(self, items: Iterable[LearnableItem] = ()):
        self._items: dict[tuple[ItemType, str], LearnableItem] = {}
        self.register(items)

    def register(self, items: Iterable[LearnableItem]) -> int:
        """Add or replace items; returns how many were given."""
        count = 0
        for item in items:
            self._items[item.key] = item
            count += 1
        return count

    def get(self, item_type: ItemType, item_id: str) -> LearnableItem | None:
        return self._items.get((ItemType(item_type), item_id))

    def __iter__(self) -> Iterator[LearnableItem]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    @classmethod
    def from_cache(cls, cache: LocalCache) -> ItemCatalog:
        return cls(cache.load_items())

    @classmethod
    def from_json_file(cls, path: Path) -> ItemCatalog:
        """
        Load items from a JSON file produced by the content pipeline.

        Accepts either a list of items or {"items": [...]}.
        """
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("items", [])
        return cls(LearnableItem.from_dict(entry) for entry in data)


async def enroll(
    user_id: str,
    items: Iterable[LearnableItem],
    store: ReviewItemStore,
    scheduler: SM2Scheduler | None = None,
    now: int | None = None,
) -> EnrollmentResult:
    """
    Create the initial review record for every item the user has not seen.

    Items that already have a record keep their scheduling progress.

    Raises:
        StoreUnavailableError: If the store cannot be reached
    """
    scheduler = scheduler or SM2Scheduler()
    reference = now_ms() if now is None else now
    created = existing = 0

    for item in items:
        if await store.get_state(user_id, item.type, item.id) is not None:
            existing += 1
            continue
        state = scheduler.initial_state(item.id, item.type, now=reference, user_id=user_id)
        await store.upsert(user_id, item.type, item.id, state)
        created += 1

    logger.info(f"Enrolled {created} new item(s) for {user_id} ({existing} already tracked)")
    return EnrollmentResult(created=created, existing=existing)
