"""
Review Item Store boundary.

The durable record of per-item scheduling state, keyed by
(user_id, item_type, item_id). Every write is an upsert, so exactly one
record exists per key and replaying a write is safe.

Implementations:
- InMemoryReviewItemStore: dict-backed, with a connectivity switch
- SqlReviewItemStore: SQLAlchemy table (sql_store.py)
- RemoteReviewItemStore: HTTP record-store client (remote_store.py)
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import replace

from loguru import logger

from .models import (
    DEFAULT_STATUS_PRIORITY,
    ItemType,
    ReviewState,
    ReviewStatus,
    UpsertResult,
    merge_history,
    now_ms,
    order_due,
)


class StoreUnavailableError(Exception):
    """Raised when the review store cannot be reached (network, timeout)."""


class ReviewItemStore(ABC):
    """Async interface of the persistent review store."""

    status_priority: tuple[ReviewStatus, ...] = DEFAULT_STATUS_PRIORITY

    @abstractmethod
    async def upsert(
        self,
        user_id: str,
        item_type: ItemType,
        item_id: str,
        state: ReviewState,
    ) -> UpsertResult:
        """
        Create or patch the record for a key.

        A missing record is inserted with ``last_review`` stamped; an
        existing one has interval, ease factor, status, next review and
        last review patched in place, keeping its id.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """

    @abstractmethod
    async def get_due(
        self,
        user_id: str,
        as_of: int,
        limit: int | None = None,
    ) -> list[ReviewState]:
        """
        Records with ``next_review <= as_of``, most overdue first.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """

    @abstractmethod
    async def get_state(
        self,
        user_id: str,
        item_type: ItemType,
        item_id: str,
    ) -> ReviewState | None:
        """Record for a key, or None."""

    @abstractmethod
    async def list_states(self, user_id: str) -> list[ReviewState]:
        """Every record owned by a user."""

    async def close(self) -> None:
        """Release connections held by the store."""


class InMemoryReviewItemStore(ReviewItemStore):
    """
    Dict-backed review store.

    Setting ``online = False`` makes every call raise StoreUnavailableError,
    which is how offline behaviour is exercised locally.
    """

    def __init__(self, status_priority: tuple[ReviewStatus, ...] | None = None):
        self.status_priority = status_priority or DEFAULT_STATUS_PRIORITY
        self.online = True
        self._records: dict[tuple[str, ItemType, str], ReviewState] = {}
        self.write_count = 0

    def _check_online(self) -> None:
        if not self.online:
            raise StoreUnavailableError("Review store is offline")

    async def upsert(
        self,
        user_id: str,
        item_type: ItemType,
        item_id: str,
        state: ReviewState,
    ) -> UpsertResult:
        self._check_online()
        key = (user_id, ItemType(item_type), item_id)
        existing = self._records.get(key)
        last_review = state.last_review if state.last_review is not None else now_ms()
        self.write_count += 1

        if existing is not None:
            self._records[key] = replace(
                existing,
                interval=state.interval,
                ease_factor=state.ease_factor,
                status=state.status,
                next_review=state.next_review,
                last_review=last_review,
                history=merge_history(existing.history, state.history),
            )
            logger.debug(f"Updated review record {existing.record_id} for {item_type}:{item_id}")
            return UpsertResult(action="updated", id=existing.record_id)

        record_id = uuid.uuid4().hex
        self._records[key] = replace(
            state,
            item_id=item_id,
            item_type=ItemType(item_type),
            last_review=last_review,
            history=list(state.history),
            record_id=record_id,
            user_id=user_id,
        )
        logger.debug(f"Created review record {record_id} for {item_type}:{item_id}")
        return UpsertResult(action="created", id=record_id)

    async def get_due(
        self,
        user_id: str,
        as_of: int,
        limit: int | None = None,
    ) -> list[ReviewState]:
        self._check_online()
        due = [
            replace(state, history=list(state.history))
            for (owner, _, _), state in self._records.items()
            if owner == user_id and state.is_due(as_of)
        ]
        due = order_due(due, self.status_priority)
        return due[:limit] if limit is not None else due

    async def get_state(
        self,
        user_id: str,
        item_type: ItemType,
        item_id: str,
    ) -> ReviewState | None:
        self._check_online()
        state = self._records.get((user_id, ItemType(item_type), item_id))
        return replace(state, history=list(state.history)) if state else None

    async def list_states(self, user_id: str) -> list[ReviewState]:
        self._check_online()
        return [
            replace(state, history=list(state.history))
            for (owner, _, _), state in self._records.items()
            if owner == user_id
        ]

    def __len__(self) -> int:
        return len(self._records)
