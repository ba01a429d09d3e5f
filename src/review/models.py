"""
Review Data Model.

Records shared by the scheduler, the review item store, the local cache
and the offline sync queue:

- LearnableItem: immutable content unit (sentence, grammar point, character)
- ReviewState: per (user, item) scheduling record
- PendingReviewAction: a grade recorded while the store was unreachable

Persisted JSON uses camelCase keys so snapshots stay readable by the
record store that owns the canonical copy.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MS_PER_DAY = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# Enumerations
# =============================================================================


class ItemType(str, Enum):
    """Kind of learnable item referenced by a review record."""

    SENTENCE = "sentence"
    GRAMMAR = "grammar"
    CHARACTER = "character"


class ReviewStatus(str, Enum):
    """Lifecycle status of a review record."""

    NEW = "new"
    LEARNING = "learning"  # Most recent grade failed
    REVIEW = "review"
    MASTERED = "mastered"  # Interval beyond the long horizon


# Default tie-break for due items sharing a timestamp: struggling items first
DEFAULT_STATUS_PRIORITY: tuple[ReviewStatus, ...] = (
    ReviewStatus.LEARNING,
    ReviewStatus.REVIEW,
    ReviewStatus.NEW,
    ReviewStatus.MASTERED,
)


# =============================================================================
# Content
# =============================================================================


@dataclass(frozen=True)
class LearnableItem:
    """
    A unit of study content produced by the content-generation pipeline.

    The payload is language-specific display data (hanzi, pinyin,
    translation, ...). The scheduling core never looks inside it.
    """

    id: str
    type: ItemType
    payload: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def key(self) -> tuple[ItemType, str]:
        return (self.type, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type.value, "payload": dict(self.payload)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LearnableItem:
        return cls(
            id=str(data["id"]),
            type=ItemType(data["type"]),
            payload=dict(data.get("payload") or {}),
        )


# =============================================================================
# Scheduling State
# =============================================================================


@dataclass(frozen=True)
class HistoryEntry:
    """One grading event in a record's audit trail."""

    timestamp: int
    grade: int

    def to_dict(self) -> dict[str, int]:
        return {"date": self.timestamp, "grade": self.grade}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(timestamp=int(data["date"]), grade=int(data["grade"]))


@dataclass
class ReviewState:
    """
    Scheduling record for one (user, item) pair.

    Attributes:
        item_id: Id of the referenced LearnableItem
        item_type: Type tag of the referenced item
        interval: Days until the next review (0 = never passed)
        ease_factor: SM-2 multiplier, never below 1.3
        next_review: Epoch ms at or after which the item is due
        status: Lifecycle status
        last_review: Epoch ms of the most recent grading
        history: Append-only (timestamp, grade) trail
        record_id: Store-assigned identity, preserved across updates
        user_id: Owner of the record
    """

    item_id: str
    item_type: ItemType
    interval: int = 0
    ease_factor: float = 2.5
    next_review: int = 0
    status: ReviewStatus = ReviewStatus.NEW
    last_review: int | None = None
    history: list[HistoryEntry] = field(default_factory=list)
    record_id: str | None = None
    user_id: str | None = None

    @property
    def key(self) -> tuple[ItemType, str]:
        return (self.item_type, self.item_id)

    def is_due(self, as_of: int) -> bool:
        """Check if this record is due at the given epoch ms."""
        return self.next_review <= as_of

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "itemId": self.item_id,
            "itemType": self.item_type.value,
            "interval": self.interval,
            "easeFactor": self.ease_factor,
            "nextReview": self.next_review,
            "status": self.status.value,
            "history": [entry.to_dict() for entry in self.history],
        }
        if self.last_review is not None:
            data["lastReview"] = self.last_review
        if self.record_id is not None:
            data["recordId"] = self.record_id
        if self.user_id is not None:
            data["userId"] = self.user_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewState:
        last_review = data.get("lastReview")
        record_id = data.get("recordId")
        return cls(
            item_id=str(data["itemId"]),
            item_type=ItemType(data["itemType"]),
            interval=int(data.get("interval", 0)),
            ease_factor=float(data.get("easeFactor", 2.5)),
            next_review=int(data.get("nextReview", 0)),
            status=ReviewStatus(data.get("status", ReviewStatus.NEW.value)),
            last_review=int(last_review) if last_review is not None else None,
            history=[HistoryEntry.from_dict(h) for h in data.get("history") or []],
            record_id=str(record_id) if record_id is not None else None,
            user_id=data.get("userId"),
        )


def merge_history(existing: list[HistoryEntry], incoming: list[HistoryEntry]) -> list[HistoryEntry]:
    """
    Append incoming entries that are not already present.

    Replaying the same upsert twice must not duplicate audit entries, so
    entries are matched on (timestamp, grade).
    """
    seen = set(existing)
    merged = list(existing)
    for entry in incoming:
        if entry not in seen:
            merged.append(entry)
            seen.add(entry)
    return merged


def order_due(
    states: list[ReviewState],
    priority: tuple[ReviewStatus, ...] = DEFAULT_STATUS_PRIORITY,
) -> list[ReviewState]:
    """Sort due records: most overdue first, then by status priority."""
    rank = {status: i for i, status in enumerate(priority)}
    fallback = len(rank)
    return sorted(states, key=lambda s: (s.next_review, rank.get(s.status, fallback)))


def parse_status_priority(value: str) -> tuple[ReviewStatus, ...]:
    """Parse a comma-separated status list (e.g. "learning,review,new")."""
    statuses = tuple(ReviewStatus(part.strip()) for part in value.split(",") if part.strip())
    if not statuses:
        return DEFAULT_STATUS_PRIORITY
    return statuses


# =============================================================================
# Store Results
# =============================================================================


@dataclass(frozen=True)
class SchedulingResult:
    """Output of one scheduler step."""

    interval: int
    next_review: int
    ease_factor: float
    status: ReviewStatus


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of a store upsert."""

    action: str  # "created" | "updated"
    id: str

    @property
    def created(self) -> bool:
        return self.action == "created"


# =============================================================================
# Offline Actions
# =============================================================================


@dataclass
class PendingReviewAction:
    """
    A grading event captured while the review store was unreachable.

    The state snapshot computed at grading time travels with the action,
    so replaying it is an idempotent upsert of a fixed value.
    """

    user_id: str
    item_id: str
    item_type: ItemType
    grade: int
    state: ReviewState
    id: str | None = None
    timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "itemId": self.item_id,
            "itemType": self.item_type.value,
            "grade": self.grade,
            "timestamp": self.timestamp,
            "state": self.state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingReviewAction:
        return cls(
            id=data["id"],
            user_id=str(data["userId"]),
            item_id=str(data["itemId"]),
            item_type=ItemType(data["itemType"]),
            grade=int(data["grade"]),
            timestamp=int(data["timestamp"]),
            state=ReviewState.from_dict(data["state"]),
        )
