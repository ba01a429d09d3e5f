"""
Review log: one record per graded card, plus aggregate learner stats.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .local_cache import load_json_list
from .models import ItemType, now_ms
from .scheduler import is_passing
from .storage import KeyValueStorage

REVIEW_LOG_KEY = "hanzi_review_log_v1"


@dataclass(frozen=True)
class ReviewLogEntry:
    """A single graded card."""

    user_id: str
    item_id: str
    item_type: ItemType
    grade: int
    timestamp: int

    @property
    def correct(self) -> bool:
        return is_passing(self.grade)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "itemId": self.item_id,
            "itemType": self.item_type.value,
            "grade": self.grade,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewLogEntry:
        return cls(
            user_id=str(data["userId"]),
            item_id=str(data["itemId"]),
            item_type=ItemType(data["itemType"]),
            grade=int(data["grade"]),
            timestamp=int(data["timestamp"]),
        )


@dataclass(frozen=True)
class UserStats:
    total_reviews: int
    correct: int
    incorrect: int
    accuracy: float  # Percent, one decimal


class ReviewLog:
    """Bounded, locally persisted log of graded cards."""

    def __init__(self, storage: KeyValueStorage, max_entries: int = 5000):
        self.storage = storage
        self.max_entries = max_entries

    def record(self, user_id: str, item_type: ItemType, item_id: str, grade: int, timestamp: int | None = None) -> ReviewLogEntry:
        entry = ReviewLogEntry(
            user_id=user_id,
            item_id=item_id,
            item_type=ItemType(item_type),
            grade=grade,
            timestamp=now_ms() if timestamp is None else timestamp,
        )
        entries = self.entries()
        entries.append(entry)
        entries = entries[-self.max_entries :]
        self.storage.set(REVIEW_LOG_KEY, json.dumps([e.to_dict() for e in entries]))
        return entry

    def entries(self, user_id: str | None = None) -> list[ReviewLogEntry]:
        entries = load_json_list(self.storage, REVIEW_LOG_KEY, ReviewLogEntry.from_dict)
        if user_id is None:
            return entries
        return [e for e in entries if e.user_id == user_id]

    def recent(self, user_id: str, limit: int = 20) -> list[ReviewLogEntry]:
        """Most recent entries first."""
        return sorted(self.entries(user_id), key=lambda e: e.timestamp, reverse=True)[:limit]

    def stats(self, user_id: str) -> UserStats:
        entries = self.entries(user_id)
        total = len(entries)
        correct = sum(1 for e in entries if e.correct)
        accuracy = round(correct / total * 100, 1) if total else 0.0
        return UserStats(
            total_reviews=total,
            correct=correct,
            incorrect=total - correct,
            accuracy=accuracy,
        )
