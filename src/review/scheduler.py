"""
SM-2 Spaced Repetition Scheduler.

Computes the next review state of an item from a 0-5 grade and its
previous interval and ease factor. Pure: no I/O, and deterministic when
``now`` is supplied.

SM-2 Grade Scale:
0 - Complete blackout
1 - Incorrect, but the answer was remembered once shown
2 - Incorrect, but the answer seemed easy to recall
3 - Correct, recalled with serious difficulty
4 - Correct, after some hesitation
5 - Correct, perfect recall
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any

from .models import (
    MS_PER_DAY,
    HistoryEntry,
    ItemType,
    ReviewState,
    ReviewStatus,
    SchedulingResult,
    now_ms,
)

MIN_GRADE = 0
MAX_GRADE = 5
PASSING_GRADE = 3


class InvalidGradeError(ValueError):
    """Raised when a grade is not an integer in [0, 5]."""


class InvalidStateError(ValueError):
    """Raised when the previous scheduling state is malformed."""


class GradeButton(IntEnum):
    """Answer buttons offered to the learner, mapped onto the SM-2 scale."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 5


def is_passing(grade: int) -> bool:
    """Whether a grade counts as a successful recall."""
    return grade >= PASSING_GRADE


def validate_grade(grade: Any) -> int:
    """
    Check that a grade is an integer in [0, 5].

    Grades are never clamped: an out-of-range value means the caller has
    mixed up grade scales.

    Raises:
        InvalidGradeError: On a non-integer or out-of-range grade
    """
    if isinstance(grade, bool) or not isinstance(grade, int):
        raise InvalidGradeError(f"Grade must be an integer in [0, 5], got {grade!r}")
    if grade < MIN_GRADE or grade > MAX_GRADE:
        raise InvalidGradeError(f"Grade must be in [0, 5], got {grade}")
    return int(grade)


# =============================================================================
# SM-2 Algorithm
# =============================================================================


@dataclass
class SM2Config:
    """Configuration for the SM-2 algorithm."""

    initial_easiness: float = 2.5
    minimum_easiness: float = 1.3
    maximum_easiness: float | None = None  # SM-2 has no ceiling
    first_interval: int = 1  # Days after the first success
    second_interval: int = 6  # Days after the second success
    failed_interval: int = 1
    mastered_interval: int = 180  # Intervals beyond this are "mastered"


class SM2Scheduler:
    """
    Implements the SM-2 spaced repetition algorithm.

    Each record carries:
    - Ease Factor (EF): growth multiplier (2.5 default, min 1.3)
    - Interval: days until the next review (0 until the first success)
    """

    def __init__(self, config: SM2Config | None = None):
        """
        Initialize SM-2 scheduler.

        Args:
            config: Custom configuration (uses defaults if None)
        """
        self.config = config or SM2Config()

    def compute_next_state(
        self,
        grade: int,
        previous: ReviewState | Mapping[str, Any],
        now: int | None = None,
    ) -> SchedulingResult:
        """
        Calculate the next scheduling state for a grade.

        Args:
            grade: SM-2 grade (0-5)
            previous: Prior state; a ReviewState or a mapping with
                ``interval`` and ``easeFactor``
            now: Reference time in epoch ms (defaults to the current time)

        Returns:
            SchedulingResult with interval, next_review, ease_factor, status

        Raises:
            InvalidGradeError: If grade is outside [0, 5]
            InvalidStateError: If the previous interval is negative or the
                previous ease factor is below the floor
        """
        grade = validate_grade(grade)
        prev_interval, prev_ease = self._read_previous(previous)

        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
        ef_delta = 0.1 - (5 - grade) * (0.08 + (5 - grade) * 0.02)
        new_ef = max(self.config.minimum_easiness, prev_ease + ef_delta)
        if self.config.maximum_easiness is not None:
            new_ef = min(self.config.maximum_easiness, new_ef)

        if not is_passing(grade):
            new_interval = self.config.failed_interval
            status = ReviewStatus.LEARNING
        else:
            if prev_interval == 0:
                new_interval = self.config.first_interval
            elif prev_interval == 1:
                new_interval = self.config.second_interval
            else:
                # Round away float noise (6 * 2.36 == 14.159999...) before ceil
                new_interval = math.ceil(round(prev_interval * new_ef, 9))

            if new_interval > self.config.mastered_interval:
                status = ReviewStatus.MASTERED
            else:
                status = ReviewStatus.REVIEW

        reference = now_ms() if now is None else now

        return SchedulingResult(
            interval=new_interval,
            next_review=reference + new_interval * MS_PER_DAY,
            ease_factor=round(new_ef, 2),
            status=status,
        )

    def initial_state(
        self,
        item_id: str,
        item_type: ItemType,
        now: int | None = None,
        user_id: str | None = None,
    ) -> ReviewState:
        """Default state for a brand-new item: due immediately."""
        return ReviewState(
            item_id=item_id,
            item_type=item_type,
            interval=0,
            ease_factor=self.config.initial_easiness,
            next_review=now_ms() if now is None else now,
            status=ReviewStatus.NEW,
            user_id=user_id,
        )

    def apply(
        self,
        grade: int,
        state: ReviewState,
        now: int | None = None,
    ) -> ReviewState:
        """
        Grade a record and return its successor.

        The successor keeps the record's key and identity, stamps
        ``last_review`` and appends the grade to the history.
        """
        reference = now_ms() if now is None else now
        result = self.compute_next_state(grade, state, now=reference)
        return replace(
            state,
            interval=result.interval,
            ease_factor=result.ease_factor,
            next_review=result.next_review,
            status=result.status,
            last_review=reference,
            history=[*state.history, HistoryEntry(timestamp=reference, grade=grade)],
        )

    def _read_previous(self, previous: ReviewState | Mapping[str, Any]) -> tuple[int, float]:
        if isinstance(previous, Mapping):
            interval = previous.get("interval", 0)
            ease = previous.get("easeFactor", previous.get("ease_factor", self.config.initial_easiness))
        else:
            interval = previous.interval
            ease = previous.ease_factor

        if isinstance(interval, bool) or not isinstance(interval, int):
            raise InvalidStateError(f"Interval must be an integer number of days, got {interval!r}")
        if interval < 0:
            raise InvalidStateError(f"Interval cannot be negative, got {interval}")
        ease = float(ease)
        if ease < self.config.minimum_easiness:
            raise InvalidStateError(
                f"Ease factor {ease} is below the minimum {self.config.minimum_easiness}"
            )
        return interval, ease


_default_scheduler = SM2Scheduler()


def compute_next_state(
    grade: int,
    previous: ReviewState | Mapping[str, Any],
    now: int | None = None,
) -> SchedulingResult:
    """Run one SM-2 step with the default configuration."""
    return _default_scheduler.compute_next_state(grade, previous, now=now)
