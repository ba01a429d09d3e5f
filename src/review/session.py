"""
Review Session: the Dashboard -> Active -> Summary state machine.

A session snapshots the due records into a frozen queue, walks it one
card at a time, and commits every grade exactly once: straight to the
review store when it is reachable, otherwise into the offline sync queue
(durably, before the session moves on). The local cache receives every
new state optimistically so offline sessions stay consistent.

Phases:
    DASHBOARD --start_session()--> ACTIVE --last grade / end_session()--> SUMMARY
    SUMMARY --restart()--> DASHBOARD
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TypeVar

from loguru import logger

from .catalog import ItemCatalog
from .local_cache import LocalCache
from .models import (
    LearnableItem,
    PendingReviewAction,
    ReviewState,
    ReviewStatus,
    UpsertResult,
    now_ms,
    order_due,
)
from .review_log import ReviewLog
from .scheduler import SM2Scheduler, is_passing, validate_grade
from .storage import StorageError
from .store import ReviewItemStore, StoreUnavailableError
from .sync_queue import OfflineSyncQueue

T = TypeVar("T")

XP_PER_GRADE_POINT = 10


class SessionPhase(str, Enum):
    DASHBOARD = "dashboard"
    ACTIVE = "active"
    SUMMARY = "summary"


class SessionStateError(Exception):
    """Raised when an operation is not valid in the current phase."""


# =============================================================================
# Session Records
# =============================================================================


@dataclass(frozen=True)
class SessionCard:
    """A due record paired with its content (None if the item is unknown)."""

    state: ReviewState
    item: LearnableItem | None = None

    @property
    def key(self):
        return self.state.key


@dataclass(frozen=True)
class DashboardCounts:
    """Due items per status bucket."""

    total: int = 0
    new: int = 0
    learning: int = 0
    review: int = 0
    mastered: int = 0
    offline: bool = False

    @classmethod
    def from_states(cls, states: list[ReviewState], offline: bool = False) -> DashboardCounts:
        def count(status: ReviewStatus) -> int:
            return sum(1 for s in states if s.status == status)

        return cls(
            total=len(states),
            new=count(ReviewStatus.NEW),
            learning=count(ReviewStatus.LEARNING),
            review=count(ReviewStatus.REVIEW),
            mastered=count(ReviewStatus.MASTERED),
            offline=offline,
        )


@dataclass
class SessionStats:
    correct: int = 0
    incorrect: int = 0
    xp: int = 0
    queued_offline: int = 0

    @property
    def reviewed(self) -> int:
        return self.correct + self.incorrect

    @property
    def accuracy(self) -> float:
        """Fraction of passing grades (0.0 before any grade)."""
        return self.correct / self.reviewed if self.reviewed else 0.0


@dataclass(frozen=True)
class SessionSummary:
    correct: int
    incorrect: int
    xp: int
    reviewed: int
    total: int
    accuracy: float
    queued_offline: int
    completed: bool  # False when the learner ended early


@dataclass(frozen=True)
class GradeOutcome:
    """What happened to one grade."""

    card: SessionCard
    state: ReviewState
    queued: bool  # True if routed through the offline sync queue
    upsert: UpsertResult | None = None
    action: PendingReviewAction | None = None


# =============================================================================
# Session Controller
# =============================================================================


@dataclass
class ReviewSession:
    """
    Review session controller for one learner.

    Collaborators are injected; the session owns no global state.
    """

    user_id: str
    store: ReviewItemStore
    cache: LocalCache
    sync_queue: OfflineSyncQueue
    scheduler: SM2Scheduler = field(default_factory=SM2Scheduler)
    catalog: ItemCatalog | None = None
    review_log: ReviewLog | None = None
    limit: int | None = None
    shuffle: bool = False
    shuffle_seed: int | None = None
    store_timeout: float | None = None
    clock: Callable[[], int] = now_ms

    # Internal state
    _phase: SessionPhase = field(default=SessionPhase.DASHBOARD, init=False)
    _queue: tuple[SessionCard, ...] = field(default=(), init=False, repr=False)
    _index: int = field(default=0, init=False)
    _flipped: bool = field(default=False, init=False)
    _stats: SessionStats = field(default_factory=SessionStats, init=False)
    _completed: bool = field(default=False, init=False)
    _total: int = field(default=0, init=False)
    offline: bool = field(default=False, init=False)
    dashboard: DashboardCounts = field(default_factory=DashboardCounts, init=False)

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def queue(self) -> tuple[SessionCard, ...]:
        return self._queue

    @property
    def index(self) -> int:
        return self._index

    @property
    def is_flipped(self) -> bool:
        return self._flipped

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def remaining(self) -> int:
        return len(self._queue) - self._index

    def _require(self, phase: SessionPhase, operation: str) -> None:
        if self._phase != phase:
            raise SessionStateError(f"{operation}() requires phase {phase.value}, session is {self._phase.value}")

    # =========================================================================
    # Dashboard
    # =========================================================================

    async def load_dashboard(self, as_of: int | None = None) -> DashboardCounts:
        """Count due items per status, from the store or the cache."""
        self._require(SessionPhase.DASHBOARD, "load_dashboard")
        due = await self._fetch_due(self.clock() if as_of is None else as_of)
        self.dashboard = DashboardCounts.from_states(due, offline=self.offline)
        return self.dashboard

    async def start_session(self, as_of: int | None = None) -> bool:
        """
        Snapshot the due items into the session queue.

        Returns:
            True if the session started; False (still on the dashboard)
            when nothing is due
        """
        self._require(SessionPhase.DASHBOARD, "start_session")
        due = await self._fetch_due(self.clock() if as_of is None else as_of)
        self.dashboard = DashboardCounts.from_states(due, offline=self.offline)

        if not due:
            logger.info("Nothing due - staying on the dashboard")
            return False

        if self.limit is not None:
            due = due[: self.limit]
        cards = [SessionCard(state=state, item=self._lookup(state)) for state in due]
        if self.shuffle:
            random.Random(self.shuffle_seed).shuffle(cards)

        self._queue = tuple(cards)
        self._total = len(cards)
        self._index = 0
        self._flipped = False
        self._stats = SessionStats()
        self._completed = False
        self._phase = SessionPhase.ACTIVE

        logger.info(f"Session started: {self._total} card(s){' (offline)' if self.offline else ''}")
        return True

    # =========================================================================
    # Active
    # =========================================================================

    def current_card(self) -> SessionCard:
        self._require(SessionPhase.ACTIVE, "current_card")
        return self._queue[self._index]

    def flip(self) -> SessionCard:
        """Reveal the answer of the current card (one-way, idempotent)."""
        self._require(SessionPhase.ACTIVE, "flip")
        self._flipped = True
        return self._queue[self._index]

    async def grade(self, value: int) -> GradeOutcome:
        """
        Grade the current card and advance.

        The new state is committed to the store, or durably queued when the
        store is unreachable, before the session advances.

        Raises:
            InvalidGradeError: If value is not an integer in [0, 5]
            SyncQueueWriteError: If an offline grade could not be queued
        """
        self._require(SessionPhase.ACTIVE, "grade")
        grade = validate_grade(value)
        card = self._queue[self._index]
        now = self.clock()

        new_state = replace(self.scheduler.apply(grade, card.state, now=now), user_id=self.user_id)
        outcome = await self._commit(card, grade, new_state, now)

        self._remember(new_state, grade, now)

        if is_passing(grade):
            self._stats.correct += 1
        else:
            self._stats.incorrect += 1
        self._stats.xp += grade * XP_PER_GRADE_POINT
        if outcome.queued:
            self._stats.queued_offline += 1

        self._index += 1
        self._flipped = False
        if self._index == len(self._queue):
            self._completed = True
            self._phase = SessionPhase.SUMMARY
            logger.info(
                f"Session complete: {self._stats.correct}/{self._stats.reviewed} correct, +{self._stats.xp} XP"
            )

        return outcome

    def end_session(self) -> SessionSummary:
        """
        Stop early: discard the queue and go to the summary.

        Grades already committed or queued stay as they are.
        """
        self._require(SessionPhase.ACTIVE, "end_session")
        logger.info(f"Session ended early after {self._stats.reviewed}/{self._total} card(s)")
        self._queue = ()
        self._index = 0
        self._flipped = False
        self._phase = SessionPhase.SUMMARY
        return self.summary

    # =========================================================================
    # Summary
    # =========================================================================

    @property
    def summary(self) -> SessionSummary:
        self._require(SessionPhase.SUMMARY, "summary")
        return SessionSummary(
            correct=self._stats.correct,
            incorrect=self._stats.incorrect,
            xp=self._stats.xp,
            reviewed=self._stats.reviewed,
            total=self._total,
            accuracy=self._stats.accuracy,
            queued_offline=self._stats.queued_offline,
            completed=self._completed,
        )

    def restart(self) -> None:
        """Return to the dashboard; the old queue is not kept."""
        self._require(SessionPhase.SUMMARY, "restart")
        self._queue = ()
        self._index = 0
        self._total = 0
        self._flipped = False
        self._stats = SessionStats()
        self._completed = False
        self._phase = SessionPhase.DASHBOARD

    # =========================================================================
    # Internals
    # =========================================================================

    async def _call(self, operation: Awaitable[T]) -> T:
        if self.store_timeout is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout=self.store_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(f"Review store timed out after {self.store_timeout}s") from exc

    def _lookup(self, state: ReviewState) -> LearnableItem | None:
        if self.catalog is None:
            return None
        return self.catalog.get(state.item_type, state.item_id)

    async def _fetch_due(self, as_of: int) -> list[ReviewState]:
        """
        Every due record from the store, falling back to the local cache.

        Pending offline grades are replayed first; any that still could not
        be delivered override what the store returned for their item. The
        session limit is applied by the caller, after the overlay.
        """
        if self.sync_queue.list_pending():
            result = await self.sync_queue.flush()
            if result.error:
                logger.warning(f"Offline grades not synced, continuing with pending overlay: {result.error}")

        try:
            due = await self._call(self.store.get_due(self.user_id, as_of))
        except StoreUnavailableError as exc:
            logger.warning(f"Review store unavailable, using local cache: {exc}")
            self.offline = True
            return self.cache.due(as_of)

        self.offline = False
        pending = self.sync_queue.list_pending()
        if pending:
            merged = {state.key: state for state in due}
            merged.update({action.state.key: action.state for action in pending})
            due = order_due([s for s in merged.values() if s.is_due(as_of)], self.store.status_priority)

        self._refresh_cache(due)
        return due

    def _refresh_cache(self, states: list[ReviewState]) -> None:
        try:
            deck = {state.key: state for state in self.cache.load()}
            deck.update({state.key: state for state in states})
            self.cache.save(list(deck.values()))
        except StorageError as exc:
            logger.warning(f"Could not refresh local cache: {exc}")

    async def _commit(
        self,
        card: SessionCard,
        grade: int,
        new_state: ReviewState,
        now: int,
    ) -> GradeOutcome:
        # Grades behind queued ones must queue too, or a replay would overwrite them
        if not self.offline and not self.sync_queue.list_pending():
            try:
                result = await self._call(
                    self.store.upsert(self.user_id, new_state.item_type, new_state.item_id, new_state)
                )
                return GradeOutcome(card=card, state=new_state, queued=False, upsert=result)
            except StoreUnavailableError as exc:
                logger.warning(f"Review store unavailable, queuing grade offline: {exc}")
                self.offline = True

        action = self.sync_queue.enqueue(
            PendingReviewAction(
                user_id=self.user_id,
                item_id=new_state.item_id,
                item_type=new_state.item_type,
                grade=grade,
                state=new_state,
                timestamp=now,
            )
        )
        return GradeOutcome(card=card, state=new_state, queued=True, action=action)

    def _remember(self, new_state: ReviewState, grade: int, now: int) -> None:
        try:
            self.cache.apply(new_state)
            if self.review_log is not None:
                self.review_log.record(self.user_id, new_state.item_type, new_state.item_id, grade, timestamp=now)
        except StorageError as exc:
            logger.warning(f"Could not update local records for {new_state.item_id}: {exc}")
