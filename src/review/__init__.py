"""
Hanzi Review: spaced-repetition engine.

Components:
- SM2Scheduler: pure SM-2 scheduling step
- ReviewItemStore: upsert-only review records (in-memory, SQL, remote HTTP)
- ReviewSession: Dashboard -> Active -> Summary session controller
- OfflineSyncQueue: durable queue of grades made while offline
- LocalCache: offline snapshot of review state and items
- BackgroundSync: periodic / reconnect-triggered queue flush
"""

from .background_sync import BackgroundSync, SyncStatus
from .catalog import EnrollmentResult, ItemCatalog, enroll
from .local_cache import LocalCache
from .models import (
    HistoryEntry,
    ItemType,
    LearnableItem,
    PendingReviewAction,
    ReviewState,
    ReviewStatus,
    SchedulingResult,
    UpsertResult,
)
from .review_log import ReviewLog, UserStats
from .scheduler import (
    GradeButton,
    InvalidGradeError,
    InvalidStateError,
    SM2Config,
    SM2Scheduler,
    compute_next_state,
)
from .session import (
    DashboardCounts,
    GradeOutcome,
    ReviewSession,
    SessionCard,
    SessionPhase,
    SessionStateError,
    SessionSummary,
)
from .storage import KeyValueStorage, MemoryStorage, SqliteKeyValueStorage, StorageError
from .store import InMemoryReviewItemStore, ReviewItemStore, StoreUnavailableError
from .sync_queue import FlushResult, OfflineSyncQueue, SyncQueueWriteError

__all__ = [
    # Data model
    "HistoryEntry",
    "ItemType",
    "LearnableItem",
    "PendingReviewAction",
    "ReviewState",
    "ReviewStatus",
    "SchedulingResult",
    "UpsertResult",
    # Scheduling
    "GradeButton",
    "InvalidGradeError",
    "InvalidStateError",
    "SM2Config",
    "SM2Scheduler",
    "compute_next_state",
    # Persistence
    "InMemoryReviewItemStore",
    "ReviewItemStore",
    "StoreUnavailableError",
    "KeyValueStorage",
    "MemoryStorage",
    "SqliteKeyValueStorage",
    "StorageError",
    "LocalCache",
    # Sessions
    "DashboardCounts",
    "GradeOutcome",
    "ReviewSession",
    "SessionCard",
    "SessionPhase",
    "SessionStateError",
    "SessionSummary",
    # Sync
    "BackgroundSync",
    "FlushResult",
    "OfflineSyncQueue",
    "SyncQueueWriteError",
    "SyncStatus",
    # Content & stats
    "EnrollmentResult",
    "ItemCatalog",
    "enroll",
    "ReviewLog",
    "UserStats",
]
