"""
SQL-backed Review Item Store.

One row per (user_id, item_type, item_id) in ``user_review_deck``,
enforced by a unique constraint. Queries run on a worker thread so the
async store contract holds, and every call is bounded by a timeout;
a timeout or a lost connection surfaces as StoreUnavailableError.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Callable, TypeVar

from loguru import logger
from sqlalchemy import JSON, BigInteger, Engine, Float, Integer, String, UniqueConstraint, case, select
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.orm import Mapped, Session, mapped_column

from .database import Base, init_db, make_engine, make_session_factory, session_scope
from .models import (
    DEFAULT_STATUS_PRIORITY,
    HistoryEntry,
    ItemType,
    ReviewState,
    ReviewStatus,
    UpsertResult,
    merge_history,
    now_ms,
)
from .store import ReviewItemStore, StoreUnavailableError

T = TypeVar("T")


class ReviewRecord(Base):
    """Scheduling state for one user's view of one learnable item."""

    __tablename__ = "user_review_deck"
    __table_args__ = (
        UniqueConstraint("user_id", "item_type", "item_id", name="uq_review_deck_key"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(16), nullable=False)
    item_id: Mapped[str] = mapped_column(String, nullable=False)
    interval: Mapped[int] = mapped_column(Integer, default=0)
    ease_factor: Mapped[float] = mapped_column(Float, default=2.5)
    next_review: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    last_review: Mapped[int | None] = mapped_column(BigInteger)
    status: Mapped[str] = mapped_column(String(16), default=ReviewStatus.NEW.value)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    def to_state(self) -> ReviewState:
        return ReviewState(
            item_id=self.item_id,
            item_type=ItemType(self.item_type),
            interval=self.interval,
            ease_factor=self.ease_factor,
            next_review=self.next_review,
            status=ReviewStatus(self.status),
            last_review=self.last_review,
            history=[HistoryEntry.from_dict(h) for h in self.history or []],
            record_id=self.id,
            user_id=self.user_id,
        )


class SqlReviewItemStore(ReviewItemStore):
    """Review store over any SQLAlchemy-supported database."""

    def __init__(
        self,
        database_url: str | None = None,
        engine: Engine | None = None,
        timeout: float | None = 10.0,
        status_priority: tuple[ReviewStatus, ...] | None = None,
    ):
        """
        Initialize the store and create its table if needed.

        Args:
            database_url: SQLAlchemy URL (ignored when engine is given)
            engine: Pre-built engine
            timeout: Seconds before a call counts as "store unreachable"
            status_priority: Tie-break order for due records
        """
        if engine is None:
            if database_url is None:
                raise ValueError("SqlReviewItemStore needs a database_url or an engine")
            engine = make_engine(database_url)
        self.engine = engine
        self.timeout = timeout
        self.status_priority = status_priority or DEFAULT_STATUS_PRIORITY
        self._factory = make_session_factory(engine)
        init_db(engine)

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            with session_scope(self._factory) as session:
                return fn(session)

        try:
            return await asyncio.wait_for(asyncio.to_thread(work), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(f"Review store timed out after {self.timeout}s") from exc
        except (OperationalError, DisconnectionError) as exc:
            raise StoreUnavailableError(f"Review store unreachable: {exc}") from exc

    @staticmethod
    def _find(session: Session, user_id: str, item_type: ItemType, item_id: str) -> ReviewRecord | None:
        return session.scalars(
            select(ReviewRecord).where(
                ReviewRecord.user_id == user_id,
                ReviewRecord.item_type == ItemType(item_type).value,
                ReviewRecord.item_id == item_id,
            )
        ).first()

    @staticmethod
    def _patch(record: ReviewRecord, state: ReviewState, last_review: int) -> None:
        existing = [HistoryEntry.from_dict(h) for h in record.history or []]
        record.interval = state.interval
        record.ease_factor = state.ease_factor
        record.status = state.status.value
        record.next_review = state.next_review
        record.last_review = last_review
        record.history = [h.to_dict() for h in merge_history(existing, state.history)]

    async def upsert(
        self,
        user_id: str,
        item_type: ItemType,
        item_id: str,
        state: ReviewState,
    ) -> UpsertResult:
        last_review = state.last_review if state.last_review is not None else now_ms()

        def work(session: Session) -> UpsertResult:
            record = self._find(session, user_id, item_type, item_id)
            if record is not None:
                self._patch(record, state, last_review)
                return UpsertResult(action="updated", id=record.id)

            record = ReviewRecord(
                id=uuid.uuid4().hex,
                user_id=user_id,
                item_type=ItemType(item_type).value,
                item_id=item_id,
                interval=state.interval,
                ease_factor=state.ease_factor,
                next_review=state.next_review,
                last_review=last_review,
                status=state.status.value,
                history=[h.to_dict() for h in state.history],
            )
            session.add(record)
            try:
                session.flush()
            except IntegrityError:
                # Lost an insert race on the composite key: patch the winner
                session.rollback()
                record = self._find(session, user_id, item_type, item_id)
                self._patch(record, state, last_review)
                return UpsertResult(action="updated", id=record.id)
            return UpsertResult(action="created", id=record.id)

        result = await self._run(work)
        logger.debug(f"Review record {result.action}: {item_type}:{item_id} -> {result.id}")
        return result

    async def get_due(
        self,
        user_id: str,
        as_of: int,
        limit: int | None = None,
    ) -> list[ReviewState]:
        rank = case(
            {status.value: i for i, status in enumerate(self.status_priority)},
            value=ReviewRecord.status,
            else_=len(self.status_priority),
        )

        def work(session: Session) -> list[ReviewState]:
            query = (
                select(ReviewRecord)
                .where(ReviewRecord.user_id == user_id, ReviewRecord.next_review <= as_of)
                .order_by(ReviewRecord.next_review.asc(), rank.asc())
            )
            if limit is not None:
                query = query.limit(limit)
            return [record.to_state() for record in session.scalars(query)]

        return await self._run(work)

    async def get_state(
        self,
        user_id: str,
        item_type: ItemType,
        item_id: str,
    ) -> ReviewState | None:
        def work(session: Session) -> ReviewState | None:
            record = self._find(session, user_id, item_type, item_id)
            return record.to_state() if record else None

        return await self._run(work)

    async def list_states(self, user_id: str) -> list[ReviewState]:
        def work(session: Session) -> list[ReviewState]:
            query = select(ReviewRecord).where(ReviewRecord.user_id == user_id)
            return [record.to_state() for record in session.scalars(query)]

        return await self._run(work)

    async def close(self) -> None:
        self.engine.dispose()
