"""
Unit tests for the review item stores.

Both the in-memory and the SQL store must honour the same contract:
- one record per (user, type, item), ids preserved across upserts
- due records ordered most-overdue first, ties by status priority
- replayed upserts never duplicate history

Run: pytest tests/unit/test_review_store.py -v
"""

import pytest

from src.review.models import MS_PER_DAY, HistoryEntry, ItemType, ReviewState, ReviewStatus
from src.review.sql_store import SqlReviewItemStore
from src.review.store import InMemoryReviewItemStore, StoreUnavailableError

NOW = 1_767_225_600_000
USER = "learner-1"


@pytest.fixture(params=["memory", "sql"])
def any_store(request, tmp_path):
    """Each contract test runs against both store implementations."""
    if request.param == "memory":
        yield InMemoryReviewItemStore()
        return

    store = SqlReviewItemStore(database_url=f"sqlite:///{tmp_path / 'review.db'}")
    yield store
    store.engine.dispose()


def make(item_id, interval=0, next_review=NOW, status=ReviewStatus.NEW, item_type=ItemType.SENTENCE, **kw):
    return ReviewState(
        item_id=item_id,
        item_type=item_type,
        interval=interval,
        next_review=next_review,
        status=status,
        **kw,
    )


class TestUpsert:
    @pytest.mark.asyncio
    async def test_first_write_creates(self, any_store):
        result = await any_store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

        assert result.action == "created"
        assert result.created
        assert result.id

    @pytest.mark.asyncio
    async def test_second_write_patches_same_record(self, any_store):
        first = await any_store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))
        second = await any_store.upsert(
            USER,
            ItemType.SENTENCE,
            "s-1",
            make("s-1", interval=6, next_review=NOW + 6 * MS_PER_DAY, status=ReviewStatus.REVIEW, ease_factor=2.36),
        )

        assert second.action == "updated"
        assert second.id == first.id

        states = await any_store.list_states(USER)
        assert len(states) == 1
        state = states[0]
        assert state.record_id == first.id
        assert state.interval == 6
        assert state.ease_factor == 2.36
        assert state.status == ReviewStatus.REVIEW
        assert state.user_id == USER

    @pytest.mark.asyncio
    async def test_same_id_different_type_are_separate(self, any_store):
        await any_store.upsert(USER, ItemType.SENTENCE, "x-1", make("x-1"))
        await any_store.upsert(USER, ItemType.CHARACTER, "x-1", make("x-1", item_type=ItemType.CHARACTER))

        assert len(await any_store.list_states(USER)) == 2

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, any_store):
        await any_store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))
        await any_store.upsert("someone-else", ItemType.SENTENCE, "s-1", make("s-1"))

        assert len(await any_store.list_states(USER)) == 1
        assert len(await any_store.get_due("someone-else", NOW)) == 1

    @pytest.mark.asyncio
    async def test_stamps_last_review_when_missing(self, any_store):
        await any_store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

        state = await any_store.get_state(USER, ItemType.SENTENCE, "s-1")
        assert state.last_review is not None

    @pytest.mark.asyncio
    async def test_keeps_given_last_review(self, any_store):
        await any_store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1", last_review=NOW - 5))

        state = await any_store.get_state(USER, ItemType.SENTENCE, "s-1")
        assert state.last_review == NOW - 5

    @pytest.mark.asyncio
    async def test_replayed_upsert_does_not_duplicate_history(self, any_store):
        graded = make("s-1", interval=1, history=[HistoryEntry(timestamp=NOW, grade=4)], last_review=NOW)

        await any_store.upsert(USER, ItemType.SENTENCE, "s-1", graded)
        await any_store.upsert(USER, ItemType.SENTENCE, "s-1", graded)

        state = await any_store.get_state(USER, ItemType.SENTENCE, "s-1")
        assert state.history == [HistoryEntry(timestamp=NOW, grade=4)]

    @pytest.mark.asyncio
    async def test_history_accumulates_across_grades(self, any_store):
        first = HistoryEntry(timestamp=NOW, grade=4)
        second = HistoryEntry(timestamp=NOW + MS_PER_DAY, grade=2)

        await any_store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1", history=[first]))
        await any_store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1", history=[first, second]))

        state = await any_store.get_state(USER, ItemType.SENTENCE, "s-1")
        assert state.history == [first, second]


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_state_missing(self, any_store):
        assert await any_store.get_state(USER, ItemType.GRAMMAR, "nope") is None

    @pytest.mark.asyncio
    async def test_due_excludes_future_records(self, any_store):
        await any_store.upsert(USER, ItemType.SENTENCE, "now", make("now", next_review=NOW))
        await any_store.upsert(USER, ItemType.SENTENCE, "later", make("later", next_review=NOW + 1))

        due = await any_store.get_due(USER, NOW)

        assert [s.item_id for s in due] == ["now"]

    @pytest.mark.asyncio
    async def test_due_most_overdue_first(self, any_store):
        for item_id, offset in [("b", 2), ("a", 3), ("c", 1)]:
            await any_store.upsert(USER, ItemType.SENTENCE, item_id, make(item_id, next_review=NOW - offset * MS_PER_DAY))

        due = await any_store.get_due(USER, NOW)

        assert [s.item_id for s in due] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_due_ties_broken_by_status(self, any_store):
        for item_id, status in [
            ("m", ReviewStatus.MASTERED),
            ("n", ReviewStatus.NEW),
            ("r", ReviewStatus.REVIEW),
            ("l", ReviewStatus.LEARNING),
        ]:
            await any_store.upsert(USER, ItemType.SENTENCE, item_id, make(item_id, status=status))

        due = await any_store.get_due(USER, NOW)

        assert [s.item_id for s in due] == ["l", "r", "n", "m"]

    @pytest.mark.asyncio
    async def test_due_limit(self, any_store):
        for i in range(5):
            await any_store.upsert(USER, ItemType.SENTENCE, f"s-{i}", make(f"s-{i}", next_review=NOW - i))

        due = await any_store.get_due(USER, NOW, limit=2)

        assert [s.item_id for s in due] == ["s-4", "s-3"]


class TestStatusPriority:
    @pytest.mark.asyncio
    async def test_custom_priority_sql(self, tmp_path):
        store = SqlReviewItemStore(
            database_url=f"sqlite:///{tmp_path / 'review.db'}",
            status_priority=(ReviewStatus.NEW, ReviewStatus.LEARNING),
        )
        await store.upsert(USER, ItemType.SENTENCE, "l", make("l", status=ReviewStatus.LEARNING))
        await store.upsert(USER, ItemType.SENTENCE, "r", make("r", status=ReviewStatus.REVIEW))
        await store.upsert(USER, ItemType.SENTENCE, "n", make("n", status=ReviewStatus.NEW))

        due = await store.get_due(USER, NOW)
        await store.close()

        # Statuses missing from the priority list sort last
        assert [s.item_id for s in due] == ["n", "l", "r"]


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_offline_raises(self, store):
        store.online = False

        with pytest.raises(StoreUnavailableError):
            await store.get_due(USER, NOW)
        with pytest.raises(StoreUnavailableError):
            await store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_returns_copies(self, store):
        await store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

        state = await store.get_state(USER, ItemType.SENTENCE, "s-1")
        state.history.append(HistoryEntry(timestamp=NOW, grade=5))
        state.interval = 99

        fresh = await store.get_state(USER, ItemType.SENTENCE, "s-1")
        assert fresh.history == []
        assert fresh.interval == 0


class TestSqlStore:
    def test_requires_url_or_engine(self):
        with pytest.raises(ValueError):
            SqlReviewItemStore()

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'review.db'}"
        store = SqlReviewItemStore(database_url=url)
        created = await store.upsert(USER, ItemType.GRAMMAR, "g-1", make("g-1", item_type=ItemType.GRAMMAR))
        await store.close()

        reopened = SqlReviewItemStore(database_url=url)
        state = await reopened.get_state(USER, ItemType.GRAMMAR, "g-1")
        await reopened.close()

        assert state.record_id == created.id
        assert state.item_type == ItemType.GRAMMAR

    @pytest.mark.asyncio
    async def test_in_memory_url_shared_across_threads(self):
        store = SqlReviewItemStore(database_url="sqlite://")
        await store.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

        assert len(await store.get_due(USER, NOW)) == 1
        await store.close()
