"""
Unit tests for the item catalog, enrollment and the review log.

Run: pytest tests/unit/test_catalog.py -v
"""

import json

import pytest

from src.review.catalog import ItemCatalog, enroll
from src.review.models import ItemType, ReviewStatus
from src.review.review_log import ReviewLog
from src.review.scheduler import SM2Scheduler

NOW = 1_767_225_600_000
USER = "learner-1"


class TestItemCatalog:
    def test_lookup_by_type_and_id(self, sample_items):
        catalog = ItemCatalog(sample_items)

        assert len(catalog) == 3
        assert catalog.get(ItemType.GRAMMAR, "g-001").payload["point"] == "了"
        assert catalog.get(ItemType.SENTENCE, "g-001") is None

    def test_register_replaces(self, sample_items):
        catalog = ItemCatalog(sample_items)

        catalog.register(sample_items[:1])

        assert len(catalog) == 3

    def test_from_json_list(self, tmp_path, sample_items):
        path = tmp_path / "items.json"
        path.write_text(json.dumps([item.to_dict() for item in sample_items]), encoding="utf-8")

        catalog = ItemCatalog.from_json_file(path)

        assert {item.key for item in catalog} == {item.key for item in sample_items}

    def test_from_json_wrapped(self, tmp_path, sample_items):
        path = tmp_path / "items.json"
        path.write_text(json.dumps({"items": [sample_items[2].to_dict()]}), encoding="utf-8")

        catalog = ItemCatalog.from_json_file(path)

        assert catalog.get(ItemType.CHARACTER, "c-001").payload["meaning"] == "tea"

    def test_from_cache(self, cache, sample_items):
        cache.save_items(sample_items)

        assert len(ItemCatalog.from_cache(cache)) == 3


class TestEnroll:
    @pytest.mark.asyncio
    async def test_creates_new_records(self, store, sample_items):
        result = await enroll(USER, sample_items, store, now=NOW)

        assert (result.created, result.existing) == (3, 0)
        due = await store.get_due(USER, NOW)
        assert len(due) == 3
        assert all(s.status == ReviewStatus.NEW and s.interval == 0 for s in due)

    @pytest.mark.asyncio
    async def test_keeps_existing_progress(self, store, sample_items):
        await enroll(USER, sample_items, store, now=NOW)
        existing = await store.get_state(USER, ItemType.SENTENCE, "s-001")
        await store.upsert(USER, ItemType.SENTENCE, "s-001", SM2Scheduler().apply(5, existing, now=NOW))

        result = await enroll(USER, sample_items, store, now=NOW)

        assert (result.created, result.existing) == (0, 3)
        state = await store.get_state(USER, ItemType.SENTENCE, "s-001")
        assert state.interval == 1
        assert state.status == ReviewStatus.REVIEW


class TestReviewLog:
    def test_stats_empty(self, storage):
        stats = ReviewLog(storage).stats(USER)

        assert (stats.total_reviews, stats.correct, stats.incorrect, stats.accuracy) == (0, 0, 0, 0.0)

    def test_stats_accuracy_one_decimal(self, storage):
        log = ReviewLog(storage)
        for grade in (5, 3, 1):
            log.record(USER, ItemType.SENTENCE, "s-001", grade, timestamp=NOW)

        stats = log.stats(USER)

        assert (stats.total_reviews, stats.correct, stats.incorrect) == (3, 2, 1)
        assert stats.accuracy == 66.7

    def test_entries_per_user(self, storage):
        log = ReviewLog(storage)
        log.record(USER, ItemType.SENTENCE, "s-001", 4, timestamp=NOW)
        log.record("other", ItemType.SENTENCE, "s-001", 4, timestamp=NOW)

        assert len(log.entries(USER)) == 1
        assert len(log.entries()) == 2

    def test_recent_newest_first(self, storage):
        log = ReviewLog(storage)
        for i, grade in enumerate((1, 2, 3)):
            log.record(USER, ItemType.GRAMMAR, "g-001", grade, timestamp=NOW + i)

        assert [e.grade for e in log.recent(USER, limit=2)] == [3, 2]

    def test_bounded(self, storage):
        log = ReviewLog(storage, max_entries=2)
        for grade in (1, 2, 3):
            log.record(USER, ItemType.CHARACTER, "c-001", grade, timestamp=NOW)

        assert [e.grade for e in log.entries()] == [2, 3]
