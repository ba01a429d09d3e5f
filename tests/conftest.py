"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.review.local_cache import LocalCache  # noqa: E402
from src.review.models import ItemType, LearnableItem, ReviewState, ReviewStatus  # noqa: E402
from src.review.storage import MemoryStorage  # noqa: E402
from src.review.store import InMemoryReviewItemStore  # noqa: E402
from src.review.sync_queue import OfflineSyncQueue  # noqa: E402

# Fixed reference time: 2026-01-01T00:00:00Z
NOW = 1_767_225_600_000


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store():
    return InMemoryReviewItemStore()


@pytest.fixture
def cache(storage):
    return LocalCache(storage)


@pytest.fixture
def sync_queue(storage, store, cache):
    return OfflineSyncQueue(storage, store, cache=cache)


@pytest.fixture
def sample_items():
    """A sentence, a grammar point and a character."""
    return [
        LearnableItem(
            id="s-001",
            type=ItemType.SENTENCE,
            payload={"original": "我喜欢喝茶。", "pinyin": "wǒ xǐhuan hē chá.", "translation": "I like drinking tea."},
        ),
        LearnableItem(
            id="g-001",
            type=ItemType.GRAMMAR,
            payload={"point": "了", "explanation": "Marks a completed action or change of state."},
        ),
        LearnableItem(
            id="c-001",
            type=ItemType.CHARACTER,
            payload={"char": "茶", "pinyin": "chá", "meaning": "tea"},
        ),
    ]


@pytest.fixture
def make_state():
    """Factory for ReviewState records with test defaults."""

    def _make_state(
        item_id: str,
        item_type: ItemType = ItemType.SENTENCE,
        interval: int = 0,
        ease_factor: float = 2.5,
        next_review: int = NOW,
        status: ReviewStatus = ReviewStatus.NEW,
    ) -> ReviewState:
        return ReviewState(
            item_id=item_id,
            item_type=item_type,
            interval=interval,
            ease_factor=ease_factor,
            next_review=next_review,
            status=status,
        )

    return _make_state
