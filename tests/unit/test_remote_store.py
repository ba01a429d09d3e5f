"""
Unit tests for the remote record-store client.

The HTTP API is faked with httpx.MockTransport; no network access.

Run: pytest tests/unit/test_remote_store.py -v
"""

import json

import httpx
import pytest

from src.review.models import MS_PER_DAY, HistoryEntry, ItemType, ReviewState, ReviewStatus
from src.review.remote_store import RemoteReviewItemStore
from src.review.store import StoreUnavailableError

NOW = 1_767_225_600_000
USER = "learner-1"
BASE_URL = "http://records.test"


class FakeRecordStore:
    """In-process stand-in for the record store HTTP API."""

    def __init__(self):
        self.records: dict[str, dict] = {}
        self.requests: list[tuple[str, str]] = []
        self.fail_status: int | None = None
        self.refuse_connections = False
        self.patch_no_content = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.refuse_connections:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "boom"})

        params = request.url.params
        path = request.url.path

        if request.method == "GET" and path == "/records/due":
            as_of = int(params["asOf"])
            rows = [r for r in self.records.values() if r["userId"] == params["userId"] and r["nextReview"] <= as_of]
            return httpx.Response(200, json=rows)

        if request.method == "GET" and path == "/records":
            rows = [
                r
                for r in self.records.values()
                if all(r.get(field) == params[field] for field in ("userId", "itemType", "itemId") if field in params)
            ]
            return httpx.Response(200, json=rows)

        if request.method == "POST" and path == "/records":
            body = json.loads(request.content)
            record_id = f"rec-{len(self.records) + 1}"
            self.records[record_id] = {**body, "recordId": record_id}
            return httpx.Response(201, json={"id": record_id})

        if request.method == "PATCH" and path.startswith("/records/"):
            record_id = path.rsplit("/", 1)[-1]
            if record_id not in self.records:
                return httpx.Response(404, json={"error": "not found"})
            self.records[record_id].update(json.loads(request.content))
            if self.patch_no_content:
                return httpx.Response(204)
            return httpx.Response(200, json=self.records[record_id])

        return httpx.Response(404, json={"error": "no route"})


@pytest.fixture
def backend():
    return FakeRecordStore()


@pytest.fixture
def remote(backend):
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend), base_url=BASE_URL)
    return RemoteReviewItemStore(BASE_URL, client=client)


def make(item_id, next_review=NOW, status=ReviewStatus.NEW, **kw):
    return ReviewState(item_id=item_id, item_type=ItemType.SENTENCE, next_review=next_review, status=status, **kw)


class TestUpsert:
    @pytest.mark.asyncio
    async def test_insert_then_patch(self, remote, backend):
        created = await remote.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))
        updated = await remote.upsert(
            USER, ItemType.SENTENCE, "s-1", make("s-1", interval=6, status=ReviewStatus.REVIEW)
        )

        assert created.action == "created"
        assert updated.action == "updated"
        assert updated.id == created.id
        assert len(backend.records) == 1
        assert backend.records[created.id]["interval"] == 6
        assert ("PATCH", f"/records/{created.id}") in backend.requests

    @pytest.mark.asyncio
    async def test_insert_body_carries_key_and_last_review(self, remote, backend):
        result = await remote.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

        record = backend.records[result.id]
        assert record["userId"] == USER
        assert record["itemType"] == "sentence"
        assert record["itemId"] == "s-1"
        assert record["lastReview"] is not None

    @pytest.mark.asyncio
    async def test_patch_merges_history(self, remote, backend):
        entry = HistoryEntry(timestamp=NOW, grade=3)
        result = await remote.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1", history=[entry]))
        await remote.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1", history=[entry]))

        assert backend.records[result.id]["history"] == [{"date": NOW, "grade": 3}]

    @pytest.mark.asyncio
    async def test_patch_without_body(self, remote, backend):
        backend.patch_no_content = True
        created = await remote.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

        updated = await remote.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1", interval=1))

        assert updated.action == "updated"
        assert updated.id == created.id
        assert backend.records[created.id]["interval"] == 1


class TestQueries:
    @pytest.mark.asyncio
    async def test_due_sorted_client_side(self, remote):
        await remote.upsert(USER, ItemType.SENTENCE, "late", make("late", next_review=NOW - MS_PER_DAY))
        await remote.upsert(USER, ItemType.SENTENCE, "later", make("later", next_review=NOW - 3 * MS_PER_DAY))
        await remote.upsert(USER, ItemType.SENTENCE, "future", make("future", next_review=NOW + MS_PER_DAY))

        due = await remote.get_due(USER, NOW)

        assert [s.item_id for s in due] == ["later", "late"]

    @pytest.mark.asyncio
    async def test_due_limit(self, remote):
        for i in range(4):
            await remote.upsert(USER, ItemType.SENTENCE, f"s-{i}", make(f"s-{i}", next_review=NOW - i))

        assert len(await remote.get_due(USER, NOW, limit=2)) == 2

    @pytest.mark.asyncio
    async def test_get_state(self, remote):
        created = await remote.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

        state = await remote.get_state(USER, ItemType.SENTENCE, "s-1")

        assert state.record_id == created.id
        assert await remote.get_state(USER, ItemType.SENTENCE, "missing") is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, remote, backend):
        backend.fail_status = 503

        with pytest.raises(StoreUnavailableError):
            await remote.get_due(USER, NOW)

    @pytest.mark.asyncio
    async def test_connection_refused_is_unavailable(self, remote, backend):
        backend.refuse_connections = True

        with pytest.raises(StoreUnavailableError):
            await remote.upsert(USER, ItemType.SENTENCE, "s-1", make("s-1"))

    @pytest.mark.asyncio
    async def test_client_error_propagates(self, remote, backend):
        backend.fail_status = 400

        with pytest.raises(httpx.HTTPStatusError):
            await remote.get_due(USER, NOW)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, remote):
        await remote.close()

        assert not remote.client.is_closed

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        store = RemoteReviewItemStore(BASE_URL, api_key="secret")
        client = store.client

        assert client.headers["Authorization"] == "Bearer secret"
        await store.close()
        assert client.is_closed
