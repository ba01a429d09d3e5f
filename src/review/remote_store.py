"""
HTTP client for a remote record store.

The record store exposes generic query/insert/patch operations over
review records; upsert is composed client-side as query-then-insert-or-patch.

Endpoints:
    GET   /records?userId=&itemType=&itemId=   query by key
    GET   /records/due?userId=&asOf=&limit=    due records
    POST  /records                             insert, returns {"id": ...}
    PATCH /records/{id}                        patch in place

Transport failures, timeouts and 5xx answers mean "store unreachable";
4xx answers are caller bugs and propagate as httpx.HTTPStatusError.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from .models import (
    DEFAULT_STATUS_PRIORITY,
    ItemType,
    ReviewState,
    ReviewStatus,
    UpsertResult,
    merge_history,
    now_ms,
    order_due,
)
from .store import ReviewItemStore, StoreUnavailableError


class RemoteReviewItemStore(ReviewItemStore):
    """Review store backed by the remote record-store HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        status_priority: tuple[ReviewStatus, ...] | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Record store root URL
            api_key: Optional bearer token
            timeout: Per-request timeout in seconds
            client: Pre-configured client (tests inject a MockTransport)
            status_priority: Tie-break order for due records
        """
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.timeout = timeout
        self.status_priority = status_priority or DEFAULT_STATUS_PRIORITY
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
            )
        return self._client

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise StoreUnavailableError(f"Record store unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise StoreUnavailableError(
                f"Record store error {response.status_code} on {method} {url}"
            )
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _query(self, user_id: str, item_type: ItemType, item_id: str) -> ReviewState | None:
        rows = await self._request(
            "GET",
            "/records",
            params={"userId": user_id, "itemType": ItemType(item_type).value, "itemId": item_id},
        )
        return ReviewState.from_dict(rows[0]) if rows else None

    async def upsert(
        self,
        user_id: str,
        item_type: ItemType,
        item_id: str,
        state: ReviewState,
    ) -> UpsertResult:
        last_review = state.last_review if state.last_review is not None else now_ms()
        existing = await self._query(user_id, item_type, item_id)

        if existing is not None and existing.record_id:
            patch = {
                "interval": state.interval,
                "easeFactor": state.ease_factor,
                "status": state.status.value,
                "nextReview": state.next_review,
                "lastReview": last_review,
                "history": [
                    h.to_dict() for h in merge_history(existing.history, state.history)
                ],
            }
            await self._request("PATCH", f"/records/{existing.record_id}", json=patch)
            logger.debug("Patched remote record {} for {}:{}", existing.record_id, item_type, item_id)
            return UpsertResult(action="updated", id=existing.record_id)

        body = state.to_dict()
        body.pop("recordId", None)
        body.update(
            {
                "userId": user_id,
                "itemType": ItemType(item_type).value,
                "itemId": item_id,
                "lastReview": last_review,
            }
        )
        created = await self._request("POST", "/records", json=body)
        record_id = str(created["id"])
        logger.debug("Inserted remote record {} for {}:{}", record_id, item_type, item_id)
        return UpsertResult(action="created", id=record_id)

    async def get_due(
        self,
        user_id: str,
        as_of: int,
        limit: int | None = None,
    ) -> list[ReviewState]:
        params: dict[str, Any] = {"userId": user_id, "asOf": as_of}
        if limit is not None:
            params["limit"] = limit
        rows = await self._request("GET", "/records/due", params=params)
        due = order_due(
            [s for s in (ReviewState.from_dict(r) for r in rows or []) if s.is_due(as_of)],
            self.status_priority,
        )
        return due[:limit] if limit is not None else due

    async def get_state(
        self,
        user_id: str,
        item_type: ItemType,
        item_id: str,
    ) -> ReviewState | None:
        return await self._query(user_id, item_type, item_id)

    async def list_states(self, user_id: str) -> list[ReviewState]:
        rows = await self._request("GET", "/records", params={"userId": user_id})
        return [ReviewState.from_dict(r) for r in rows or []]

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
