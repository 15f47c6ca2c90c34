"""Hosted document store for daily logs, keyed by (user, date).

Every operation returns a ``StoreResult``; nothing here raises on network,
permission, or query configuration failures.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

INDEX_ERROR_MESSAGE = "Database query failed. Please try refreshing the page or contact support."
_INDEX_MARKERS = ("index", "failed-precondition", "failed_precondition")


@dataclass
class StoreResult:
    success: bool
    data: Any = None
    error: str | None = None
    index_error: bool = False

    @classmethod
    def ok(cls, data: Any = None) -> "StoreResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, *, index_error: bool = False) -> "StoreResult":
        return cls(success=False, error=error, index_error=index_error)


def is_index_error(message: str | None) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _INDEX_MARKERS)


class RemoteStore(ABC):
    """Per-user daily-log collection in a hosted document database."""

    @abstractmethod
    async def get_by_date(self, user_id: str, date: str) -> StoreResult:
        """Return the record for ``(user_id, date)``; ``data`` is None on a miss."""
        ...

    @abstractmethod
    async def get_range(self, user_id: str, start_date: str, end_date: str) -> StoreResult:
        """Records with ``start_date <= date <= end_date``, ascending by date."""
        ...

    @abstractmethod
    async def get_recent(self, user_id: str, limit: int) -> StoreResult:
        """Up to ``limit`` most recent records, descending by date."""
        ...

    @abstractmethod
    async def upsert(self, record: dict[str, Any]) -> StoreResult:
        """Create when ``record`` has no ``id``, else update. ``data`` is the stored record."""
        ...

    @abstractmethod
    async def delete(self, record_id: str) -> StoreResult:
        ...


class RestRemoteStore(RemoteStore):
    """``RemoteStore`` over a JSON REST document API.

    ``GET {base}/{collection}?userId=..&date=..`` for lookups and scans,
    ``POST {base}/{collection}`` to create, ``PATCH``/``DELETE
    {base}/{collection}/{id}`` to update and delete. The server owns
    ``createdAt``/``updatedAt``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        collection: str = "foodLogs",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.collection = collection
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            headers=self._headers(),
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, *, params=None, json=None) -> StoreResult:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, params=params, json=json)
            if resp.status_code == 404 and method == "GET":
                return StoreResult.ok(None)
            if resp.status_code >= 400:
                detail = _error_detail(resp)
                index_error = resp.status_code in (400, 412) and is_index_error(detail)
                logger.warning("Remote store %s %s failed (%s): %s", method, path, resp.status_code, detail)
                if index_error:
                    return StoreResult.fail(INDEX_ERROR_MESSAGE, index_error=True)
                return StoreResult.fail(f"Remote store error {resp.status_code}: {detail}")
            if resp.status_code == 204 or not resp.content:
                return StoreResult.ok(None)
            return StoreResult.ok(resp.json())
        except httpx.HTTPError as exc:
            logger.warning("Remote store %s %s unreachable: %s", method, path, exc)
            return StoreResult.fail(str(exc) or exc.__class__.__name__)
        except ValueError as exc:
            logger.warning("Remote store %s %s returned invalid JSON: %s", method, path, exc)
            return StoreResult.fail(f"Invalid response from remote store: {exc}")

    async def get_by_date(self, user_id: str, date: str) -> StoreResult:
        result = await self._request(
            "GET",
            f"/{self.collection}",
            params={"userId": user_id, "date": date, "limit": 1},
        )
        if not result.success or result.data is None:
            return result
        documents = _documents(result.data)
        return StoreResult.ok(documents[0] if documents else None)

    async def get_range(self, user_id: str, start_date: str, end_date: str) -> StoreResult:
        result = await self._request(
            "GET",
            f"/{self.collection}",
            params={"userId": user_id, "dateFrom": start_date, "dateTo": end_date, "orderBy": "date"},
        )
        if not result.success:
            return result
        documents = [d for d in _documents(result.data) if start_date <= str(d.get("date", "")) <= end_date]
        return StoreResult.ok(sorted(documents, key=lambda d: str(d.get("date", ""))))

    async def get_recent(self, user_id: str, limit: int) -> StoreResult:
        result = await self._request(
            "GET",
            f"/{self.collection}",
            params={"userId": user_id, "orderBy": "-date", "limit": int(limit)},
        )
        if not result.success:
            return result
        documents = sorted(_documents(result.data), key=lambda d: str(d.get("date", "")), reverse=True)
        return StoreResult.ok(documents[: int(limit)])

    async def upsert(self, record: dict[str, Any]) -> StoreResult:
        payload = {k: v for k, v in record.items() if k not in ("id", "createdAt", "updatedAt")}
        record_id = record.get("id")
        if record_id:
            return await self._request("PATCH", f"/{self.collection}/{record_id}", json=payload)
        return await self._request("POST", f"/{self.collection}", json=payload)

    async def delete(self, record_id: str) -> StoreResult:
        return await self._request("DELETE", f"/{self.collection}/{record_id}")


def _documents(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("documents", data.get("items", []))
    if not isinstance(data, list):
        return []
    return [d for d in data if isinstance(d, dict)]


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300]
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err.get("status") or err)
        return str(err or body.get("message") or body.get("detail") or body)
    return str(body)[:300]
