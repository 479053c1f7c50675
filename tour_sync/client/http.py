"""HTTP client for the sync API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from tour_sync.client.errors import ApiError, NetworkFailure, RequestTimedOut, StreamDecodeError
from tour_sync.schemas.events import parse_event
from tour_sync.schemas.sync import (
    CleanupStatus,
    SheetColumns,
    SheetInfo,
    SyncRequest,
    SyncResult,
    TableInfo,
)

logger = logging.getLogger(__name__)


class SyncApiClient:
    """Talks to the ``/api/sync`` endpoints.

    Timeouts and cancellation are the caller's job (see
    :class:`~tour_sync.client.cancellation.CancellationToken`); the
    underlying ``httpx`` client has no read timeout so long streams survive.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                transport=self._transport,
                timeout=httpx.Timeout(10.0, read=None),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SyncApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _headers(self, auth: bool) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = {"success": False, "message": response.text or f"HTTP {response.status_code}"}
        if not isinstance(data, dict):
            data = {"success": False, "message": f"Unexpected response: {data!r}"}

        if response.status_code >= 400 or data.get("success") is False:
            message = data.get("message") or data.get("detail") or f"HTTP {response.status_code}"
            raise ApiError(str(message), status_code=response.status_code, payload=data)
        return data

    async def _request(
        self,
        method: str,
        path: str,
        auth: bool = False,
        **kwargs,
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.request(method, path, headers=self._headers(auth), **kwargs)
        except httpx.TimeoutException as e:
            raise RequestTimedOut() from e
        except httpx.TransportError as e:
            raise NetworkFailure(str(e)) from e
        return self._decode(response)

    # --- Sheets ---

    async def list_sheets(self, spreadsheet_id: str) -> list[SheetInfo]:
        data = await self._request("POST", "/sync/sheets", json={"spreadsheetId": spreadsheet_id})
        return [SheetInfo.model_validate(item) for item in data.get("data") or []]

    async def sheet_columns(self, spreadsheet_id: str, sheet_name: str) -> SheetColumns:
        data = await self._request(
            "POST",
            "/sync/sheet-columns",
            json={"spreadsheetId": spreadsheet_id, "sheetName": sheet_name},
        )
        return SheetColumns.model_validate(data.get("data") or {})

    # --- Tables ---

    async def list_tables(self) -> list[TableInfo]:
        data = await self._request("GET", "/sync/all-tables")
        return [TableInfo.model_validate(item) for item in data.get("data") or []]

    async def table_schema(self, table_name: str) -> dict[str, Any]:
        data = await self._request("GET", "/sync/schema", params={"table": table_name})
        return data.get("data") or {}

    async def last_sync_time(self, table_name: str, spreadsheet_id: str) -> datetime | None:
        data = await self._request(
            "GET",
            "/sync/history",
            params={"table": table_name, "spreadsheetId": spreadsheet_id},
        )
        value = (data.get("data") or {}).get("lastSyncTime")
        return datetime.fromisoformat(value.replace("Z", "+00:00")) if value else None

    async def cleanup_status(self) -> CleanupStatus:
        data = await self._request("GET", "/sync/reservation-cleanup")
        return CleanupStatus.model_validate(data.get("data") or {})

    # --- Sync ---

    async def optimized_sync(self, request: SyncRequest) -> SyncResult:
        client = self._get_client()
        try:
            response = await client.post(
                "/sync/optimized",
                headers=self._headers(auth=True),
                json=request.model_dump(by_alias=True),
            )
        except httpx.TimeoutException as e:
            raise RequestTimedOut() from e
        except httpx.TransportError as e:
            raise NetworkFailure(str(e)) from e
        if response.status_code >= 400:
            self._decode(response)
        try:
            return SyncResult.model_validate_json(response.content)
        except ValidationError as e:
            raise ApiError(f"Invalid sync response: {e}", status_code=response.status_code) from e

    async def stream_sync(self, request: SyncRequest) -> AsyncIterator:
        """Yield typed events from the streaming sync endpoint."""
        client = self._get_client()
        try:
            async with client.stream(
                "POST",
                "/sync/flexible/stream",
                headers=self._headers(auth=True),
                json=request.model_dump(by_alias=True),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._decode(response)
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        event = parse_event(line)
                    except ValidationError as e:
                        raise StreamDecodeError(f"Invalid sync event: {line[:200]}") from e
                    yield event
        except httpx.TimeoutException as e:
            raise RequestTimedOut() from e
        except httpx.TransportError as e:
            raise NetworkFailure(str(e)) from e
