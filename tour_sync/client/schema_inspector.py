"""Destination schema lookup with retry and a hand-kept fallback."""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from tour_sync.client.cancellation import CancellationToken
from tour_sync.client.errors import RequestCancelled, SyncClientError
from tour_sync.client.http import SyncApiClient
from tour_sync.schemas.sync import ColumnInfo
from tour_sync.sheets.mapper import get_fallback_columns

logger = logging.getLogger(__name__)

FIRST_TIMEOUT = 15.0
RETRY_TIMEOUT = 25.0
RETRY_DELAY = 0.5


class SchemaInspector:
    """Fetches table columns from the server.

    One retry with a longer timeout, then the fallback column list. Only
    cancellation is raised to the caller.
    """

    def __init__(
        self,
        api: SyncApiClient,
        first_timeout: float = FIRST_TIMEOUT,
        retry_timeout: float = RETRY_TIMEOUT,
        retry_delay: float = RETRY_DELAY,
    ) -> None:
        self._api = api
        self.first_timeout = first_timeout
        self.retry_timeout = retry_timeout
        self.retry_delay = retry_delay
        self.last_source: str | None = None

    async def _fetch(self, table_name: str, token: CancellationToken, timeout: float) -> list[ColumnInfo]:
        data = await token.run(self._api.table_schema(table_name), timeout=timeout)
        try:
            columns = [ColumnInfo.model_validate(c) for c in data.get("columns") or []]
        except ValidationError as e:
            raise SyncClientError(f"Invalid schema response: {e}") from e
        if not columns:
            raise SyncClientError(f"Schema of '{table_name}' has no columns")
        self.last_source = data.get("source") or "database"
        return columns

    async def get_table_schema(self, table_name: str, token: CancellationToken) -> list[ColumnInfo]:
        try:
            return await self._fetch(table_name, token, self.first_timeout)
        except RequestCancelled:
            raise
        except SyncClientError as e:
            logger.warning(
                "Schema request for %s failed (%s); retrying with a %gs timeout",
                table_name, e, self.retry_timeout,
            )

        await token.run(asyncio.sleep(self.retry_delay))
        try:
            return await self._fetch(table_name, token, self.retry_timeout)
        except RequestCancelled:
            raise
        except SyncClientError as e:
            logger.warning("Using fallback columns for %s: %s", table_name, e)
            self.last_source = "fallback"
            return get_fallback_columns(table_name)
