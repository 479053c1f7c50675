"""Sheet listing with a client-side timeout and readable failure causes."""

from __future__ import annotations

import logging

from tour_sync.client.cancellation import CancellationToken, RequestSlot
from tour_sync.client.errors import (
    ApiError,
    NetworkFailure,
    PermissionDenied,
    QuotaExceeded,
    SheetNotFound,
    SheetRequestError,
)
from tour_sync.client.http import SyncApiClient
from tour_sync.schemas.sync import SheetColumns, SheetInfo

logger = logging.getLogger(__name__)

LIST_TIMEOUT = 60.0
COLUMNS_TIMEOUT = 60.0


def classify_api_error(e: ApiError) -> SheetRequestError | NetworkFailure:
    text = e.message.lower()
    if e.status_code == 429 or "quota" in text:
        return QuotaExceeded()
    if e.status_code == 403:
        return PermissionDenied()
    if e.status_code == 404:
        return SheetNotFound()
    if e.status_code in (502, 503, 504):
        return NetworkFailure(e.message)
    return SheetRequestError(f"Error: {e.message}", status_code=e.status_code, payload=e.payload)


class SheetReaderClient:
    """Reads sheet metadata through the sync API.

    Only one ``list_sheets`` call is in flight; a new call cancels the
    previous one.
    """

    def __init__(self, api: SyncApiClient, timeout: float = LIST_TIMEOUT) -> None:
        self._api = api
        self.timeout = timeout
        self._slot = RequestSlot()

    def cancel(self) -> bool:
        return self._slot.cancel()

    async def list_sheets(self, spreadsheet_id: str) -> list[SheetInfo]:
        token = self._slot.renew()
        try:
            return await token.run(self._api.list_sheets(spreadsheet_id), timeout=self.timeout)
        except ApiError as e:
            raise classify_api_error(e) from e
        finally:
            self._slot.release(token)

    async def load_columns(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        token: CancellationToken | None = None,
    ) -> SheetColumns:
        token = token or CancellationToken()
        try:
            return await token.run(
                self._api.sheet_columns(spreadsheet_id, sheet_name),
                timeout=COLUMNS_TIMEOUT,
            )
        except ApiError as e:
            raise classify_api_error(e) from e
