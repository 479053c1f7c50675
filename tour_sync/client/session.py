"""Client-side orchestration of one sync screen.

``SyncSession`` keeps the state an operator works with (sheets, tables,
mapping, progress, logs) and drives the sync API. Every public coroutine
settles into a terminal state: network and decode errors become a
``SyncResult`` or a notice, never a raw exception, and ``loading`` is
always cleared.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone

from tour_sync.client.cancellation import RequestSlot
from tour_sync.client.errors import RequestCancelled, SyncClientError
from tour_sync.client.estimator import TICK_INTERVAL, EtaEstimator
from tour_sync.client.http import SyncApiClient
from tour_sync.client.schema_inspector import SchemaInspector
from tour_sync.client.sheet_reader import SheetReaderClient
from tour_sync.client.store import SettingsStore
from tour_sync.schemas.events import LogEvent, ProgressEvent, ResultEvent, StartEvent
from tour_sync.schemas.sync import (
    CleanupStatus,
    ColumnInfo,
    RealTimeStats,
    SheetInfo,
    SyncRequest,
    SyncResult,
    TableInfo,
)
from tour_sync.sheets.mapper import get_auto_mapping

logger = logging.getLogger(__name__)

NO_RESULT_MESSAGE = "Sync result was not received."
CANCELLED_MESSAGE = "Sync was cancelled."
NO_SHEETS_NOTICE = "No sheets found. Check that the spreadsheet has sheets whose name starts with \"S\"."
DEFAULT_ESTIMATED_ROWS = 200


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncSession:
    def __init__(
        self,
        api: SyncApiClient,
        store: SettingsStore,
        spreadsheet_id: str,
        estimator: EtaEstimator | None = None,
        inspector: SchemaInspector | None = None,
        tick_interval: float = TICK_INTERVAL,
    ) -> None:
        self.api = api
        self.store = store
        self.spreadsheet_id = spreadsheet_id
        self.sheet_reader = SheetReaderClient(api)
        self.inspector = inspector or SchemaInspector(api)
        self.estimator = estimator or EtaEstimator(store)
        self.tick_interval = tick_interval

        self.tables: list[TableInfo] = []
        self.sheets: list[SheetInfo] = []
        self.selected_sheet: str | None = None
        self.selected_table: str | None = None
        self.table_columns: list[ColumnInfo] = []
        self.column_mapping: dict[str, str] = {}
        self.truncate_table = False
        self.loading = False
        self.sync_result: SyncResult | None = None
        self.last_sync_time: datetime | None = None
        self.logs: list[str] = []
        self.stats = RealTimeStats()
        self.progress = 0
        self.eta_ms: int | None = None
        self.notice: str | None = None
        self.cleanup_status: CleanupStatus | None = None

        self._schema_slot = RequestSlot()
        self._sync_slot = RequestSlot()

    # --- Lookups ---

    def _sheet(self, name: str | None) -> SheetInfo | None:
        return next((s for s in self.sheets if s.name == name), None)

    def _log(self, line: str) -> None:
        self.logs.append(line)

    def _sync_progress(self) -> None:
        self.progress = self.estimator.progress
        self.eta_ms = self.estimator.eta_ms

    # --- Tables ---

    async def load_tables(self) -> list[TableInfo]:
        if self.tables:
            return self.tables
        try:
            self.tables = await self.api.list_tables()
        except SyncClientError as e:
            logger.error("Error getting available tables: %s", e)
        return self.tables

    async def select_table(self, table_name: str) -> list[ColumnInfo]:
        """Select a destination table: schema, last sync time, mapping.

        A newer selection cancels an older one still waiting for its schema.
        """
        self.selected_table = table_name
        self.table_columns = []
        self.truncate_table = False
        self.column_mapping = {}
        if not table_name:
            return []

        saved = self.store.load_mapping(table_name)
        self.column_mapping = saved

        token = self._schema_slot.renew()
        try:
            columns = await self.inspector.get_table_schema(table_name, token)
        except RequestCancelled:
            logger.info("Schema request for %s was superseded", table_name)
            return []
        finally:
            self._schema_slot.release(token)

        self.table_columns = columns
        if not saved:
            sheet = self._sheet(self.selected_sheet)
            if sheet is not None and sheet.columns:
                mapping = get_auto_mapping(columns, sheet.columns)
                if mapping:
                    self.column_mapping = mapping

        await self.fetch_last_sync_time(table_name)
        return columns

    async def fetch_last_sync_time(self, table_name: str) -> datetime | None:
        if not self.spreadsheet_id:
            return None
        try:
            self.last_sync_time = await self.api.last_sync_time(table_name, self.spreadsheet_id)
        except SyncClientError as e:
            logger.error("Error fetching last sync time: %s", e)
            self.last_sync_time = None
        return self.last_sync_time

    def save_mapping(self, mapping: dict[str, str]) -> None:
        if not self.selected_table:
            raise ValueError("Select a table before saving a column mapping")
        self.store.save_mapping(self.selected_table, mapping)
        self.column_mapping = dict(mapping)

    # --- Sheets ---

    async def load_sheets(self) -> list[SheetInfo]:
        if not self.spreadsheet_id.strip():
            self.notice = "Enter a spreadsheet ID."
            return []

        self.loading = True
        self.notice = None
        self.sheets = []
        try:
            sheets = await self.sheet_reader.list_sheets(self.spreadsheet_id)
        except RequestCancelled:
            logger.info("Sheet list request was cancelled")
            return []
        except SyncClientError as e:
            self.notice = e.message
            return []
        finally:
            self.loading = False

        self.sheets = sheets
        if sheets:
            self.selected_sheet = sheets[0].name
        else:
            self.notice = NO_SHEETS_NOTICE
        return sheets

    async def select_sheet(self, sheet_name: str) -> SheetInfo | None:
        """Select a tab, loading its header and sample rows on first use."""
        self.selected_sheet = sheet_name
        sheet = self._sheet(sheet_name)
        if sheet is None or sheet.columns:
            return sheet
        try:
            data = await self.sheet_reader.load_columns(self.spreadsheet_id, sheet_name)
        except SyncClientError as e:
            logger.error("Error loading columns for %s: %s", sheet_name, e)
            return sheet

        loaded = sheet.model_copy(update={"columns": data.columns, "sample_data": data.sample_data})
        self.sheets = [loaded if s.name == sheet_name else s for s in self.sheets]
        return loaded

    # --- Sync ---

    def _not_ready(self) -> str | None:
        if not self.spreadsheet_id.strip() or not self.selected_sheet or not self.selected_table:
            return "Select a spreadsheet, a sheet and a table."
        if not self.column_mapping:
            return "Set up the column mapping first."
        return None

    def _request(self, incremental: bool = False) -> SyncRequest:
        return SyncRequest(
            spreadsheet_id=self.spreadsheet_id,
            sheet_name=self.selected_sheet,
            target_table=self.selected_table,
            column_mapping=self.column_mapping,
            enable_incremental_sync=incremental,
            truncate_table=self.truncate_table,
        )

    def _reset_run(self) -> None:
        self.loading = True
        self.sync_result = None
        self.logs = []
        self.stats = RealTimeStats()

    async def _ticker(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            self.estimator.tick()
            self._sync_progress()

    def _handle_event(self, event) -> SyncResult | None:
        if isinstance(event, LogEvent):
            self._log(f"[{event.type.upper()}] {event.message}")
        elif isinstance(event, StartEvent):
            self.estimator.on_start(event.total)
            self._sync_progress()
            self._log(f"[START] Sync started - {event.total} rows to process")
        elif isinstance(event, ProgressEvent):
            self.estimator.on_progress(event.processed, event.total)
            self._sync_progress()
            self.stats = RealTimeStats(
                processed=max(self.stats.processed, event.processed),
                inserted=max(self.stats.inserted, event.inserted),
                updated=max(self.stats.updated, event.updated),
                errors=max(self.stats.errors, event.errors),
                skipped=max(self.stats.skipped, event.skipped),
            )
            step = max(1, event.total // 10)
            if event.total and event.processed % step == 0:
                pct = event.processed * 100 // event.total
                self._log(
                    f"[PROGRESS] {event.processed}/{event.total} processed ({pct}%) - "
                    f"inserted: {event.inserted}, updated: {event.updated}, errors: {event.errors}"
                )
        elif isinstance(event, ResultEvent):
            self._log(f"[RESULT] {event.message}")
            return SyncResult(
                success=event.success,
                message=event.message,
                data=event.details,
                sync_time=_now(),
            )
        return None

    async def _consume(self, request: SyncRequest) -> SyncResult | None:
        result: SyncResult | None = None
        async for event in self.api.stream_sync(request):
            outcome = self._handle_event(event)
            if outcome is not None:
                result = outcome
                break
        return result

    async def run_sync(self, incremental: bool = False) -> SyncResult:
        """Run the streaming sync for the current selection."""
        problem = self._not_ready()
        if problem:
            self.sync_result = SyncResult(success=False, message=problem)
            return self.sync_result

        token = self._sync_slot.renew()
        self._reset_run()
        sheet = self._sheet(self.selected_sheet)
        estimated_rows = max((sheet.row_count if sheet else 0) or DEFAULT_ESTIMATED_ROWS, 1)
        self.estimator.begin(estimated_rows)
        self._sync_progress()
        ticker = asyncio.create_task(self._ticker())

        result: SyncResult
        try:
            try:
                received = await token.run(self._consume(self._request(incremental)))
            except RequestCancelled:
                logger.info("Sync request was cancelled")
                result = SyncResult(success=False, message=CANCELLED_MESSAGE)
            except SyncClientError as e:
                logger.error("Error syncing data: %s", e)
                self._log(f"[ERROR] {e.message}")
                result = SyncResult(success=False, message=f"Sync failed: {e.message}")
            else:
                result = received or SyncResult(success=False, message=NO_RESULT_MESSAGE)

            inserted = result.data.inserted if result.data else 0
            updated = result.data.updated if result.data else 0
            self.estimator.complete(result.success, inserted, updated)
            if result.success:
                self.last_sync_time = result.sync_time or _now()
            self.sync_result = result
            return result
        finally:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker
            self._sync_slot.release(token)
            self.progress = 100
            self.eta_ms = 0
            self.loading = False

    async def run_optimized_sync(self) -> SyncResult:
        """Run the one-shot batched sync; no live progress."""
        problem = self._not_ready()
        if problem:
            self.sync_result = SyncResult(success=False, message=problem)
            return self.sync_result

        token = self._sync_slot.renew()
        self._reset_run()
        self.progress = 1
        self.eta_ms = None
        started = self.estimator.now()
        try:
            try:
                result = await token.run(self.api.optimized_sync(self._request()))
            except RequestCancelled:
                result = SyncResult(success=False, message=CANCELLED_MESSAGE)
            except SyncClientError as e:
                logger.error("Optimized sync error: %s", e)
                self._log(f"[ERROR] {e.message}")
                result = SyncResult(success=False, message="Optimized sync failed.")
            else:
                if result.success:
                    rows = result.count or 0
                    ms_per_row = round((self.estimator.now() - started) / rows) if rows else 0
                    self._log(f"[OK] Optimized sync finished: {rows} rows ({ms_per_row}ms/row)")
                    self.last_sync_time = result.sync_time or _now()
                else:
                    self._log(f"[ERROR] Sync failed: {result.message}")
            self.sync_result = result
            return result
        finally:
            self._sync_slot.release(token)
            self.progress = 100
            self.eta_ms = 0
            self.loading = False

    # --- Cleanup ---

    async def check_cleanup_status(self) -> CleanupStatus | None:
        try:
            self.cleanup_status = await self.api.cleanup_status()
        except SyncClientError as e:
            logger.error("Failed to check cleanup status: %s", e)
        return self.cleanup_status

    # --- Teardown ---

    def cancel_request(self) -> bool:
        """Cancel the running sync or sheet listing."""
        cancelled = self._sync_slot.cancel()
        cancelled = self.sheet_reader.cancel() or cancelled
        if cancelled:
            logger.info("Request cancelled by the user")
        return cancelled

    def close(self) -> None:
        self._sync_slot.cancel()
        self._schema_slot.cancel()
        self.sheet_reader.cancel()
