"""Spreadsheet sources.

Reads tab lists, header rows and data rows into plain dicts. Two sources
are supported: the Google Sheets API and ``.xlsx`` workbooks on disk.
Never modifies the spreadsheet.
"""

from __future__ import annotations

import enum
import logging
import random
import threading
import time
from functools import lru_cache
from pathlib import Path
from typing import Any

import openpyxl
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from tour_sync.config import settings
from tour_sync.schemas.sync import SheetColumns, SheetInfo
from tour_sync.sheets.config import FULL_RANGE_END

logger = logging.getLogger(__name__)


class SheetErrorKind(str, enum.Enum):
    QUOTA = "quota"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    CREDENTIALS = "credentials"
    UNKNOWN = "unknown"


class SheetAccessError(Exception):
    """The spreadsheet source could not be read."""

    def __init__(self, kind: SheetErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


def matches_sheet_prefix(name: str | None, prefix: str | None = None) -> bool:
    """True when a tab name follows the sync naming convention (case-insensitive)."""
    prefix = settings.SHEET_NAME_PREFIX if prefix is None else prefix
    if not name:
        return False
    return name.upper().startswith(prefix.upper())


def _cell_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return value


def rows_to_records(values: list[list[Any]]) -> tuple[list[str], list[dict[str, Any]]]:
    """Turn a value grid into (headers, row dicts) using the first row as header.

    Columns with a blank header and rows with no content are dropped.
    """
    if not values:
        return [], []
    raw_headers = [str(h).strip() if h is not None else "" for h in values[0]]
    indexed = [(i, h) for i, h in enumerate(raw_headers) if h]
    headers = [h for _, h in indexed]

    records: list[dict[str, Any]] = []
    for row in values[1:]:
        record = {
            h: _cell_text(row[i]) if i < len(row) else ""
            for i, h in indexed
        }
        if any(v != "" for v in record.values()):
            records.append(record)
    return headers, records


class SheetReader:
    """Interface shared by the spreadsheet sources."""

    def list_sheets(self, spreadsheet_id: str) -> list[SheetInfo]:
        raise NotImplementedError

    def read_values(self, spreadsheet_id: str, sheet_name: str, max_rows: int | None = None) -> list[list[Any]]:
        raise NotImplementedError

    def read_header_and_sample(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        sample_rows: int | None = None,
    ) -> SheetColumns:
        sample_rows = settings.SAMPLE_ROWS if sample_rows is None else sample_rows
        values = self.read_values(spreadsheet_id, sheet_name, max_rows=sample_rows + 1)
        headers, records = rows_to_records(values)
        return SheetColumns(columns=headers, sample_data=records[:sample_rows])

    def read_rows(self, spreadsheet_id: str, sheet_name: str) -> tuple[list[str], list[dict[str, Any]]]:
        return rows_to_records(self.read_values(spreadsheet_id, sheet_name))


def _quote_sheet(name: str) -> str:
    return "'" + name.replace("'", "''") + "'"


def _http_status(e: HttpError) -> int | None:
    status = getattr(e, "status_code", None)
    if status is None and getattr(e, "resp", None) is not None:
        status = getattr(e.resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def classify_http_error(e: HttpError) -> SheetAccessError:
    status = _http_status(e)
    text = str(e).lower()
    if status == 429 or "quota" in text or "rate limit" in text or "ratelimit" in text:
        return SheetAccessError(
            SheetErrorKind.QUOTA,
            "Google Sheets API quota exceeded. Try again in 1-2 minutes.",
        )
    if status == 403 or "permission" in text:
        return SheetAccessError(
            SheetErrorKind.PERMISSION,
            "No permission to read the spreadsheet. Share it with the service account.",
        )
    if status == 404 or "not found" in text:
        return SheetAccessError(
            SheetErrorKind.NOT_FOUND,
            "Spreadsheet not found. Check the spreadsheet ID.",
        )
    return SheetAccessError(SheetErrorKind.UNKNOWN, f"Google Sheets API error: {e}")


class GoogleSheetsReader(SheetReader):
    """Reads tabs through the Google Sheets v4 API with a service account."""

    SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]

    def __init__(
        self,
        credentials_path: str | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ) -> None:
        self._credentials_path = credentials_path or settings.GOOGLE_APPLICATION_CREDENTIALS
        self._max_retries = settings.SHEETS_MAX_RETRIES if max_retries is None else max_retries
        self._backoff_base = settings.SHEETS_BACKOFF_BASE if backoff_base is None else backoff_base
        self._credentials = None
        self._lock = threading.Lock()
        self._local = threading.local()

    def _get_credentials(self):
        with self._lock:
            if self._credentials is None:
                if not self._credentials_path or not Path(self._credentials_path).exists():
                    raise SheetAccessError(
                        SheetErrorKind.CREDENTIALS,
                        "Google Sheets API credentials not configured",
                    )
                self._credentials = service_account.Credentials.from_service_account_file(
                    self._credentials_path, scopes=self.SCOPES
                )
            return self._credentials

    def _spreadsheets(self):
        # httplib2 transports are not thread-safe: one service per worker thread
        service = getattr(self._local, "service", None)
        if service is None:
            service = build("sheets", "v4", credentials=self._get_credentials(), cache_discovery=False)
            self._local.service = service
        return service.spreadsheets()

    def _execute(self, request, what: str) -> dict:
        attempt = 0
        while True:
            try:
                return request.execute(num_retries=0)
            except HttpError as e:
                status = _http_status(e)
                if status in (429, 500, 502, 503, 504) and attempt < self._max_retries:
                    attempt += 1
                    sleep_s = self._backoff_base * (2 ** (attempt - 1)) + random.uniform(0, 0.5)
                    logger.warning(
                        "Sheets API %s on %s. Backoff %.2fs (attempt %d/%d).",
                        status, what, sleep_s, attempt, self._max_retries,
                    )
                    time.sleep(sleep_s)
                    continue
                raise classify_http_error(e) from e
            except OSError as e:
                raise SheetAccessError(
                    SheetErrorKind.NETWORK,
                    f"Network error while reading the spreadsheet: {e}",
                ) from e

    def list_sheets(self, spreadsheet_id: str) -> list[SheetInfo]:
        request = self._spreadsheets().get(
            spreadsheetId=spreadsheet_id,
            fields="sheets.properties(title,gridProperties)",
        )
        meta = self._execute(request, "spreadsheets.get")
        sheets: list[SheetInfo] = []
        total = 0
        for sheet in meta.get("sheets", []) or []:
            props = sheet.get("properties") or {}
            title = props.get("title")
            total += 1
            if not matches_sheet_prefix(title):
                continue
            grid_rows = (props.get("gridProperties") or {}).get("rowCount", 0) or 0
            sheets.append(SheetInfo(name=title, row_count=max(grid_rows - 1, 0)))
        logger.info(
            "Spreadsheet %s: %d tabs, %d match prefix %r",
            spreadsheet_id, total, len(sheets), settings.SHEET_NAME_PREFIX,
        )
        return sheets

    def read_values(self, spreadsheet_id: str, sheet_name: str, max_rows: int | None = None) -> list[list[Any]]:
        if max_rows:
            a1 = f"{_quote_sheet(sheet_name)}!A1:{FULL_RANGE_END}{max_rows}"
        else:
            a1 = f"{_quote_sheet(sheet_name)}!A:{FULL_RANGE_END}"
        request = self._spreadsheets().values().get(spreadsheetId=spreadsheet_id, range=a1)
        resp = self._execute(request, f"values.get({sheet_name})")
        return resp.get("values", []) or []


class ExcelSheetReader(SheetReader):
    """Reads tabs from ``.xlsx`` workbooks; the spreadsheet id is the file name."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base_dir = Path(base_dir or settings.EXCEL_DIR).resolve()

    def _path(self, spreadsheet_id: str) -> Path:
        path = (self._base_dir / spreadsheet_id).resolve()
        if path.parent != self._base_dir or not path.is_file():
            raise SheetAccessError(
                SheetErrorKind.NOT_FOUND,
                f"Workbook not found: {spreadsheet_id}",
            )
        return path

    def _open(self, spreadsheet_id: str):
        path = self._path(spreadsheet_id)
        try:
            return openpyxl.load_workbook(str(path), read_only=True, data_only=True)
        except PermissionError as e:
            raise SheetAccessError(SheetErrorKind.PERMISSION, f"Cannot open workbook: {e}") from e
        except (OSError, ValueError, KeyError) as e:
            raise SheetAccessError(SheetErrorKind.UNKNOWN, f"Cannot read workbook: {e}") from e

    def list_sheets(self, spreadsheet_id: str) -> list[SheetInfo]:
        wb = self._open(spreadsheet_id)
        try:
            return [
                SheetInfo(name=ws.title, row_count=max((ws.max_row or 0) - 1, 0))
                for ws in wb.worksheets
                if matches_sheet_prefix(ws.title)
            ]
        finally:
            wb.close()

    def read_values(self, spreadsheet_id: str, sheet_name: str, max_rows: int | None = None) -> list[list[Any]]:
        wb = self._open(spreadsheet_id)
        try:
            if sheet_name not in wb.sheetnames:
                raise SheetAccessError(
                    SheetErrorKind.NOT_FOUND,
                    f"Sheet '{sheet_name}' not found in {spreadsheet_id}",
                )
            ws = wb[sheet_name]
            return [list(row) for row in ws.iter_rows(max_row=max_rows, values_only=True)]
        finally:
            wb.close()


@lru_cache
def get_sheet_reader() -> SheetReader:
    """FastAPI dependency returning the configured spreadsheet source."""
    if settings.SHEET_SOURCE == "excel":
        return ExcelSheetReader()
    return GoogleSheetsReader()
