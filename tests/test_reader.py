"""Tests for the spreadsheet sources."""

from __future__ import annotations

import threading

import openpyxl
import pytest
from googleapiclient.errors import HttpError

from tour_sync.sheets import reader as reader_module
from tour_sync.sheets.reader import (
    ExcelSheetReader,
    GoogleSheetsReader,
    SheetAccessError,
    SheetErrorKind,
    classify_http_error,
    matches_sheet_prefix,
    rows_to_records,
)


class _Resp:
    def __init__(self, status: int, reason: str = "error") -> None:
        self.status = status
        self.reason = reason


def _http_error(status: int, message: str = "failed") -> HttpError:
    content = ('{"error": {"message": "%s"}}' % message).encode()
    return HttpError(_Resp(status), content)


class _Request:
    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    def execute(self, num_retries: int = 0):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _Spreadsheets:
    def __init__(self, meta_request: _Request) -> None:
        self.meta_request = meta_request

    def get(self, spreadsheetId, fields=None):
        return self.meta_request


class _Service:
    def __init__(self, spreadsheets: _Spreadsheets) -> None:
        self._spreadsheets = spreadsheets

    def spreadsheets(self):
        return self._spreadsheets


def _google_reader(spreadsheets: _Spreadsheets, max_retries: int = 3) -> GoogleSheetsReader:
    google = GoogleSheetsReader(credentials_path="unused.json", max_retries=max_retries, backoff_base=0)
    google._local.service = _Service(spreadsheets)
    return google


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(reader_module.time, "sleep", lambda _s: None)


class TestRowsToRecords:
    def test_header_and_rows(self):
        headers, records = rows_to_records([
            ["ID", " Name ", None, "Price"],
            ["P1", "  Canyon ", "x", 10],
            ["P2"],
            ["", "", "", None],
        ])
        assert headers == ["ID", "Name", "Price"]
        assert records == [
            {"ID": "P1", "Name": "Canyon", "Price": 10},
            {"ID": "P2", "Name": "", "Price": ""},
        ]

    def test_empty_grid(self):
        assert rows_to_records([]) == ([], [])

    @pytest.mark.parametrize(
        "name, expected",
        [("S_Customers", True), ("s_tours", True), ("Notes", False), ("", False), (None, False)],
    )
    def test_prefix(self, name, expected):
        assert matches_sheet_prefix(name, "S") is expected


class TestClassifyHttpError:
    @pytest.mark.parametrize(
        "status, kind",
        [
            (429, SheetErrorKind.QUOTA),
            (403, SheetErrorKind.PERMISSION),
            (404, SheetErrorKind.NOT_FOUND),
            (500, SheetErrorKind.UNKNOWN),
        ],
    )
    def test_status(self, status, kind):
        assert classify_http_error(_http_error(status)).kind is kind

    def test_quota_in_message(self):
        error = classify_http_error(_http_error(400, "Quota exceeded for quota metric"))
        assert error.kind is SheetErrorKind.QUOTA


class TestGoogleSheetsReader:
    def test_list_sheets_filters_prefix(self):
        meta = {
            "sheets": [
                {"properties": {"title": "S_Customers", "gridProperties": {"rowCount": 101}}},
                {"properties": {"title": "Summary", "gridProperties": {"rowCount": 5}}},
                {"properties": {"title": "Notes", "gridProperties": {"rowCount": 5}}},
            ]
        }
        google = _google_reader(_Spreadsheets(_Request([meta])))
        sheets = google.list_sheets("sheet-123")
        assert [(s.name, s.row_count) for s in sheets] == [("S_Customers", 100), ("Summary", 4)]

    def test_retries_rate_limit(self):
        request = _Request([_http_error(429), _http_error(503), {"sheets": []}])
        assert _google_reader(_Spreadsheets(request)).list_sheets("x") == []
        assert request.calls == 3

    def test_gives_up_after_max_retries(self):
        request = _Request([_http_error(429)] * 3)
        with pytest.raises(SheetAccessError) as exc_info:
            _google_reader(_Spreadsheets(request), max_retries=2).list_sheets("x")
        assert exc_info.value.kind is SheetErrorKind.QUOTA
        assert request.calls == 3

    def test_permission_not_retried(self):
        request = _Request([_http_error(403)])
        with pytest.raises(SheetAccessError) as exc_info:
            _google_reader(_Spreadsheets(request)).list_sheets("x")
        assert exc_info.value.kind is SheetErrorKind.PERMISSION
        assert request.calls == 1

    def test_network_error(self):
        request = _Request([ConnectionResetError("reset")])
        with pytest.raises(SheetAccessError) as exc_info:
            _google_reader(_Spreadsheets(request)).list_sheets("x")
        assert exc_info.value.kind is SheetErrorKind.NETWORK

    def test_each_thread_builds_its_own_service(self, monkeypatch):
        built: list[_Service] = []

        def fake_build(*args, **kwargs):
            service = _Service(_Spreadsheets(_Request([])))
            built.append(service)
            return service

        monkeypatch.setattr(reader_module, "build", fake_build)
        google = GoogleSheetsReader(credentials_path="unused.json")
        google._credentials = object()
        seen: dict[str, list[int]] = {}

        def worker(name: str) -> None:
            seen[name] = [id(google._spreadsheets()) for _ in range(2)]

        threads = [threading.Thread(target=worker, args=(name,)) for name in ("a", "b")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(built) == 2
        assert seen["a"][0] == seen["a"][1]
        assert seen["b"][0] == seen["b"][1]
        assert seen["a"][0] != seen["b"][0]

    def test_missing_credentials(self, tmp_path):
        google = GoogleSheetsReader(credentials_path=str(tmp_path / "missing.json"))
        with pytest.raises(SheetAccessError) as exc_info:
            google.list_sheets("x")
        assert exc_info.value.kind is SheetErrorKind.CREDENTIALS


class TestExcelSheetReader:
    @pytest.fixture
    def workbook_dir(self, tmp_path):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "S_Products"
        ws.append(["ID", "Name KO", "Base Price"])
        ws.append(["P1", "그랜드캐년", 120.5])
        ws.append(["P2", "앤텔롭", 99])
        wb.create_sheet("Notes").append(["memo"])
        wb.save(tmp_path / "ops.xlsx")
        return tmp_path

    def test_list_sheets(self, workbook_dir):
        sheets = ExcelSheetReader(workbook_dir).list_sheets("ops.xlsx")
        assert [(s.name, s.row_count) for s in sheets] == [("S_Products", 2)]

    def test_read_rows(self, workbook_dir):
        headers, records = ExcelSheetReader(workbook_dir).read_rows("ops.xlsx", "S_Products")
        assert headers == ["ID", "Name KO", "Base Price"]
        assert records[0] == {"ID": "P1", "Name KO": "그랜드캐년", "Base Price": 120.5}

    def test_header_and_sample(self, workbook_dir):
        data = ExcelSheetReader(workbook_dir).read_header_and_sample("ops.xlsx", "S_Products", sample_rows=1)
        assert data.columns == ["ID", "Name KO", "Base Price"]
        assert len(data.sample_data) == 1

    def test_missing_sheet(self, workbook_dir):
        with pytest.raises(SheetAccessError) as exc_info:
            ExcelSheetReader(workbook_dir).read_values("ops.xlsx", "S_Missing")
        assert exc_info.value.kind is SheetErrorKind.NOT_FOUND

    def test_path_outside_base_dir(self, workbook_dir):
        with pytest.raises(SheetAccessError):
            ExcelSheetReader(workbook_dir / "sub").list_sheets("../ops.xlsx")
