from tour_sync.sheets.mapper import get_auto_mapping, get_fallback_columns
from tour_sync.sheets.reader import (
    ExcelSheetReader,
    GoogleSheetsReader,
    SheetAccessError,
    SheetErrorKind,
    SheetReader,
    get_sheet_reader,
)
from tour_sync.sheets.sync import SyncManager

__all__ = [
    "ExcelSheetReader",
    "GoogleSheetsReader",
    "SheetAccessError",
    "SheetErrorKind",
    "SheetReader",
    "SyncManager",
    "get_auto_mapping",
    "get_fallback_columns",
    "get_sheet_reader",
]
