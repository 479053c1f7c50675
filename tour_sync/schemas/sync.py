from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire models use camelCase names; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Sheets ---

class SheetInfo(CamelModel):
    name: str
    columns: list[str] = Field(default_factory=list)
    sample_data: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0


class SheetsRequest(CamelModel):
    spreadsheet_id: str = Field(..., min_length=1)


class SheetColumnsRequest(CamelModel):
    spreadsheet_id: str = Field(..., min_length=1)
    sheet_name: str = Field(..., min_length=1)


class SheetColumns(CamelModel):
    columns: list[str]
    sample_data: list[dict[str, Any]]


# --- Tables ---

class TableInfo(CamelModel):
    name: str
    display_name: str | None = None


class ColumnInfo(CamelModel):
    name: str
    type: str = "text"
    nullable: bool = True
    default: str | None = None
    primary_key: bool = False


class TableSchema(CamelModel):
    table_name: str
    columns: list[ColumnInfo]
    source: str


# --- Sync ---

class SyncRequest(CamelModel):
    spreadsheet_id: str = Field(..., min_length=1)
    sheet_name: str = Field(..., min_length=1)
    target_table: str = Field(..., min_length=1)
    # destination column -> source sheet header
    column_mapping: dict[str, str] = Field(default_factory=dict)
    enable_incremental_sync: bool = False
    truncate_table: bool = False


class SyncDetails(CamelModel):
    total: int = 0
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: list[str] = Field(default_factory=list)


class SyncResult(CamelModel):
    success: bool
    message: str
    data: SyncDetails | None = None
    count: int | None = None
    sync_time: datetime | None = None


class RealTimeStats(CamelModel):
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    skipped: int = 0


class SyncHistory(CamelModel):
    last_sync_time: datetime | None = None


class CleanupStatus(CamelModel):
    needs_cleanup: bool
    pending: int
    by_product: dict[str, int] = Field(default_factory=dict)
