"""Sync router - Google Sheets to database synchronization."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy import inspect, select
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tour_sync.config import settings
from tour_sync.database import get_db, get_session_factory
from tour_sync.models.sync_log import SyncLog, SyncStatus
from tour_sync.schemas.common import ApiResponse
from tour_sync.schemas.events import encode_event
from tour_sync.schemas.sync import (
    SheetColumnsRequest,
    SheetColumns,
    SheetInfo,
    SheetsRequest,
    SyncHistory,
    SyncRequest,
    SyncResult,
    TableInfo,
    TableSchema,
)
from tour_sync.sheets.config import TABLE_DISPLAY_NAMES
from tour_sync.sheets.reader import SheetAccessError, SheetErrorKind, SheetReader, get_sheet_reader
from tour_sync.sheets.schema import describe_columns, is_sync_table, reflect_table
from tour_sync.sheets.sync import SyncManager
from tour_sync.utils.auth import require_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# --- Helpers ---

_ERROR_STATUS = {
    SheetErrorKind.QUOTA: 429,
    SheetErrorKind.PERMISSION: 403,
    SheetErrorKind.NOT_FOUND: 404,
    SheetErrorKind.NETWORK: 502,
    SheetErrorKind.CREDENTIALS: 500,
    SheetErrorKind.UNKNOWN: 502,
}


def _fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse.fail(message).model_dump(by_alias=True),
    )


def _sheet_error(e: SheetAccessError) -> JSONResponse:
    logger.warning("Sheet access failed (%s): %s", e.kind.value, e.message)
    return _fail(_ERROR_STATUS.get(e.kind, 502), e.message)


# --- Sheets ---

@router.post("/sheets")
async def list_sheets(
    body: SheetsRequest,
    reader: SheetReader = Depends(get_sheet_reader),
) -> ApiResponse[list[SheetInfo]]:
    """List the tabs offered for sync (name prefix filter applied)."""
    try:
        sheets = await asyncio.to_thread(reader.list_sheets, body.spreadsheet_id)
    except SheetAccessError as e:
        return _sheet_error(e)
    return ApiResponse.ok(sheets, count=len(sheets))


@router.post("/sheet-columns")
async def sheet_columns(
    body: SheetColumnsRequest,
    reader: SheetReader = Depends(get_sheet_reader),
) -> ApiResponse[SheetColumns]:
    try:
        data = await asyncio.to_thread(
            reader.read_header_and_sample, body.spreadsheet_id, body.sheet_name
        )
    except SheetAccessError as e:
        return _sheet_error(e)
    return ApiResponse.ok(data, count=len(data.columns))


# --- Tables ---

@router.get("/all-tables")
async def all_tables(db: AsyncSession = Depends(get_db)) -> ApiResponse[list[TableInfo]]:
    """Destination tables allowed for sync that exist in the database."""
    conn = await db.connection()
    existing = set(await conn.run_sync(lambda c: inspect(c).get_table_names()))
    tables = [
        TableInfo(name=name, display_name=TABLE_DISPLAY_NAMES.get(name))
        for name in settings.SYNC_TABLES
        if name in existing
    ]
    return ApiResponse.ok(tables, count=len(tables))


@router.get("/schema")
async def get_schema(
    table: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[TableSchema]:
    if not is_sync_table(table):
        return _fail(400, f"Table '{table}' is not allowed for sync")
    try:
        reflected = await reflect_table(db, table)
    except NoSuchTableError:
        return _fail(404, f"Table '{table}' does not exist")
    conn = await db.connection()
    columns = describe_columns(reflected, conn.dialect)
    return ApiResponse.ok(
        TableSchema(table_name=table, columns=columns, source="database"),
        count=len(columns),
    )


@router.get("/history")
async def sync_history(
    table: str = Query(..., min_length=1),
    spreadsheet_id: str = Query(..., min_length=1, alias="spreadsheetId"),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[SyncHistory]:
    """Time of the last successful sync of a table from a spreadsheet."""
    result = await db.execute(
        select(SyncLog.created_at)
        .where(
            SyncLog.target_table == table,
            SyncLog.spreadsheet_id == spreadsheet_id,
            SyncLog.status == SyncStatus.SUCCESS,
        )
        .order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
        .limit(1)
    )
    return ApiResponse.ok(SyncHistory(last_sync_time=result.scalar_one_or_none()))


# --- Sync ---

@router.post("/optimized", dependencies=[Depends(require_token)])
async def optimized_sync(
    body: SyncRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    reader: SheetReader = Depends(get_sheet_reader),
) -> SyncResult:
    """Sync the whole sheet in batches and answer once."""
    manager = SyncManager(session_factory, reader)
    return await manager.run_batched(body)


@router.post("/flexible/stream", dependencies=[Depends(require_token)])
async def flexible_stream(
    body: SyncRequest,
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    reader: SheetReader = Depends(get_sheet_reader),
) -> StreamingResponse:
    """Sync row by row, streaming progress as NDJSON events."""
    manager = SyncManager(session_factory, reader)

    async def _lines():
        async with aclosing(manager.stream(body, is_disconnected=request.is_disconnected)) as events:
            async for event in events:
                yield encode_event(event)

    return StreamingResponse(_lines(), media_type="application/x-ndjson")
