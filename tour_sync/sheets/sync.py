"""Sheet to database synchronization manager.

Reads one sheet tab, projects every row through the column mapping and
writes it into the destination table. ``stream`` yields typed events as it
goes; ``run_batched`` does the whole sheet in batches and returns a single
result.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tour_sync.config import settings
from tour_sync.models.sync_log import SyncLog, SyncMode, SyncStatus
from tour_sync.schemas import events
from tour_sync.schemas.events import ProgressEvent, ResultEvent, StartEvent
from tour_sync.schemas.sync import SyncDetails, SyncRequest, SyncResult
from tour_sync.sheets.config import optimal_batch_size
from tour_sync.sheets.mapper import coerce_record, column_kind, project_row, resolve_mapping
from tour_sync.sheets.reader import SheetAccessError, SheetReader
from tour_sync.sheets.schema import column_types, is_sync_table, natural_key_for, reflect_table

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Sync was cancelled."

# First data row in the sheet (row 1 is the header)
FIRST_DATA_ROW = 2


class SyncAbort(Exception):
    """The run cannot continue at all."""


@dataclass
class SyncCounters:
    total: int = 0
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors += 1
        if len(self.error_details) < settings.SYNC_ERROR_DETAIL_LIMIT:
            self.error_details.append(message)

    def progress(self) -> ProgressEvent:
        return ProgressEvent(
            processed=self.processed,
            inserted=self.inserted,
            updated=self.updated,
            skipped=self.skipped,
            errors=self.errors,
            total=self.total,
        )

    def details(self) -> SyncDetails:
        return SyncDetails(
            total=self.total,
            processed=self.processed,
            inserted=self.inserted,
            updated=self.updated,
            skipped=self.skipped,
            errors=self.errors,
            error_details=list(self.error_details),
        )

    def summary(self) -> str:
        return (
            f"Sync completed: {self.inserted} inserted, {self.updated} updated, "
            f"{self.skipped} skipped, {self.errors} errors"
        )


@dataclass
class SyncPlan:
    """Everything resolved before the first row is written."""

    table: Table
    mapping: dict[str, str]
    types: dict[str, str]
    key_column: str | None
    generate_key: bool
    rows: list[dict[str, Any]]
    warnings: list[str] = field(default_factory=list)


def _row_error(row_number: int, exc: Exception) -> str:
    if isinstance(exc, SQLAlchemyError):
        detail = getattr(exc, "orig", None) or exc
    else:
        detail = exc
    return f"Row {row_number}: {detail}"


def _same_value(current: Any, new: Any) -> bool:
    if isinstance(current, Decimal) and isinstance(new, (int, float)):
        return float(current) == float(new)
    if isinstance(current, datetime) and isinstance(new, datetime):
        if (current.tzinfo is None) != (new.tzinfo is None):
            return current.replace(tzinfo=None) == new.replace(tzinfo=None)
    return current == new


def _is_unchanged(existing: dict[str, Any], record: dict[str, Any]) -> bool:
    return all(
        name in existing and _same_value(existing[name], value)
        for name, value in record.items()
    )


def progress_interval(total: int) -> int:
    """How many rows between progress events (and commits)."""
    if settings.SYNC_PROGRESS_EVERY > 0:
        return settings.SYNC_PROGRESS_EVERY
    return max(1, min(100, total // 20))


# Finishers of interrupted runs, referenced until they complete
_finishers: set[asyncio.Task] = set()


async def _run_detached(coro: Awaitable[None]) -> None:
    """Run ``coro`` to the end even when the awaiting task is cancelled."""
    task = asyncio.ensure_future(coro)
    _finishers.add(task)
    task.add_done_callback(_finishers.discard)
    await asyncio.shield(task)


class SyncManager:
    """Writes sheet rows into a destination table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reader: SheetReader,
    ) -> None:
        self._session_factory = session_factory
        self._reader = reader

    # --- Preparation ---

    async def _read_sheet(self, request: SyncRequest) -> tuple[list[str], list[dict[str, Any]]]:
        try:
            return await asyncio.to_thread(
                self._reader.read_rows, request.spreadsheet_id, request.sheet_name
            )
        except SheetAccessError as e:
            raise SyncAbort(f"Cannot read sheet '{request.sheet_name}': {e.message}") from e

    async def _prepare(self, session: AsyncSession, request: SyncRequest) -> SyncPlan:
        if not is_sync_table(request.target_table):
            raise SyncAbort(f"Table '{request.target_table}' is not allowed for sync")

        headers, rows = await self._read_sheet(request)

        try:
            table = await reflect_table(session, request.target_table)
        except NoSuchTableError as e:
            raise SyncAbort(f"Table '{request.target_table}' does not exist") from e
        except SQLAlchemyError as e:
            raise SyncAbort(f"Cannot read the schema of '{request.target_table}': {e}") from e

        mapping, warnings = resolve_mapping(request.column_mapping, table.columns.keys(), headers)
        if not mapping:
            raise SyncAbort("No usable column mapping: map at least one sheet column")

        key_column: str | None = natural_key_for(request.target_table)
        if key_column not in table.columns:
            pk = list(table.primary_key.columns)
            key_column = pk[0].name if len(pk) == 1 else None

        conn = await session.connection()
        types = column_types(table, conn.dialect)
        generate_key = key_column == "id" and column_kind(types.get(key_column)) == "text"
        if key_column is not None and key_column not in mapping:
            warnings.append(
                f"Key column '{key_column}' is not mapped; every row will be inserted"
            )

        return SyncPlan(
            table=table,
            mapping=mapping,
            types=types,
            key_column=key_column,
            generate_key=generate_key,
            rows=rows,
            warnings=warnings,
        )

    def _build_record(self, plan: SyncPlan, row: dict[str, Any]) -> dict[str, Any]:
        """Project and coerce one sheet row. Raises ValueError on bad cells."""
        return coerce_record(project_row(row, plan.mapping), plan.types)

    def _stamp_insert(self, plan: SyncPlan, record: dict[str, Any]) -> dict[str, Any]:
        values = dict(record)
        if plan.key_column and values.get(plan.key_column) is None and plan.generate_key:
            values[plan.key_column] = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        for name in ("created_at", "updated_at"):
            if name in plan.table.columns and name not in plan.mapping:
                values[name] = now
        return values

    def _stamp_update(self, plan: SyncPlan, record: dict[str, Any]) -> dict[str, Any]:
        values = dict(record)
        if "updated_at" in plan.table.columns and "updated_at" not in plan.mapping:
            values["updated_at"] = datetime.now(timezone.utc)
        return values

    # --- Row writes ---

    async def _write_row(
        self,
        session: AsyncSession,
        plan: SyncPlan,
        record: dict[str, Any],
        truncate: bool,
        incremental: bool,
    ) -> str:
        """Insert or update one record. Returns "inserted", "updated" or "skipped"."""
        table = plan.table
        key = plan.key_column
        key_value = record.get(key) if key else None

        if not truncate and key_value is not None:
            result = await session.execute(select(table).where(table.c[key] == key_value))
            existing = result.mappings().first()
            if existing is not None:
                if incremental and _is_unchanged(dict(existing), record):
                    return "skipped"
                values = self._stamp_update(plan, record)
                values.pop(key, None)
                if values:
                    await session.execute(
                        update(table).where(table.c[key] == key_value).values(**values)
                    )
                return "updated"

        await session.execute(insert(table).values(**self._stamp_insert(plan, record)))
        return "inserted"

    # --- Streaming sync ---

    async def stream(
        self,
        request: SyncRequest,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator:
        """Run a sync and yield its events.

        Exactly one ``start`` precedes any ``progress`` and exactly one
        ``result`` is yielded last. Rows that fail are reported and skipped;
        everything committed before a cancellation stays.
        """
        mode = (
            SyncMode.TRUNCATE if request.truncate_table
            else SyncMode.INCREMENTAL if request.enable_incremental_sync
            else SyncMode.UPSERT
        )
        counters = SyncCounters()
        status = SyncStatus.FAILED
        message = ""
        logger.info(
            "Sync start: %s/%s -> %s (%s)",
            request.spreadsheet_id, request.sheet_name, request.target_table, mode.value,
        )

        failure: str | None = None
        cancelled = False
        session = self._session_factory()
        try:
            yield events.info(f"Reading sheet '{request.sheet_name}'")
            plan = await self._prepare(session, request)
            for warning in plan.warnings:
                yield events.warn(warning)

            counters.total = len(plan.rows)
            yield StartEvent(total=counters.total)
            yield events.info(
                f"Syncing {counters.total} rows into '{request.target_table}' "
                f"({len(plan.mapping)} mapped columns)"
            )

            if request.truncate_table:
                try:
                    await session.execute(delete(plan.table))
                except SQLAlchemyError as e:
                    raise SyncAbort(f"Failed to empty '{request.target_table}': {e}") from e
                yield events.info(f"Emptied '{request.target_table}' before loading")

            every = progress_interval(counters.total)
            for offset, row in enumerate(plan.rows):
                if is_disconnected is not None and await is_disconnected():
                    cancelled = True
                    break

                row_number = offset + FIRST_DATA_ROW
                try:
                    record = self._build_record(plan, row)
                    async with session.begin_nested():
                        outcome = await self._write_row(
                            session,
                            plan,
                            record,
                            truncate=request.truncate_table,
                            incremental=request.enable_incremental_sync,
                        )
                except (ValueError, SQLAlchemyError) as e:
                    error_message = _row_error(row_number, e)
                    counters.add_error(error_message)
                    yield events.error(error_message)
                else:
                    if outcome == "inserted":
                        counters.inserted += 1
                    elif outcome == "updated":
                        counters.updated += 1
                    else:
                        counters.skipped += 1

                counters.processed += 1
                if counters.processed % every == 0 or counters.processed == counters.total:
                    await session.commit()
                    yield counters.progress()

            await session.commit()
        except (asyncio.CancelledError, GeneratorExit):
            # The client went away: the response task is cancelled or the
            # generator is closed, so nothing more can be yielded.
            logger.info(
                "Sync interrupted after %d/%d rows: client disconnected",
                counters.processed, counters.total,
            )
            await _run_detached(self._finish_interrupted(session, request, mode, counters))
            raise
        except SyncAbort as e:
            failure = str(e)
            logger.warning("Sync aborted: %s", failure)
        except SQLAlchemyError as e:
            failure = f"Database error: {e}"
            logger.exception("Sync failed for %s", request.target_table)
        except Exception as e:
            failure = f"Unexpected error: {e}"
            logger.exception("Sync failed for %s", request.target_table)
        await session.close()

        if failure is not None:
            message = failure
        elif cancelled:
            status = SyncStatus.CANCELLED
            message = CANCELLED_MESSAGE
            logger.info(
                "Sync cancelled by client after %d/%d rows",
                counters.processed, counters.total,
            )
        else:
            status = SyncStatus.SUCCESS
            message = counters.summary()

        await self._log_sync(request, mode, status, counters, message)
        if failure is not None:
            yield events.error(message)
        yield ResultEvent(
            success=status == SyncStatus.SUCCESS,
            message=message,
            details=counters.details(),
        )

    async def _finish_interrupted(
        self,
        session: AsyncSession,
        request: SyncRequest,
        mode: SyncMode,
        counters: SyncCounters,
    ) -> None:
        """Keep the rows written so far and record the run as cancelled."""
        try:
            await session.commit()
        except SQLAlchemyError:
            logger.exception("Could not commit the last rows of the interrupted sync of %s", request.target_table)
        finally:
            await session.close()
        await self._log_sync(request, mode, SyncStatus.CANCELLED, counters, CANCELLED_MESSAGE)

    # --- Optimized sync ---

    async def run_batched(self, request: SyncRequest) -> SyncResult:
        """Sync the whole sheet in batches and return one result."""
        counters = SyncCounters()
        try:
            async with self._session_factory() as session:
                plan = await self._prepare(session, request)
                for warning in plan.warnings:
                    logger.warning("Optimized sync: %s", warning)

                counters.total = len(plan.rows)
                if request.truncate_table:
                    await session.execute(delete(plan.table))

                prepared: list[tuple[int, dict[str, Any]]] = []
                for offset, row in enumerate(plan.rows):
                    row_number = offset + FIRST_DATA_ROW
                    try:
                        prepared.append((row_number, self._build_record(plan, row)))
                    except ValueError as e:
                        counters.add_error(_row_error(row_number, e))
                        counters.processed += 1

                batch_size = optimal_batch_size(counters.total)
                for start in range(0, len(prepared), batch_size):
                    batch = prepared[start:start + batch_size]
                    await self._apply_with_fallback(session, plan, request, batch, counters, batch_size)
                    await session.commit()
                    logger.info(
                        "Optimized sync %s: %d/%d rows",
                        request.target_table, counters.processed, counters.total,
                    )
                await session.commit()
        except SyncAbort as e:
            await self._log_sync(request, SyncMode.OPTIMIZED, SyncStatus.FAILED, counters, str(e))
            return SyncResult(success=False, message=str(e), data=counters.details(), count=0)
        except SQLAlchemyError as e:
            logger.exception("Optimized sync failed for %s", request.target_table)
            message = f"Database error: {e}"
            await self._log_sync(request, SyncMode.OPTIMIZED, SyncStatus.FAILED, counters, message)
            return SyncResult(success=False, message=message, data=counters.details(), count=counters.processed)

        message = counters.summary()
        await self._log_sync(request, SyncMode.OPTIMIZED, SyncStatus.SUCCESS, counters, message)
        return SyncResult(
            success=True,
            message=message,
            data=counters.details(),
            count=counters.processed,
            sync_time=datetime.now(timezone.utc),
        )

    async def _apply_with_fallback(
        self,
        session: AsyncSession,
        plan: SyncPlan,
        request: SyncRequest,
        batch: list[tuple[int, dict[str, Any]]],
        counters: SyncCounters,
        batch_size: int,
    ) -> None:
        """Write a batch; on failure retry in mini-batches, then row by row."""
        try:
            async with session.begin_nested():
                outcome = await self._apply_batch(session, plan, request, batch)
        except SQLAlchemyError as e:
            logger.warning("Batch of %d rows failed (%s); retrying in mini-batches", len(batch), e)
        else:
            self._count(counters, outcome, len(batch))
            return

        mini_size = 25 if batch_size >= 400 else 10
        for start in range(0, len(batch), mini_size):
            mini = batch[start:start + mini_size]
            try:
                async with session.begin_nested():
                    outcome = await self._apply_batch(session, plan, request, mini)
            except SQLAlchemyError:
                for row_number, record in mini:
                    try:
                        async with session.begin_nested():
                            single = await self._apply_batch(session, plan, request, [(row_number, record)])
                    except SQLAlchemyError as e:
                        counters.add_error(_row_error(row_number, e))
                        counters.processed += 1
                    else:
                        self._count(counters, single, 1)
            else:
                self._count(counters, outcome, len(mini))

    @staticmethod
    def _count(counters: SyncCounters, outcome: dict[str, int], rows: int) -> None:
        counters.inserted += outcome["inserted"]
        counters.updated += outcome["updated"]
        counters.skipped += outcome["skipped"]
        counters.processed += rows

    async def _apply_batch(
        self,
        session: AsyncSession,
        plan: SyncPlan,
        request: SyncRequest,
        batch: list[tuple[int, dict[str, Any]]],
    ) -> dict[str, int]:
        table = plan.table
        key = plan.key_column
        outcome = {"inserted": 0, "updated": 0, "skipped": 0}

        existing: dict[Any, dict[str, Any]] = {}
        if key and not request.truncate_table:
            keys = {record[key] for _, record in batch if record.get(key) is not None}
            if keys:
                result = await session.execute(select(table).where(table.c[key].in_(list(keys))))
                existing = {row[key]: dict(row) for row in result.mappings()}

        inserts: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        updates: list[tuple[Any, dict[str, Any]]] = []
        seen: set[Any] = set(existing)
        for _, record in batch:
            key_value = record.get(key) if key else None
            if key_value is not None and key_value in seen and not request.truncate_table:
                current = existing.get(key_value)
                if (
                    request.enable_incremental_sync
                    and current is not None
                    and _is_unchanged(current, record)
                ):
                    outcome["skipped"] += 1
                    continue
                updates.append((key_value, self._stamp_update(plan, record)))
                outcome["updated"] += 1
                continue
            values = self._stamp_insert(plan, record)
            inserts.setdefault(tuple(sorted(values)), []).append(values)
            if key_value is not None:
                seen.add(key_value)
            outcome["inserted"] += 1

        for rows in inserts.values():
            await session.execute(insert(table), rows)
        for key_value, values in updates:
            values.pop(key, None)
            if values:
                await session.execute(update(table).where(table.c[key] == key_value).values(**values))
        return outcome

    # --- History ---

    async def _log_sync(
        self,
        request: SyncRequest,
        mode: SyncMode,
        status: SyncStatus,
        counters: SyncCounters,
        message: str,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                SyncLog(
                    target_table=request.target_table,
                    spreadsheet_id=request.spreadsheet_id,
                    sheet_name=request.sheet_name,
                    mode=mode,
                    status=status,
                    rows_total=counters.total,
                    inserted=counters.inserted,
                    updated=counters.updated,
                    skipped=counters.skipped,
                    errors=counters.errors,
                    message=message[:1000] if message else None,
                )
            )
            await session.commit()
