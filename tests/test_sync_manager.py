"""Tests for the streaming and batched sheet sync."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from tests.conftest import CUSTOMER_MAPPING, SPREADSHEET_ID, customer_rows
from tour_sync.models import Customer, Product, SyncLog
from tour_sync.models.sync_log import SyncMode, SyncStatus
from tour_sync.schemas.events import LogEvent, ProgressEvent, ResultEvent, StartEvent
from tour_sync.schemas.sync import SyncRequest
from tour_sync.sheets.config import optimal_batch_size
from tour_sync.sheets.reader import SheetAccessError, SheetErrorKind
from tour_sync.sheets.sync import CANCELLED_MESSAGE, SyncManager


def _request(**overrides) -> SyncRequest:
    fields = {
        "spreadsheet_id": SPREADSHEET_ID,
        "sheet_name": "S_Customers",
        "target_table": "customers",
        "column_mapping": CUSTOMER_MAPPING,
    }
    fields.update(overrides)
    return SyncRequest(**fields)


async def _collect(manager: SyncManager, request: SyncRequest, is_disconnected=None) -> list:
    return [event async for event in manager.stream(request, is_disconnected=is_disconnected)]


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestStreamOrdering:
    async def test_start_first_result_last(self, session_factory, reader):
        events = await _collect(SyncManager(session_factory, reader), _request())

        kinds = [type(e) for e in events]
        assert kinds.count(StartEvent) == 1
        assert kinds.count(ResultEvent) == 1
        assert isinstance(events[-1], ResultEvent)
        start_at = kinds.index(StartEvent)
        assert all(
            i > start_at for i, e in enumerate(events) if isinstance(e, ProgressEvent)
        )

    async def test_progress_is_monotonic_and_bounded(self, session_factory, reader):
        reader.sheets["S_Customers"] = customer_rows(60, duplicate_rows=(7,))
        events = await _collect(SyncManager(session_factory, reader), _request())

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert progress
        processed = [p.processed for p in progress]
        assert processed == sorted(processed)
        for p in progress:
            assert p.inserted + p.updated + p.errors + p.skipped <= p.processed
        assert progress[-1].processed == 60


class TestPartialFailure:
    async def test_unique_violations_do_not_stop_the_run(self, session_factory, reader):
        reader.sheets["S_Customers"] = customer_rows(100, duplicate_rows=(10, 55))
        events = await _collect(SyncManager(session_factory, reader), _request())

        result = events[-1]
        assert result.success is True
        assert result.details.errors == 2
        assert result.details.inserted + result.details.updated == 98
        assert result.details.processed == 100
        errors = [e for e in events if isinstance(e, LogEvent) and e.type == "error"]
        assert [e.message.split(":")[0] for e in errors] == ["Row 11", "Row 56"]
        assert await _count(session_factory, Customer) == 98

    async def test_bad_cell_is_a_row_error(self, session_factory, reader):
        request = _request(
            sheet_name="S_Products",
            target_table="products",
            column_mapping={"id": "ID", "name_ko": "Name KO", "base_price": "Base Price"},
        )
        events = await _collect(SyncManager(session_factory, reader), request)

        result = events[-1]
        assert result.success is True
        assert result.details.inserted == 1
        assert result.details.errors == 1
        assert "base_price" in result.details.error_details[0]
        async with session_factory() as session:
            product = await session.get(Product, "P1")
        assert float(product.base_price) == 120.5


class TestModes:
    async def test_second_run_updates(self, session_factory, reader):
        manager = SyncManager(session_factory, reader)
        await _collect(manager, _request())
        reader.sheets["S_Customers"][1][1] = "Renamed"

        result = (await _collect(manager, _request()))[-1]

        assert result.details.updated == 10
        assert result.details.inserted == 0
        async with session_factory() as session:
            customer = await session.get(Customer, "C001")
        assert customer.name == "Renamed"

    async def test_incremental_skips_unchanged_rows(self, session_factory, reader):
        manager = SyncManager(session_factory, reader)
        await _collect(manager, _request())
        reader.sheets["S_Customers"][1][1] = "Renamed"

        result = (await _collect(manager, _request(enable_incremental_sync=True)))[-1]

        assert result.details.updated == 1
        assert result.details.skipped == 9

    async def test_truncate_empties_table_first(self, session_factory, reader):
        async with session_factory() as session:
            session.add(Customer(id="OLD", name="Old customer"))
            await session.commit()

        result = (await _collect(SyncManager(session_factory, reader), _request(truncate_table=True)))[-1]

        assert result.success is True
        assert result.details.inserted == 10
        async with session_factory() as session:
            assert await session.get(Customer, "OLD") is None
        assert await _count(session_factory, Customer) == 10

    async def test_missing_key_generates_id(self, session_factory, reader):
        mapping = {"name": "Name", "email": "Email"}
        result = (await _collect(SyncManager(session_factory, reader), _request(column_mapping=mapping)))[-1]

        assert result.details.inserted == 10
        async with session_factory() as session:
            ids = (await session.execute(select(Customer.id))).scalars().all()
        assert len(set(ids)) == 10

    async def test_team_uses_email_as_key(self, session_factory, reader):
        reader.sheets["S_Team"] = [
            ["Email", "Name KO", "Position"],
            ["guide@example.com", "김가이드", "guide"],
        ]
        request = _request(
            sheet_name="S_Team",
            target_table="team",
            column_mapping={"email": "Email", "name_ko": "Name KO", "position": "Position"},
        )
        manager = SyncManager(session_factory, reader)
        await _collect(manager, request)
        result = (await _collect(manager, request))[-1]

        assert result.details.updated == 1


class TestWholeRunFailures:
    async def test_table_not_allowed(self, session_factory, reader):
        events = await _collect(SyncManager(session_factory, reader), _request(target_table="api_tokens"))

        assert not any(isinstance(e, StartEvent) for e in events)
        assert events[-2].type == "error"
        assert events[-1].success is False
        assert "not allowed" in events[-1].message

    async def test_unreadable_sheet(self, session_factory, reader):
        reader.error = SheetAccessError(SheetErrorKind.PERMISSION, "No permission")
        result = (await _collect(SyncManager(session_factory, reader), _request()))[-1]

        assert result.success is False
        assert "No permission" in result.message

    async def test_no_usable_mapping(self, session_factory, reader):
        result = (
            await _collect(
                SyncManager(session_factory, reader),
                _request(column_mapping={"name": "Missing Header"}),
            )
        )[-1]

        assert result.success is False
        assert "mapping" in result.message

    async def test_failed_run_is_logged(self, session_factory, reader):
        await _collect(SyncManager(session_factory, reader), _request(target_table="nope"))

        async with session_factory() as session:
            log = (await session.execute(select(SyncLog))).scalar_one()
        assert log.status == SyncStatus.FAILED


class TestCancellation:
    async def test_disconnect_stops_and_keeps_committed_rows(self, session_factory, reader):
        reader.sheets["S_Customers"] = customer_rows(100)
        calls = 0

        async def is_disconnected() -> bool:
            nonlocal calls
            calls += 1
            return calls > 5

        events = await _collect(SyncManager(session_factory, reader), _request(), is_disconnected)

        result = events[-1]
        assert result.success is False
        assert result.message == CANCELLED_MESSAGE
        assert result.details.processed == 5
        assert await _count(session_factory, Customer) == 5
        async with session_factory() as session:
            log = (await session.execute(select(SyncLog))).scalar_one()
        assert log.status == SyncStatus.CANCELLED

    async def _interrupted_log(self, session_factory) -> SyncLog:
        async with session_factory() as session:
            return (await session.execute(select(SyncLog))).scalar_one()

    async def test_cancelled_task_logs_the_run(self, session_factory, reader):
        reader.sheets["S_Customers"] = customer_rows(100)
        stream = SyncManager(session_factory, reader).stream(_request())

        async def consume() -> None:
            seen = 0
            async for event in stream:
                if isinstance(event, ProgressEvent):
                    seen += 1
                    if seen == 3:
                        asyncio.current_task().cancel()

        with pytest.raises(asyncio.CancelledError):
            await asyncio.create_task(consume())

        log = await self._interrupted_log(session_factory)
        assert log.status == SyncStatus.CANCELLED
        assert log.message == CANCELLED_MESSAGE
        assert log.inserted >= 15
        assert 15 <= await _count(session_factory, Customer) < 100

    async def test_closed_stream_logs_the_run(self, session_factory, reader):
        reader.sheets["S_Customers"] = customer_rows(100)
        stream = SyncManager(session_factory, reader).stream(_request())

        seen = 0
        async for event in stream:
            if isinstance(event, ProgressEvent):
                seen += 1
                if seen == 3:
                    break
        await stream.aclose()

        log = await self._interrupted_log(session_factory)
        assert log.status == SyncStatus.CANCELLED
        assert log.rows_total == 100
        assert await _count(session_factory, Customer) == 15


class TestBatchedSync:
    async def test_batch_falls_back_to_smaller_writes(self, session_factory, reader):
        reader.sheets["S_Customers"] = customer_rows(100, duplicate_rows=(10, 55))

        result = await SyncManager(session_factory, reader).run_batched(_request())

        assert result.success is True
        assert result.count == 100
        assert result.data.inserted == 98
        assert result.data.errors == 2
        assert await _count(session_factory, Customer) == 98

    async def test_rerun_updates_existing_rows(self, session_factory, reader):
        manager = SyncManager(session_factory, reader)
        await manager.run_batched(_request())

        result = await manager.run_batched(_request())

        assert result.data.updated == 10
        assert result.data.inserted == 0

    async def test_logged_as_optimized(self, session_factory, reader):
        await SyncManager(session_factory, reader).run_batched(_request())

        async with session_factory() as session:
            log = (await session.execute(select(SyncLog))).scalar_one()
        assert log.mode == SyncMode.OPTIMIZED
        assert log.status == SyncStatus.SUCCESS
        assert log.inserted == 10

    async def test_not_allowed_table(self, session_factory, reader):
        result = await SyncManager(session_factory, reader).run_batched(_request(target_table="sync_log"))

        assert result.success is False
        assert result.count == 0


@pytest.mark.parametrize(
    "rows, expected",
    [(0, 200), (5000, 200), (5001, 400), (12000, 500), (30000, 800), (60000, 1000)],
)
def test_optimal_batch_size(rows, expected):
    assert optimal_batch_size(rows) == expected
