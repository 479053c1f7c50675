"""Shared pytest fixtures."""

from __future__ import annotations

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tour_sync.config import settings
from tour_sync.database import build_engine, get_db, get_session_factory, init_db
from tour_sync.main import app
from tour_sync.schemas.sync import SheetInfo
from tour_sync.sheets.reader import SheetAccessError, SheetReader, get_sheet_reader, matches_sheet_prefix
from tour_sync.utils.auth import clear_token_cache, seed_api_token

API_TOKEN = "test-token-0123456789"
SPREADSHEET_ID = "sheet-123"


class FakeSheetReader(SheetReader):
    """In-memory spreadsheet: tab name -> value grid (first row is the header)."""

    def __init__(self, sheets: dict[str, list[list]] | None = None) -> None:
        self.sheets = dict(sheets or {})
        self.error: SheetAccessError | None = None
        self.calls: list[tuple[str, str | None]] = []

    def list_sheets(self, spreadsheet_id: str) -> list[SheetInfo]:
        self.calls.append(("list_sheets", None))
        if self.error is not None:
            raise self.error
        return [
            SheetInfo(name=name, row_count=max(len(values) - 1, 0))
            for name, values in self.sheets.items()
            if matches_sheet_prefix(name)
        ]

    def read_values(self, spreadsheet_id: str, sheet_name: str, max_rows: int | None = None) -> list[list]:
        self.calls.append(("read_values", sheet_name))
        if self.error is not None:
            raise self.error
        values = self.sheets[sheet_name]
        return values[:max_rows] if max_rows else values


def customer_rows(count: int, duplicate_rows: tuple[int, ...] = ()) -> list[list]:
    """Customer sheet; the data rows listed in ``duplicate_rows`` reuse row 1's email."""
    values = [["ID", "Name", "Email", "Phone"]]
    for i in range(1, count + 1):
        email = "user1@example.com" if i in duplicate_rows else f"user{i}@example.com"
        values.append([f"C{i:03d}", f"Customer {i}", email, f"010-0000-{i:04d}"])
    return values


CUSTOMER_MAPPING = {"id": "ID", "name": "Name", "email": "Email", "phone": "Phone"}


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)
    clear_token_cache()
    yield
    clear_token_cache()


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """A fresh SQLite database file per test."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def reader() -> FakeSheetReader:
    return FakeSheetReader(
        {
            "S_Customers": customer_rows(10),
            "S_Products": [
                ["ID", "Name KO", "Base Price", "Duration"],
                ["P1", "그랜드캐년", "120.50", "8"],
                ["P2", "앤텔롭", "abc", "4"],
            ],
            "Notes": [["Memo"], ["not a sync tab"]],
        }
    )


@pytest.fixture
async def api_token(session_factory) -> str:
    await seed_api_token(session_factory, API_TOKEN)
    return API_TOKEN


@pytest.fixture
def asgi_app(session_factory, reader):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_sheet_reader] = lambda: reader
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(asgi_app, api_token) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=asgi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_headers(api_token) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_token}"}
