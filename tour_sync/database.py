from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tour_sync.config import settings


def configure_sqlite(engine: AsyncEngine) -> None:
    """Enable WAL and let SQLAlchemy own BEGIN so SAVEPOINTs work with aiosqlite."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, applying the SQLite tweaks when needed."""
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_async_engine(url, **kwargs)
    if is_sqlite:
        configure_sqlite(engine)
    return engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency for work that outlives a request-scoped session (streams)."""
    return async_session_factory


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables."""
    from tour_sync.models import (  # noqa: F401 - ensure models are registered
        ApiToken,
        Customer,
        Product,
        Reservation,
        SyncLog,
        TeamMember,
        Tour,
    )
    from tour_sync.models.base import Base

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
