"""Destination table introspection."""

from __future__ import annotations

from sqlalchemy import MetaData, Table
from sqlalchemy.exc import CompileError
from sqlalchemy.ext.asyncio import AsyncSession

from tour_sync.config import settings
from tour_sync.schemas.sync import ColumnInfo


def is_sync_table(table_name: str) -> bool:
    return table_name in settings.SYNC_TABLES


def natural_key_for(table_name: str) -> str:
    return settings.NATURAL_KEYS.get(table_name, settings.DEFAULT_NATURAL_KEY)


def type_name(column, dialect=None) -> str:
    """Database type of a reflected column as lowercase text, e.g. "varchar(64)"."""
    try:
        return column.type.compile(dialect=dialect).lower()
    except CompileError:
        return type(column.type).__name__.lower()


async def reflect_table(session: AsyncSession, table_name: str) -> Table:
    """Load a table definition from the live database.

    Raises sqlalchemy.exc.NoSuchTableError when the table does not exist.
    """
    conn = await session.connection()
    return await conn.run_sync(
        lambda sync_conn: Table(table_name, MetaData(), autoload_with=sync_conn)
    )


def describe_columns(table: Table, dialect=None) -> list[ColumnInfo]:
    columns: list[ColumnInfo] = []
    for column in table.columns:
        default = None
        if column.server_default is not None:
            default = str(getattr(column.server_default, "arg", column.server_default))
        columns.append(
            ColumnInfo(
                name=column.name,
                type=type_name(column, dialect),
                nullable=bool(column.nullable),
                default=default,
                primary_key=bool(column.primary_key),
            )
        )
    return columns


def column_types(table: Table, dialect=None) -> dict[str, str]:
    return {column.name: type_name(column, dialect) for column in table.columns}
