"""Headless sheet sync.

Drives a running tour-sync server the same way the sync screen does:
lists sheets, restores or derives the column mapping, runs the sync and
prints the log lines and the result.

Usage:
    python scripts/sync_sheet.py --spreadsheet <id> --list
    python scripts/sync_sheet.py --spreadsheet <id> --sheet S_Reservations --table reservations

The server URL and token come from SYNC_API_URL and SYNC_API_TOKEN unless
given on the command line.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from tour_sync.client import JsonFileSettingsStore, SyncApiClient, SyncSession

DEFAULT_STORE = Path.home() / ".tour_sync" / "settings.json"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync a Google Sheets tab into a database table")
    parser.add_argument("--base-url", default=os.getenv("SYNC_API_URL", "http://localhost:8000/api"))
    parser.add_argument("--token", default=os.getenv("SYNC_API_TOKEN", ""))
    parser.add_argument("--spreadsheet", required=True, help="Spreadsheet ID")
    parser.add_argument("--sheet", help="Sheet (tab) name; defaults to the first matching tab")
    parser.add_argument("--table", help="Destination table")
    parser.add_argument("--list", action="store_true", help="Only list sheets and tables")
    parser.add_argument("--truncate", action="store_true", help="Empty the table before loading")
    parser.add_argument("--incremental", action="store_true", help="Skip rows that did not change")
    parser.add_argument("--optimized", action="store_true", help="Use the one-shot batched sync")
    parser.add_argument("--save-mapping", action="store_true", help="Remember the mapping used")
    parser.add_argument("--store", default=str(DEFAULT_STORE), help="Client settings file")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    store = JsonFileSettingsStore(args.store)

    async with SyncApiClient(args.base_url, token=args.token or None) as api:
        session = SyncSession(api, store, args.spreadsheet)

        tables = await session.load_tables()
        sheets = await session.load_sheets()
        if session.notice:
            print(session.notice)
        if args.list or not args.table:
            print("Sheets:")
            for sheet in sheets:
                print(f"  {sheet.name} ({sheet.row_count} rows)")
            print("Tables:")
            for table in tables:
                print(f"  {table.name}")
            return 0 if sheets else 1

        if args.sheet:
            if await session.select_sheet(args.sheet) is None:
                print(f"ERROR: Sheet '{args.sheet}' not found")
                return 1
        elif session.selected_sheet:
            await session.select_sheet(session.selected_sheet)
        else:
            return 1

        columns = await session.select_table(args.table)
        print(f"Table {args.table}: {len(columns)} columns ({session.inspector.last_source})")
        print("Column mapping:")
        for dest, src in session.column_mapping.items():
            print(f"  {dest} <- {src}")
        if args.save_mapping and session.column_mapping:
            session.save_mapping(session.column_mapping)

        session.truncate_table = args.truncate
        if args.optimized:
            result = await session.run_optimized_sync()
        else:
            result = await session.run_sync(incremental=args.incremental)

        for line in session.logs:
            print(line)
        print()
        print("=" * 60)
        print(("OK: " if result.success else "FAILED: ") + result.message)
        if result.data:
            d = result.data
            print(
                f"  processed {d.processed}/{d.total}, inserted {d.inserted}, "
                f"updated {d.updated}, skipped {d.skipped}, errors {d.errors}"
            )
        print("=" * 60)
        return 0 if result.success else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(main()))
