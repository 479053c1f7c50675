"""Column mapping between sheet headers and destination table columns.

Header names are matched loosely: case, whitespace and underscores are
ignored, so "Tour Date" lines up with ``tour_date``. Cell values are coerced
to the destination column's type before they reach the database.
"""

from __future__ import annotations

import datetime
import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from tour_sync.schemas.sync import ColumnInfo
from tour_sync.sheets.config import (
    FALLBACK_COLUMNS,
    GENERIC_FALLBACK,
    KNOWN_HEADER_ALIASES,
    MIN_PARTIAL_MATCH_RATIO,
)

_TRUE_VALUES = frozenset({"true", "1", "yes", "y", "t", "o", "예"})
_FALSE_VALUES = frozenset({"false", "0", "no", "n", "f", "x", "아니오"})

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d", "%m/%d/%Y")
_TIME_FORMATS = ("%H:%M:%S", "%H:%M", "%I:%M %p", "%I:%M:%S %p")


def _normalize_name(name: str | None) -> str:
    """Lowercase and drop whitespace/underscores: "Tour Date" -> "tourdate"."""
    if not name:
        return ""
    return re.sub(r"[\s_]+", "", name).lower()


def _partial_overlap(a: str, b: str) -> int:
    """Length of the shared part when one name contains the other.

    Returns 0 when neither contains the other, or when the shorter name
    covers too little of the longer one ("price" inside "baseprice").
    """
    if not a or not b:
        return 0
    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    if shorter not in longer:
        return 0
    if len(shorter) / len(longer) < MIN_PARTIAL_MATCH_RATIO:
        return 0
    return len(shorter)


def get_auto_mapping(
    destination_columns: Iterable[ColumnInfo],
    source_columns: Iterable[str],
) -> dict[str, str]:
    """Propose a destination column -> sheet header mapping.

    Match order:
    1. Exact normalized name
    2. Known sheet header alias (Korean operations headers)
    3. One name contains the other; the largest overlap wins, then the
       first header in sheet order

    Each sheet header is used at most once. Columns with no acceptable
    match are left out for manual assignment.
    """
    dest_names: list[str] = []
    for column in destination_columns:
        if column.name not in dest_names:
            dest_names.append(column.name)
    dest_set = set(dest_names)
    sources = [(src, _normalize_name(src)) for src in source_columns]

    mapping: dict[str, str] = {}
    claimed: set[str] = set()

    # 1. Exact
    for dest in dest_names:
        norm_dest = _normalize_name(dest)
        for src, norm_src in sources:
            if src not in claimed and norm_src and norm_src == norm_dest:
                mapping[dest] = src
                claimed.add(src)
                break

    # 2. Known aliases
    for src, _ in sources:
        if src in claimed:
            continue
        target = KNOWN_HEADER_ALIASES.get(src.strip())
        if target and target in dest_set and target not in mapping:
            mapping[target] = src
            claimed.add(src)

    # 3. Partial
    for dest in dest_names:
        if dest in mapping:
            continue
        norm_dest = _normalize_name(dest)
        best: str | None = None
        best_overlap = 0
        for src, norm_src in sources:
            if src in claimed:
                continue
            overlap = _partial_overlap(norm_dest, norm_src)
            if overlap > best_overlap:
                best, best_overlap = src, overlap
        if best is not None:
            mapping[dest] = best
            claimed.add(best)

    return {dest: mapping[dest] for dest in dest_names if dest in mapping}


def get_fallback_columns(table_name: str) -> list[ColumnInfo]:
    """Hand-kept column list for when the schema cannot be introspected."""
    layout = FALLBACK_COLUMNS.get(table_name, GENERIC_FALLBACK)
    return [
        ColumnInfo(
            name=name,
            type=type_,
            nullable=nullable,
            default=default,
            primary_key=not nullable and index == 0,
        )
        for index, (name, type_, nullable, default) in enumerate(layout)
    ]


def resolve_mapping(
    mapping: Mapping[str, str],
    table_columns: Iterable[str],
    headers: Iterable[str],
) -> tuple[dict[str, str], list[str]]:
    """Drop mapping entries that no longer line up with the table or sheet.

    Returns the usable mapping and one warning per dropped entry.
    """
    known_columns = set(table_columns)
    known_headers = set(headers)
    usable: dict[str, str] = {}
    warnings: list[str] = []
    for dest, src in mapping.items():
        if not src:
            continue
        if dest not in known_columns:
            warnings.append(f"Column '{dest}' does not exist in the table; mapping ignored")
            continue
        if src not in known_headers:
            warnings.append(f"Sheet column '{src}' not found for '{dest}'; left unmapped")
            continue
        usable[dest] = src
    return usable, warnings


def project_row(row: Mapping[str, Any], mapping: Mapping[str, str]) -> dict[str, Any]:
    """Build a destination record from one sheet row.

    Empty cells are omitted so the database default applies.
    """
    record: dict[str, Any] = {}
    for dest, src in mapping.items():
        value = row.get(src)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        record[dest] = value
    return record


# --- Value coercion ---

def column_kind(type_name: str | None) -> str:
    """Collapse a database type name into the kind used for coercion."""
    t = (type_name or "").strip().lower()
    if t.endswith("[]") or t.startswith("array"):
        return "array"
    if "json" in t:
        return "json"
    if "bool" in t:
        return "boolean"
    if "int" in t or "serial" in t:
        return "integer"
    if any(k in t for k in ("numeric", "decimal", "float", "double", "real", "money")):
        return "numeric"
    if "timestamp" in t or "datetime" in t:
        return "datetime"
    if "date" in t:
        return "date"
    if "time" in t:
        return "time"
    return "text"


def _to_number_text(value: Any) -> str:
    return str(value).strip().replace(",", "")


def _excel_serial_to_date(value: float) -> datetime.date:
    return datetime.date.fromordinal(
        datetime.date(1899, 12, 30).toordinal() + int(value)
    )


def _parse_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, (int, float)):
        return _excel_serial_to_date(value)
    s = str(value).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return datetime.datetime.fromisoformat(s.replace("Z", "+00:00")).date()


def _parse_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    s = str(value).strip()
    try:
        return datetime.datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return datetime.datetime.combine(_parse_date(s), datetime.time())


def _parse_time(value: Any) -> datetime.time:
    if isinstance(value, datetime.time):
        return value
    if isinstance(value, datetime.datetime):
        return value.time()
    s = str(value).strip().upper()
    for fmt in _TIME_FORMATS:
        try:
            return datetime.datetime.strptime(s, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time: {value!r}")


def _parse_array(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    s = str(value).strip()
    if s.startswith("[") and s.endswith("]"):
        try:
            parsed = json.loads(s)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]
    parts = (re.sub(r"^[\[\"']+|[\]\"']+$", "", p.strip()) for p in s.split(","))
    return [p for p in parts if p]


def coerce_value(value: Any, type_name: str | None) -> Any:
    """Convert a sheet cell into the Python value for a destination column.

    Raises ValueError when the cell cannot be read as the column's type.
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None

    kind = column_kind(type_name)
    try:
        if kind == "integer":
            if isinstance(value, bool):
                return int(value)
            return int(float(_to_number_text(value)))
        if kind == "numeric":
            return float(_to_number_text(value))
        if kind == "boolean":
            if isinstance(value, bool):
                return value
            s = str(value).strip().lower()
            if s in _TRUE_VALUES:
                return True
            if s in _FALSE_VALUES:
                return False
            raise ValueError(f"Invalid boolean: {value!r}")
        if kind == "date":
            return _parse_date(value)
        if kind == "datetime":
            return _parse_datetime(value)
        if kind == "time":
            return _parse_time(value)
        if kind == "json":
            if isinstance(value, (dict, list)):
                return value
            return json.loads(str(value))
        if kind == "array":
            return _parse_array(value)
    except (TypeError, OverflowError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid {kind} value {value!r}: {e}") from e

    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value.strip()
    return str(value)


def coerce_record(
    record: Mapping[str, Any],
    column_types: Mapping[str, str],
) -> dict[str, Any]:
    """Coerce every value of a projected record; raises ValueError naming the column."""
    converted: dict[str, Any] = {}
    for name, value in record.items():
        try:
            converted[name] = coerce_value(value, column_types.get(name))
        except ValueError as e:
            raise ValueError(f"{name}: {e}") from e
    return converted
