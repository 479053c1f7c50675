"""Tests for column auto-mapping, fallback columns and value coercion."""

import datetime

import pytest

from tour_sync.schemas.sync import ColumnInfo
from tour_sync.sheets.mapper import (
    coerce_record,
    coerce_value,
    column_kind,
    get_auto_mapping,
    get_fallback_columns,
    project_row,
    resolve_mapping,
)


def _cols(*names: str) -> list[ColumnInfo]:
    return [ColumnInfo(name=n) for n in names]


class TestAutoMapping:
    def test_case_and_space_insensitive_without_fuzzy_price(self):
        mapping = get_auto_mapping(
            _cols("name", "tour_date", "base_price"),
            ["Name", "Tour Date", "Price"],
        )
        assert mapping == {"name": "Name", "tour_date": "Tour Date"}

    def test_deterministic(self):
        dest = _cols("id", "customer_id", "tour_date", "adults", "pickup_hotel")
        src = ["Customer ID", "ID", "tour date", "Adults", "Pickup Hotel Name"]
        first = get_auto_mapping(dest, src)
        for _ in range(5):
            assert get_auto_mapping(dest, src) == first

    def test_keys_are_destination_columns_and_sources_used_once(self):
        dest = _cols("email", "customer_email", "phone")
        src = ["Email", "E-mail", "Phone Number"]
        mapping = get_auto_mapping(dest, src)
        assert set(mapping) <= {"email", "customer_email", "phone"}
        assert len(set(mapping.values())) == len(mapping)
        assert mapping["email"] == "Email"

    def test_exact_beats_partial(self):
        mapping = get_auto_mapping(_cols("tour_id", "id"), ["Tour ID", "ID"])
        assert mapping == {"tour_id": "Tour ID", "id": "ID"}

    def test_partial_match_needs_enough_coverage(self):
        mapping = get_auto_mapping(_cols("pickup_time"), ["Pickup Time (local)", "Pickup Times"])
        assert mapping == {"pickup_time": "Pickup Times"}

    def test_partial_tie_goes_to_first_sheet_column(self):
        mapping = get_auto_mapping(_cols("pickup_time"), ["Pickup Time1", "Pickup Time2"])
        assert mapping == {"pickup_time": "Pickup Time1"}

    def test_korean_header_aliases(self):
        mapping = get_auto_mapping(
            _cols("id", "tour_date", "event_note"),
            ["예약번호", "투어날짜", "비고"],
        )
        assert mapping == {"id": "예약번호", "tour_date": "투어날짜", "event_note": "비고"}

    def test_unmatched_destination_columns_are_omitted(self):
        assert get_auto_mapping(_cols("selected_options"), ["Name"]) == {}


class TestFallbackColumns:
    @pytest.mark.parametrize("table", ["reservations", "tours", "customers", "products", "team"])
    def test_known_tables(self, table):
        columns = get_fallback_columns(table)
        assert columns
        assert columns[0].primary_key

    def test_unknown_table_is_never_empty(self):
        columns = get_fallback_columns("something_else")
        assert [c.name for c in columns] == ["id"]


class TestResolveAndProject:
    def test_stale_entries_are_dropped_with_warnings(self):
        usable, warnings = resolve_mapping(
            {"name": "Name", "email": "Old Email", "ghost": "Name"},
            ["id", "name", "email"],
            ["Name", "Email"],
        )
        assert usable == {"name": "Name"}
        assert len(warnings) == 2

    def test_empty_cells_are_omitted(self):
        record = project_row(
            {"Name": "Kim", "Email": "  ", "Phone": None},
            {"name": "Name", "email": "Email", "phone": "Phone"},
        )
        assert record == {"name": "Kim"}


class TestCoercion:
    @pytest.mark.parametrize(
        "type_name, kind",
        [
            ("VARCHAR(64)", "text"),
            ("INTEGER", "integer"),
            ("NUMERIC(12, 2)", "numeric"),
            ("BOOLEAN", "boolean"),
            ("DATE", "date"),
            ("DATETIME", "datetime"),
            ("timestamp with time zone", "datetime"),
            ("JSON", "json"),
            ("text[]", "array"),
        ],
    )
    def test_column_kind(self, type_name, kind):
        assert column_kind(type_name) == kind

    def test_numbers(self):
        assert coerce_value("1,200", "integer") == 1200
        assert coerce_value("3.0", "INTEGER") == 3
        assert coerce_value("120.50", "NUMERIC") == pytest.approx(120.5)

    def test_booleans(self):
        assert coerce_value("TRUE", "boolean") is True
        assert coerce_value("아니오", "boolean") is False
        with pytest.raises(ValueError):
            coerce_value("maybe", "boolean")

    def test_dates(self):
        assert coerce_value("2024-03-05", "date") == datetime.date(2024, 3, 5)
        assert coerce_value("2024/03/05", "date") == datetime.date(2024, 3, 5)
        assert coerce_value(45356, "date") == datetime.date(2024, 3, 5)

    def test_json_and_arrays(self):
        assert coerce_value('{"a": 1}', "json") == {"a": 1}
        assert coerce_value("ko, en", "text[]") == ["ko", "en"]

    def test_text_keeps_integral_floats_readable(self):
        assert coerce_value(123.0, "VARCHAR") == "123"

    def test_blank_is_none(self):
        assert coerce_value("", "integer") is None

    def test_record_error_names_the_column(self):
        with pytest.raises(ValueError, match="^base_price: "):
            coerce_record({"base_price": "abc"}, {"base_price": "NUMERIC"})
