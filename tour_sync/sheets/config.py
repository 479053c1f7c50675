"""Sheet-sync constants and hand-kept table layouts.

The fallback column lists mirror the destination tables and are only used
when the schema endpoint cannot be reached. Keep them in step with
``tour_sync.models.booking`` by hand.
"""

from typing import Final

# Widest range read from a sheet (A..ZZ)
FULL_RANGE_END: Final[str] = "ZZ"

# A partial name match must cover this share of the longer normalized name
MIN_PARTIAL_MATCH_RATIO: Final[float] = 0.6

# Header texts used by the operations team in the Korean sheets
KNOWN_HEADER_ALIASES: Final[dict[str, str]] = {
    "예약번호": "id",
    "고객명": "name",
    "이메일": "email",
    "전화번호": "phone",
    "성인수": "adults",
    "아동수": "child",
    "유아수": "infant",
    "총인원": "total_people",
    "투어날짜": "tour_date",
    "투어시간": "tour_time",
    "상품ID": "product_id",
    "투어ID": "tour_id",
    "픽업호텔": "pickup_hotel",
    "픽업시간": "pickup_time",
    "채널": "channel_id",
    "상태": "status",
    "비고": "event_note",
    "개인투어": "is_private_tour",
    "가이드": "tour_guide_id",
    "어시스턴트": "assistant_id",
}

TABLE_DISPLAY_NAMES: Final[dict[str, str]] = {
    "reservations": "예약",
    "tours": "투어",
    "customers": "고객",
    "products": "상품",
    "team": "팀",
}

# (name, type, nullable, default)
_FallbackColumn = tuple[str, str, bool, str | None]

FALLBACK_COLUMNS: Final[dict[str, list[_FallbackColumn]]] = {
    "reservations": [
        ("id", "text", False, None),
        ("customer_id", "text", True, None),
        ("product_id", "text", True, None),
        ("tour_id", "text", True, None),
        ("tour_date", "date", True, None),
        ("tour_time", "text", True, None),
        ("pickup_hotel", "text", True, None),
        ("pickup_time", "text", True, None),
        ("adults", "integer", True, "0"),
        ("child", "integer", True, "0"),
        ("infant", "integer", True, "0"),
        ("total_people", "integer", True, None),
        ("channel_id", "text", True, None),
        ("channel_rn", "text", True, None),
        ("added_by", "text", True, None),
        ("status", "text", True, "pending"),
        ("event_note", "text", True, None),
        ("is_private_tour", "boolean", True, "false"),
        ("selected_options", "json", True, None),
        ("selected_option_prices", "json", True, None),
        ("created_at", "datetime", True, None),
        ("updated_at", "datetime", True, None),
    ],
    "tours": [
        ("id", "text", False, None),
        ("product_id", "text", True, None),
        ("tour_date", "date", True, None),
        ("tour_guide_id", "text", True, None),
        ("assistant_id", "text", True, None),
        ("tour_car_id", "text", True, None),
        ("tour_status", "text", True, "scheduled"),
        ("guide_fee", "numeric", True, "0"),
        ("assistant_fee", "numeric", True, "0"),
        ("tour_note", "text", True, None),
        ("reservation_ids", "json", True, None),
        ("team_type", "text", True, "1guide"),
        ("is_private_tour", "boolean", True, "false"),
        ("created_at", "datetime", True, None),
        ("updated_at", "datetime", True, None),
    ],
    "customers": [
        ("id", "text", False, None),
        ("name", "text", False, None),
        ("email", "text", True, None),
        ("phone", "text", True, None),
        ("nationality", "text", True, None),
        ("language", "text", True, "ko"),
        ("created_at", "datetime", True, None),
        ("updated_at", "datetime", True, None),
    ],
    "products": [
        ("id", "text", False, None),
        ("name_ko", "text", False, None),
        ("name_en", "text", True, None),
        ("description", "text", True, None),
        ("base_price", "numeric", True, None),
        ("duration", "integer", True, None),
        ("max_participants", "integer", True, None),
        ("is_active", "boolean", True, "true"),
        ("created_at", "datetime", True, None),
        ("updated_at", "datetime", True, None),
    ],
    "team": [
        ("email", "text", False, None),
        ("name_ko", "text", True, None),
        ("name_en", "text", True, None),
        ("phone", "text", True, None),
        ("position", "text", True, None),
        ("languages", "json", True, None),
        ("is_active", "boolean", True, "true"),
        ("created_at", "datetime", True, None),
        ("updated_at", "datetime", True, None),
    ],
}

# Used for tables with no hand-kept list
GENERIC_FALLBACK: Final[list[_FallbackColumn]] = [("id", "text", False, None)]


def optimal_batch_size(total_rows: int) -> int:
    """Batch size for the one-shot sync, grown for large sheets."""
    if total_rows > 50000:
        return 1000
    if total_rows > 20000:
        return 800
    if total_rows > 10000:
        return 500
    if total_rows > 5000:
        return 400
    return 200
