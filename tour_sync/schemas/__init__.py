from tour_sync.schemas.common import ApiResponse
from tour_sync.schemas.events import (
    LogEvent,
    ProgressEvent,
    ResultEvent,
    StartEvent,
    SyncEvent,
    encode_event,
    parse_event,
)
from tour_sync.schemas.sync import (
    CleanupStatus,
    ColumnInfo,
    RealTimeStats,
    SheetColumns,
    SheetInfo,
    SyncDetails,
    SyncRequest,
    SyncResult,
    TableInfo,
    TableSchema,
)

__all__ = [
    "ApiResponse",
    "CleanupStatus",
    "ColumnInfo",
    "LogEvent",
    "ProgressEvent",
    "RealTimeStats",
    "ResultEvent",
    "SheetColumns",
    "SheetInfo",
    "StartEvent",
    "SyncDetails",
    "SyncEvent",
    "SyncRequest",
    "SyncResult",
    "TableInfo",
    "TableSchema",
    "encode_event",
    "parse_event",
]
