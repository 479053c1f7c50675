from tour_sync.client.cancellation import CancellationToken, RequestSlot
from tour_sync.client.errors import (
    ApiError,
    NetworkFailure,
    PermissionDenied,
    QuotaExceeded,
    RequestCancelled,
    RequestTimedOut,
    SheetNotFound,
    SheetRequestError,
    StreamDecodeError,
    SyncClientError,
)
from tour_sync.client.estimator import EtaEstimator, clamp_ms_per_row
from tour_sync.client.http import SyncApiClient
from tour_sync.client.schema_inspector import SchemaInspector
from tour_sync.client.session import SyncSession
from tour_sync.client.sheet_reader import SheetReaderClient
from tour_sync.client.store import JsonFileSettingsStore, MemorySettingsStore, SettingsStore

__all__ = [
    "ApiError",
    "CancellationToken",
    "EtaEstimator",
    "JsonFileSettingsStore",
    "MemorySettingsStore",
    "NetworkFailure",
    "PermissionDenied",
    "QuotaExceeded",
    "RequestCancelled",
    "RequestSlot",
    "RequestTimedOut",
    "SchemaInspector",
    "SettingsStore",
    "SheetNotFound",
    "SheetReaderClient",
    "SheetRequestError",
    "StreamDecodeError",
    "SyncApiClient",
    "SyncClientError",
    "SyncSession",
    "clamp_ms_per_row",
]
