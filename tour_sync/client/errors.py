"""Client-side error classes.

Each class carries the text shown to the operator, so callers can surface
``str(exc)`` directly.
"""


class SyncClientError(Exception):
    """Base class for errors raised by the sync client."""

    def __init__(self, message: str, status_code: int | None = None, payload: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)


class ApiError(SyncClientError):
    """The server answered with an error status or ``success: false``."""


class StreamDecodeError(SyncClientError):
    """A line of the sync stream was not a valid event."""


class RequestCancelled(SyncClientError):
    def __init__(self, message: str = "Request was cancelled."):
        super().__init__(message)


class RequestTimedOut(SyncClientError):
    def __init__(self, timeout: float | None = None):
        if timeout is None:
            message = "Request timed out."
        else:
            message = f"Request timed out ({timeout:g}s). Check the network connection and try again."
        super().__init__(message)
        self.timeout = timeout


class NetworkFailure(SyncClientError):
    def __init__(self, detail: str | None = None):
        message = "Network connection failed. Check that the connection is stable."
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class SheetRequestError(SyncClientError):
    """Reading the spreadsheet failed for a reason not covered below."""


class QuotaExceeded(SheetRequestError):
    def __init__(self):
        super().__init__("API quota exceeded. Try again in 1-2 minutes.", status_code=429)


class PermissionDenied(SheetRequestError):
    def __init__(self):
        super().__init__(
            "No permission to access the sheet. Check the spreadsheet sharing settings.",
            status_code=403,
        )


class SheetNotFound(SheetRequestError):
    def __init__(self):
        super().__init__("Sheet not found. Check the spreadsheet ID.", status_code=404)
