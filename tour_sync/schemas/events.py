"""Typed events of the streaming sync.

On the wire each event is one JSON object per line (NDJSON), tagged by
``type``.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from tour_sync.schemas.sync import SyncDetails


class StartEvent(BaseModel):
    type: Literal["start"] = "start"
    total: int = Field(..., ge=0)


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    processed: int = Field(..., ge=0)
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = Field(..., ge=0)


class LogEvent(BaseModel):
    type: Literal["info", "warn", "error"]
    message: str


class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    success: bool
    message: str
    details: SyncDetails | None = None


SyncEvent = Annotated[
    Union[StartEvent, ProgressEvent, LogEvent, ResultEvent],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(SyncEvent)


def info(message: str) -> LogEvent:
    return LogEvent(type="info", message=message)


def warn(message: str) -> LogEvent:
    return LogEvent(type="warn", message=message)


def error(message: str) -> LogEvent:
    return LogEvent(type="error", message=message)


def encode_event(event: BaseModel) -> str:
    """Serialize an event as one NDJSON line."""
    return event.model_dump_json(by_alias=True, exclude_none=True) + "\n"


def parse_event(line: str | bytes) -> StartEvent | ProgressEvent | LogEvent | ResultEvent:
    """Validate one NDJSON line. Raises pydantic.ValidationError on bad input."""
    return _event_adapter.validate_json(line)
