from pydantic import BaseModel, ConfigDict, Field
from typing import Any
from enum import Enum
import time

class SourceKind(str, Enum):
    QUEUE = "queue"
    STREAM = "stream"

class ResultStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"

class EventOrigin(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SourceKind
    # Receipt handle (queue) or record sequence number (stream)
    handle: str
    partition: str | None = None
    arrival_time: float = Field(default_factory=time.time)
    receive_count: int = 1

class Event(BaseModel):
    """A raw payload as it arrived from a source."""
    model_config = ConfigDict(frozen=True)

    payload: str
    origin: EventOrigin

class Batch(BaseModel):
    """Events drawn from one source (and partition) in one poll cycle."""
    source: SourceKind
    partition: str | None = None
    events: list[Event] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.events)

class TransformedMessage(BaseModel):
    """Source-agnostic envelope handed to the processor."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    body: str

class ProcessingResult(BaseModel):
    status: ResultStatus
    reason: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

class CacheEntry(BaseModel):
    key: str
    value: bytes
    ttl: int | None = Field(default=None, description="Expiry in seconds")

class DomainEvent(BaseModel):
    """Business event carried inside a message body."""
    model_config = ConfigDict(extra="ignore")

    id: str | int | None = None
    eventType: str | None = None
    eventId: str | int | None = None
    createdAt: int | None = None
    body: Any = None
