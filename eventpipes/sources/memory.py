"""In-memory queue and stream sources."""
import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Callable
import structlog
from .base import QueueSource, StreamSource, StartingPosition, partition_for
from ..event_models import Event, EventOrigin, SourceKind

log = structlog.get_logger()


@dataclass
class _QueuedMessage:
    id: str
    body: str
    sent_at: float
    visible_at: float
    receive_count: int = 0
    receipt: str | None = None


class InMemoryQueue(QueueSource):
    """In-memory queue with visibility-window redelivery."""

    def __init__(self, name: str = "queue", clock: Callable[[], float] = time.monotonic):
        self.name = name
        self._clock = clock
        self._messages: dict[str, _QueuedMessage] = {}
        self._cond = asyncio.Condition()

    async def send(self, body: str) -> str:
        now = self._clock()
        msg = _QueuedMessage(id=uuid.uuid4().hex, body=body, sent_at=now, visible_at=now)
        async with self._cond:
            self._messages[msg.id] = msg
            self._cond.notify_all()
        log.info("queue.message_sent", queue=self.name, message_id=msg.id)
        return msg.id

    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: float = 300.0,
        wait_time: float = 0.0,
    ) -> list[Event]:
        # Long-poll waits are real time; visibility follows the injected clock
        deadline = time.monotonic() + wait_time
        async with self._cond:
            while True:
                events = self._take_visible(max_messages, visibility_timeout)
                remaining = deadline - time.monotonic()
                if events or remaining <= 0:
                    return events
                next_visible = self._seconds_until_next_visible()
                if next_visible is not None:
                    remaining = min(remaining, next_visible)
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass

    def _take_visible(self, max_messages: int, visibility_timeout: float) -> list[Event]:
        now = self._clock()
        events = []
        for msg in self._messages.values():
            if len(events) >= max_messages:
                break
            if msg.visible_at > now:
                continue
            msg.visible_at = now + visibility_timeout
            msg.receive_count += 1
            msg.receipt = f"{msg.id}:{uuid.uuid4().hex}"
            events.append(
                Event(
                    payload=msg.body,
                    origin=EventOrigin(
                        kind=SourceKind.QUEUE,
                        handle=msg.receipt,
                        arrival_time=msg.sent_at,
                        receive_count=msg.receive_count,
                    ),
                )
            )
        return events

    def _seconds_until_next_visible(self) -> float | None:
        hidden = [m.visible_at for m in self._messages.values()]
        if not hidden:
            return None
        return max(0.0, min(hidden) - self._clock())

    async def delete(self, handle: str) -> bool:
        message_id = handle.split(":", 1)[0]
        async with self._cond:
            msg = self._messages.get(message_id)
            if msg is None or msg.receipt != handle:
                return False
            del self._messages[message_id]
        return True

    async def health_check(self) -> bool:
        """In-memory queue is always healthy."""
        return True

    def __len__(self) -> int:
        return len(self._messages)

    def in_flight(self) -> int:
        """Number of received messages still inside their visibility window."""
        now = self._clock()
        return sum(1 for m in self._messages.values() if m.receive_count and m.visible_at > now)


@dataclass
class _StreamRecord:
    sequence: int
    data: str
    arrival_time: float


class InMemoryStream(StreamSource):
    """In-memory partitioned log with time-based retention.

    Sequence numbers are per-partition integers starting at 1, rendered
    as strings; position "0" precedes every record.
    """

    def __init__(
        self,
        name: str = "stream",
        partitions: int = 1,
        retention_s: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.name = name
        self.retention_s = retention_s
        self._clock = clock
        self._partitions = [str(i) for i in range(partitions)]
        self._records: dict[str, list[_StreamRecord]] = {p: [] for p in self._partitions}
        self._last_sequence: dict[str, int] = {p: 0 for p in self._partitions}
        self._cond = asyncio.Condition()

    async def put(self, data: str, partition_key: str) -> tuple[str, str]:
        partition = self._partitions[partition_for(partition_key, len(self._partitions))]
        async with self._cond:
            self._last_sequence[partition] += 1
            record = _StreamRecord(
                sequence=self._last_sequence[partition],
                data=data,
                arrival_time=self._clock(),
            )
            self._records[partition].append(record)
            self._trim(partition)
            self._cond.notify_all()
        return partition, str(record.sequence)

    def _trim(self, partition: str):
        cutoff = self._clock() - self.retention_s
        records = self._records[partition]
        expired = 0
        while records and records[0].arrival_time < cutoff:
            records.pop(0)
            expired += 1
        if expired:
            log.info("stream.records_expired", stream=self.name, partition=partition, count=expired)

    async def list_partitions(self) -> list[str]:
        return list(self._partitions)

    async def starting_position(self, partition: str, policy: StartingPosition) -> str:
        if policy == StartingPosition.LATEST:
            return str(self._last_sequence[partition])
        return "0"

    async def read(
        self,
        partition: str,
        after: str,
        limit: int = 100,
        wait_time: float = 0.0,
    ) -> list[Event]:
        position = int(after)
        deadline = time.monotonic() + wait_time
        async with self._cond:
            while True:
                self._trim(partition)
                records = [r for r in self._records[partition] if r.sequence > position][:limit]
                remaining = deadline - time.monotonic()
                if records or remaining <= 0:
                    break
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass

        return [
            Event(
                payload=r.data,
                origin=EventOrigin(
                    kind=SourceKind.STREAM,
                    handle=str(r.sequence),
                    partition=partition,
                    arrival_time=r.arrival_time,
                ),
            )
            for r in records
        ]

    async def health_check(self) -> bool:
        """In-memory stream is always healthy."""
        return True
