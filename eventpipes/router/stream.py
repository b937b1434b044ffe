"""Stream-sourced pipe."""
import asyncio
from typing import Hashable
from pydantic import BaseModel
import structlog
from .base import PipeRouter
from ..errors import SourceUnavailable
from ..event_models import Batch, SourceKind
from ..metrics.collector import EVENTS_ACKED_TOTAL, PARTITION_WORKERS
from ..processor.base import EventHandler
from ..sources.base import StartingPosition, StreamSource

log = structlog.get_logger()


class PartitionAssignment(BaseModel):
    """Read cursor and progress of the single worker owning a partition."""
    partition: str
    cursor: str
    processed: int = 0
    worker: str | None = None


class StreamRouter(PipeRouter):
    """
    Routes stream records to the target.

    Exactly one worker reads each partition, invoking records one at a time
    in log order. A partition's cursor moves past a record only once that
    record was processed successfully. On a failure the rest of the batch is
    dropped and re-read from the unchanged cursor after retry_delay.

    Cursors are resolved from the starting position the first time a
    partition is assigned and kept across stop/start of the same router.
    """

    kind = SourceKind.STREAM

    def __init__(
        self,
        source: StreamSource,
        target: EventHandler,
        name: str = "stream-pipe",
        batch_size: int = 100,
        wait_time: float = 1.0,
        starting_position: StartingPosition = StartingPosition.LATEST,
        retry_delay: float = 1.0,
        **kwargs,
    ):
        super().__init__(name, target, **kwargs)
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.source = source
        self.batch_size = batch_size
        self.wait_time = wait_time
        self.starting_position = StartingPosition(starting_position)
        self.retry_delay = retry_delay
        self.assignments: dict[str, PartitionAssignment] = {}

    async def _assign(self, partition: str) -> PartitionAssignment:
        cursor = await self.source.starting_position(partition, self.starting_position)
        assignment = PartitionAssignment(
            partition=partition,
            cursor=cursor,
            worker=f"{self.name}-{partition}",
        )
        self.assignments[partition] = assignment
        log.info(
            "pipe.partition_assigned",
            pipe=self.name,
            partition=partition,
            cursor=cursor,
            starting_position=self.starting_position.value,
        )
        return assignment

    async def assign_partitions(self) -> list[str]:
        """
        Create assignments for partitions not yet in the table.

        A partition whose starting position cannot be resolved now is left
        unassigned; its worker resolves it on the first poll, under the
        same backoff as any other SourceUnavailable.
        """
        partitions = await self.source.list_partitions()
        for partition in partitions:
            if partition in self.assignments:
                continue
            try:
                await self._assign(partition)
            except SourceUnavailable as e:
                log.warning("pipe.assign_deferred", pipe=self.name, partition=partition, error=str(e))
        self._metrics.gauge(PARTITION_WORKERS, len(partitions), labels=self._labels)
        return partitions

    async def poll(self, partition: str) -> Batch:
        """Read the next records after the partition's cursor."""
        assignment = self.assignments.get(partition) or await self._assign(partition)
        events = await self.source.read(
            partition,
            after=assignment.cursor,
            limit=self.batch_size,
            wait_time=self.wait_time,
        )
        batch = Batch(source=SourceKind.STREAM, partition=partition, events=events)
        self._record_polled(batch)
        return batch

    async def _work_units(self) -> list[Hashable]:
        return await self.assign_partitions()

    async def _poll_unit(self, unit: Hashable) -> Batch:
        return await self.poll(unit)

    async def deliver(self, batch: Batch):
        assignment = self.assignments[batch.partition]
        for event in batch.events:
            result = await self.process_event(event)
            if not result.ok:
                self._record_redelivery(event, result)
                await asyncio.sleep(self.retry_delay)
                return
            assignment.cursor = event.origin.handle
            assignment.processed += 1
            self._counts["acked"] += 1
            self._metrics.increment(EVENTS_ACKED_TOTAL, labels={**self._labels, "partition": batch.partition})

    def stats(self):
        stats = super().stats()
        stats.update(
            batch_size=self.batch_size,
            starting_position=self.starting_position.value,
            partitions={p: a.model_dump() for p, a in self.assignments.items()},
        )
        return stats
