"""Queue-sourced pipe."""
from typing import Hashable
import structlog
from .base import PipeRouter
from ..errors import SourceUnavailable
from ..event_models import Batch, Event, SourceKind
from ..metrics.collector import EVENTS_ACKED_TOTAL
from ..processor.base import EventHandler
from ..sources.base import QueueSource

log = structlog.get_logger()


class QueueRouter(PipeRouter):
    """
    Routes queue messages to the target.

    Runs ``concurrency`` independent pollers. A message is deleted only
    after a successful invocation; otherwise it stays hidden until its
    visibility window runs out and then becomes receivable again.
    """

    kind = SourceKind.QUEUE

    def __init__(
        self,
        source: QueueSource,
        target: EventHandler,
        name: str = "queue-pipe",
        batch_size: int = 1,
        visibility_timeout: float = 300.0,
        wait_time: float = 20.0,
        concurrency: int = 1,
        **kwargs,
    ):
        super().__init__(name, target, **kwargs)
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.source = source
        self.batch_size = batch_size
        self.visibility_timeout = visibility_timeout
        self.wait_time = wait_time
        self.concurrency = concurrency

    async def poll(self) -> Batch:
        """Long-poll the queue for up to batch_size messages."""
        events = await self.source.receive(
            max_messages=self.batch_size,
            visibility_timeout=self.visibility_timeout,
            wait_time=self.wait_time,
        )
        batch = Batch(source=SourceKind.QUEUE, events=events)
        self._record_polled(batch)
        return batch

    async def _work_units(self) -> list[Hashable]:
        return list(range(self.concurrency))

    async def _poll_unit(self, unit: Hashable) -> Batch:
        return await self.poll()

    async def deliver(self, batch: Batch):
        for event in batch.events:
            result = await self.process_event(event)
            if result.ok:
                await self._ack(event)
            else:
                self._record_redelivery(event, result)

    async def _ack(self, event: Event):
        try:
            deleted = await self.source.delete(event.origin.handle)
        except SourceUnavailable as e:
            # Undeleted messages come back after the visibility window
            log.warning("pipe.ack_failed", pipe=self.name, handle=event.origin.handle, error=str(e))
            return
        if not deleted:
            log.warning("pipe.ack_stale", pipe=self.name, handle=event.origin.handle)
            return
        self._counts["acked"] += 1
        self._metrics.increment(EVENTS_ACKED_TOTAL, labels=self._labels)

    def stats(self):
        stats = super().stats()
        stats.update(
            batch_size=self.batch_size,
            visibility_timeout=self.visibility_timeout,
            concurrency=self.concurrency,
        )
        return stats
