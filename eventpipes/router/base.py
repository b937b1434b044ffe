"""Pipe router: poll a source, transform, invoke the target, ack or redeliver."""
import asyncio
import random
import time
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Hashable
import structlog
from ..errors import InvocationTimeout, SourceUnavailable, TransformError
from ..logging import bind_worker
from ..event_models import (
    Batch,
    Event,
    ProcessingResult,
    ResultStatus,
    SourceKind,
    TransformedMessage,
)
from ..metrics.collector import (
    MetricsCollector,
    collector,
    EVENTS_POLLED_TOTAL,
    EVENTS_REDELIVERED_TOTAL,
    INVOCATIONS_TOTAL,
    INVOKE_LATENCY_MS,
    POLL_ERRORS_TOTAL,
)
from ..processor.base import EventHandler
from .transform import serialize, transform

log = structlog.get_logger()


class PipeRouter(ABC):
    """
    Connects one source to one target.

    Subclasses decide how work is split into units (queue pollers or stream
    partitions), how a unit is polled, and what happens after each
    invocation. The base class owns the transform/invoke step, poll backoff
    and the worker lifecycle.

    Failures are never escalated: a failed or timed-out event is left to the
    source's own redelivery, indefinitely. There is no dead-letter path here.
    """

    kind: SourceKind

    def __init__(
        self,
        name: str,
        target: EventHandler,
        invoke_timeout: float = 120.0,
        max_payload_size: int = 262144,
        backoff_base: float = 0.5,
        backoff_max: float = 30.0,
        idle_delay: float = 0.05,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the router.

        Args:
            name: Pipe name used in logs, metrics and stats
            target: Handler invoked once per transformed message
            invoke_timeout: Hard deadline for one invocation, in seconds
            max_payload_size: Largest payload the transform accepts, in bytes
            backoff_base: First delay after a failed poll, in seconds
            backoff_max: Cap for the poll backoff delay, in seconds
            idle_delay: Pause after a poll that returned nothing, in seconds
            metrics: Metrics collector (defaults to the global collector)
        """
        self.name = name
        self._target = target
        self.invoke_timeout = invoke_timeout
        self.max_payload_size = max_payload_size
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.idle_delay = idle_delay
        self._metrics = metrics or collector
        self._labels = {"pipe": name}
        self._tasks: dict[Hashable, asyncio.Task] = {}
        self._busy: set[Hashable] = set()
        self._stopping = asyncio.Event()
        self._counts: Counter = Counter()

    # --- transform / invoke -------------------------------------------------

    def transform(self, event: Event) -> TransformedMessage:
        return transform(event, self.max_payload_size)

    async def invoke(self, message: TransformedMessage) -> ProcessingResult:
        """
        Call the target with a hard deadline.

        Any exception raised by the target is a failure. Running past the
        deadline cancels the call and is reported as a timeout, even if the
        target would have finished later.
        """
        payload = serialize(message)
        start = time.monotonic()
        try:
            await asyncio.wait_for(self._target.handle(payload), timeout=self.invoke_timeout)
        except asyncio.TimeoutError:
            result = ProcessingResult(
                status=ResultStatus.TIMEOUT,
                reason=str(InvocationTimeout(self.invoke_timeout)),
            )
        except Exception as e:
            result = ProcessingResult(status=ResultStatus.FAILURE, reason=f"{type(e).__name__}: {e}")
        else:
            result = ProcessingResult(status=ResultStatus.SUCCESS)

        result.duration_ms = (time.monotonic() - start) * 1000
        self._metrics.histogram(INVOKE_LATENCY_MS, result.duration_ms, labels=self._labels)
        self._metrics.increment(INVOCATIONS_TOTAL, labels={**self._labels, "result": result.status.value})
        self._counts[result.status.value] += 1
        return result

    async def process_event(self, event: Event) -> ProcessingResult:
        """Transform and invoke one event. A transform error is a failed invocation."""
        try:
            message = self.transform(event)
        except TransformError as e:
            self._counts[ResultStatus.FAILURE.value] += 1
            self._metrics.increment(INVOCATIONS_TOTAL, labels={**self._labels, "result": "failure"})
            return ProcessingResult(status=ResultStatus.FAILURE, reason=f"TransformError: {e}")

        result = await self.invoke(message)
        log.info(
            "pipe.invoked",
            pipe=self.name,
            handle=event.origin.handle,
            status=result.status.value,
            duration_ms=round(result.duration_ms, 2),
        )
        return result

    def _record_polled(self, batch: Batch):
        if batch.events:
            self._counts["polled"] += len(batch.events)
            self._metrics.increment(EVENTS_POLLED_TOTAL, value=len(batch.events), labels=self._labels)

    def _record_redelivery(self, event: Event, result: ProcessingResult):
        self._counts["redelivered"] += 1
        self._metrics.increment(EVENTS_REDELIVERED_TOTAL, labels=self._labels)
        log.warning(
            "pipe.redelivery",
            pipe=self.name,
            handle=event.origin.handle,
            partition=event.origin.partition,
            receive_count=event.origin.receive_count,
            status=result.status.value,
            reason=result.reason,
        )

    # --- work units ---------------------------------------------------------

    @abstractmethod
    async def _work_units(self) -> list[Hashable]:
        """Units of independent work; one worker task runs per unit."""
        pass

    @abstractmethod
    async def _poll_unit(self, unit: Hashable) -> Batch:
        pass

    @abstractmethod
    async def deliver(self, batch: Batch):
        """Process a polled batch and apply the post-invocation policy."""
        pass

    async def run_once(self) -> int:
        """
        Poll and deliver once for every unit, sequentially.

        Returns:
            Number of events polled
        """
        polled = 0
        for unit in await self._work_units():
            batch = await self._poll_unit(unit)
            polled += len(batch)
            if batch.events:
                await self.deliver(batch)
        return polled

    # --- lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self):
        """Start one worker task per work unit."""
        if self._tasks:
            return
        self._stopping.clear()
        for unit in await self._work_units():
            self._tasks[unit] = asyncio.create_task(
                self._run_worker(unit), name=f"{self.name}-{unit}"
            )
        log.info("pipe.started", pipe=self.name, kind=self.kind.value, workers=len(self._tasks))

    async def stop(self):
        """
        Stop polling and wait for in-flight batches to finish.

        Workers waiting on a poll or a backoff are cancelled; workers in the
        middle of a batch complete it first.
        """
        if not self._tasks:
            return
        self._stopping.set()
        for unit, task in self._tasks.items():
            if unit not in self._busy:
                task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
        self._busy.clear()
        log.info("pipe.stopped", pipe=self.name)

    def _backoff_delay(self, failures: int) -> float:
        delay = min(self.backoff_max, self.backoff_base * (2 ** (failures - 1)))
        return delay * random.uniform(0.5, 1.0)

    async def _run_worker(self, unit: Hashable):
        bind_worker(self.name, unit)
        failures = 0
        while not self._stopping.is_set():
            try:
                batch = await self._poll_unit(unit)
            except SourceUnavailable as e:
                failures += 1
                delay = self._backoff_delay(failures)
                self._counts["poll_errors"] += 1
                self._metrics.increment(POLL_ERRORS_TOTAL, labels=self._labels)
                log.warning("pipe.poll_failed", error=str(e), failures=failures, retry_in=round(delay, 3))
                await asyncio.sleep(delay)
                continue

            failures = 0
            if not batch.events:
                await asyncio.sleep(self.idle_delay)
                continue

            self._busy.add(unit)
            try:
                await self.deliver(batch)
            finally:
                self._busy.discard(unit)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "running": self.running,
            "workers": len(self._tasks),
            "counts": dict(self._counts),
        }
