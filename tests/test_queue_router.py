"""Tests for the queue-sourced pipe."""
import asyncio
import orjson
import pytest
from eventpipes.errors import SourceUnavailable
from eventpipes.event_models import ResultStatus, TransformedMessage
from eventpipes.router.queue import QueueRouter
from eventpipes.sources.memory import InMemoryQueue
from helpers import RecordingHandler


def make_router(queue, handler, metrics, **kwargs):
    kwargs.setdefault("wait_time", 0)
    kwargs.setdefault("visibility_timeout", 300)
    return QueueRouter(queue, handler, metrics=metrics, idle_delay=0.01, **kwargs)


@pytest.mark.asyncio
async def test_successful_invocation_deletes_message(clock, metrics):
    queue = InMemoryQueue(clock=clock)
    handler = RecordingHandler()
    router = make_router(queue, handler, metrics)
    await queue.send('{"temp":72}')

    polled = await router.run_once()

    assert polled == 1
    assert handler.payloads == [b'{"body":"{\\"temp\\":72}"}']
    assert len(queue) == 0
    assert metrics.counter_value("events_acked_total", labels={"pipe": "queue-pipe"}) == 1


@pytest.mark.asyncio
async def test_failed_message_is_redelivered_after_visibility_window(clock, metrics):
    queue = InMemoryQueue(clock=clock)
    handler = RecordingHandler(fail_times=1)
    router = make_router(queue, handler, metrics)
    await queue.send("reading")

    await router.run_once()
    assert len(queue) == 1

    # Still hidden inside the window
    clock.advance(299)
    assert await router.run_once() == 0

    clock.advance(1)
    assert await router.run_once() == 1
    assert handler.bodies == ["reading", "reading"]
    assert len(queue) == 0
    assert router.stats()["counts"]["redelivered"] == 1


@pytest.mark.asyncio
async def test_deterministic_failure_redelivers_indefinitely(clock, metrics):
    queue = InMemoryQueue(clock=clock)
    handler = RecordingHandler(fail_bodies={"poison"})
    router = make_router(queue, handler, metrics, visibility_timeout=10)
    await queue.send("poison")

    for _ in range(5):
        await router.run_once()
        clock.advance(10)

    assert handler.bodies == ["poison"] * 5
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_invocation_past_deadline_is_a_timeout(metrics):
    handler = RecordingHandler(delay=0.5)
    router = make_router(InMemoryQueue(), handler, metrics, invoke_timeout=0.05)

    result = await router.invoke(TransformedMessage(body="slow"))

    assert result.status == ResultStatus.TIMEOUT
    assert handler.completed == []


@pytest.mark.asyncio
async def test_timed_out_message_is_redelivered(clock, metrics):
    """A timeout counts as failure even though the handler would have finished."""
    queue = InMemoryQueue(clock=clock)
    handler = RecordingHandler(delay=0.2)
    router = make_router(queue, handler, metrics, invoke_timeout=0.05)
    await queue.send("slow")

    await router.run_once()
    await asyncio.sleep(0.3)

    assert handler.completed == []
    assert len(queue) == 1
    clock.advance(300)
    router.invoke_timeout = 1.0
    await router.run_once()
    assert len(queue) == 0
    assert len(handler.completed) == 1


@pytest.mark.asyncio
async def test_oversized_payload_is_a_failed_invocation(clock, metrics):
    queue = InMemoryQueue(clock=clock)
    handler = RecordingHandler()
    router = make_router(queue, handler, metrics, max_payload_size=8)
    await queue.send("x" * 9)

    await router.run_once()

    assert handler.payloads == []
    assert len(queue) == 1
    assert metrics.counter_value("invocations_total", labels={"pipe": "queue-pipe", "result": "failure"}) == 1


@pytest.mark.asyncio
async def test_every_message_is_delivered_at_least_once(clock, metrics):
    queue = InMemoryQueue(clock=clock)
    handler = RecordingHandler(fail_times=3)
    router = make_router(queue, handler, metrics, batch_size=1)
    sent = [f"m{i}" for i in range(5)]
    for body in sent:
        await queue.send(body)

    while len(queue):
        await router.run_once()
        clock.advance(300)

    assert set(sent) <= set(handler.bodies)
    assert sorted(orjson.loads(p)["body"] for p in handler.completed) == sent


@pytest.mark.asyncio
async def test_concurrent_pollers_drain_the_queue(metrics):
    queue = InMemoryQueue()
    handler = RecordingHandler(delay=0.01)
    router = make_router(queue, handler, metrics, concurrency=3)
    for i in range(9):
        await queue.send(str(i))

    await router.start()
    assert router.stats()["workers"] == 3
    for _ in range(200):
        if len(queue) == 0:
            break
        await asyncio.sleep(0.01)
    await router.stop()

    assert len(queue) == 0
    assert sorted(handler.bodies, key=int) == [str(i) for i in range(9)]
    assert router.running is False


class FlakyQueue(InMemoryQueue):
    """Queue whose first receives fail."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def receive(self, *args, **kwargs):
        if self.failures > 0:
            self.failures -= 1
            raise SourceUnavailable("connection reset")
        return await super().receive(*args, **kwargs)


@pytest.mark.asyncio
async def test_poll_failures_back_off_and_recover(metrics):
    queue = FlakyQueue(failures=2)
    handler = RecordingHandler()
    router = make_router(queue, handler, metrics, backoff_base=0.01, backoff_max=0.02)
    await queue.send("after-outage")

    await router.start()
    for _ in range(200):
        if handler.completed:
            break
        await asyncio.sleep(0.01)
    await router.stop()

    assert handler.bodies == ["after-outage"]
    assert metrics.counter_value("poll_errors_total", labels={"pipe": "queue-pipe"}) == 2


@pytest.mark.asyncio
async def test_stop_lets_in_flight_invocation_finish(metrics):
    queue = InMemoryQueue()
    handler = RecordingHandler(delay=0.1)
    router = make_router(queue, handler, metrics)
    await queue.send("in-flight")

    await router.start()
    for _ in range(100):
        if handler.payloads:
            break
        await asyncio.sleep(0.005)
    await router.stop()

    assert handler.bodies == ["in-flight"]
    assert len(handler.completed) == 1
    assert len(queue) == 0


def test_router_validates_settings():
    with pytest.raises(ValueError):
        QueueRouter(InMemoryQueue(), RecordingHandler(), batch_size=0)
    with pytest.raises(ValueError):
        QueueRouter(InMemoryQueue(), RecordingHandler(), concurrency=0)
