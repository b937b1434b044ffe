"""Test doubles shared across test modules."""
import asyncio
import orjson
from eventpipes.errors import ProcessorError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingHandler:
    """Target that records every invocation payload.

    Fails the first ``fail_times`` invocations, and sleeps ``delay``
    seconds per invocation.
    """

    def __init__(self, fail_times: int = 0, delay: float = 0.0, fail_bodies: set[str] | None = None):
        self.payloads: list[bytes] = []
        self.completed: list[bytes] = []
        self.fail_times = fail_times
        self.delay = delay
        self.fail_bodies = fail_bodies or set()

    @property
    def bodies(self) -> list[str]:
        return [orjson.loads(p)["body"] for p in self.payloads]

    async def handle(self, payload: bytes):
        self.payloads.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ProcessorError("induced failure")
        if orjson.loads(payload)["body"] in self.fail_bodies:
            raise ProcessorError("induced failure")
        self.completed.append(payload)
        return "ok"


