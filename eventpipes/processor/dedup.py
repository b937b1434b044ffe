"""Idempotent event processor backed by the shared cache."""
import hashlib
from typing import Any, Literal
from urllib.parse import unquote_plus
import orjson
import structlog
from pydantic import ValidationError
from ..cache.base import CacheClient
from ..errors import CacheUnavailable, ProcessorError
from ..event_models import DomainEvent
from ..metrics.collector import (
    MetricsCollector,
    collector,
    CACHE_ERRORS_TOTAL,
    EVENTS_DUPLICATE_TOTAL,
    EVENTS_POISONED_TOTAL,
    EVENTS_RECORDED_TOTAL,
)

log = structlog.get_logger()

RECORDED = "recorded"
DUPLICATE = "duplicate"
IGNORED = "ignored"
POISONED = "poisoned"


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def decode_body(body: str) -> Any:
    """
    Parse a message body as JSON, URL-decoding it first if needed.

    Raises:
        ProcessorError: If neither the raw nor the URL-decoded body is JSON
    """
    try:
        return orjson.loads(body)
    except orjson.JSONDecodeError:
        pass
    try:
        return orjson.loads(unquote_plus(body))
    except orjson.JSONDecodeError as e:
        raise ProcessorError(f"body is not valid JSON: {e}") from e


def idempotency_key(event: DomainEvent, body: str) -> str:
    """Cache key guarding one logical event: its eventId, else a body digest."""
    if event.eventId is not None and event.eventId != "":
        return f"dedup:{event.eventId}"
    return f"dedup:{_digest(body)}"


class EventProcessor:
    """
    Records each event once per dedup window.

    Each invocation payload is a ``{"body": ...}`` envelope, or an array of
    them. The body is parsed into a DomainEvent; if its eventType has a
    dedup window the body is stored under the event's idempotency key with
    an atomic set-if-absent, so redelivered copies leave the cache as it was
    after the first one.

    With max_attempts set, deliveries of a body that has not yet completed
    are counted under ``attempts:<digest>``. Once the count passes the limit
    the body is written to ``poisoned:<digest>`` and acknowledged instead of
    being retried. A completed delivery removes its counter.
    """

    def __init__(
        self,
        cache: CacheClient,
        dedup_ttls: dict[str, int] | None = None,
        default_ttl: int | None = None,
        cache_failure_policy: Literal["fail", "degrade"] = "fail",
        max_attempts: int | None = None,
        attempts_ttl: int = 86400,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the processor.

        Args:
            cache: Cache client used for all state
            dedup_ttls: Dedup window in seconds per eventType
            default_ttl: Window for event types without a rule (None ignores them)
            cache_failure_policy: "fail" raises so the event is redelivered,
                "degrade" acknowledges it without recording
            max_attempts: Deliveries allowed before a body is set aside
            attempts_ttl: Expiry for attempt counters and poisoned entries
            metrics: Metrics collector (defaults to the global collector)
        """
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._cache = cache
        self.dedup_ttls = dict(dedup_ttls or {})
        self.default_ttl = default_ttl
        self.cache_failure_policy = cache_failure_policy
        self.max_attempts = max_attempts
        self.attempts_ttl = attempts_ttl
        self._metrics = metrics or collector

    async def handle(self, payload: bytes) -> dict[str, int]:
        """
        Process one invocation payload.

        Returns:
            Count of bodies per outcome

        Raises:
            ProcessorError: On a malformed payload, or when the cache is
                unavailable under the "fail" policy
        """
        summary = {RECORDED: 0, DUPLICATE: 0, IGNORED: 0, POISONED: 0}
        for body in self._bodies(payload):
            try:
                outcome = await self._process_body(body)
            except CacheUnavailable as e:
                self._metrics.increment(CACHE_ERRORS_TOTAL)
                if self.cache_failure_policy == "degrade":
                    log.warning("cache.degraded", error=str(e))
                    summary[IGNORED] += 1
                    continue
                raise ProcessorError(f"cache unavailable: {e}") from e
            summary[outcome] += 1
        return summary

    @staticmethod
    def _bodies(payload: bytes) -> list[str]:
        try:
            document = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise ProcessorError(f"invocation payload is not valid JSON: {e}") from e

        envelopes = document if isinstance(document, list) else [document]
        bodies = []
        for envelope in envelopes:
            if not isinstance(envelope, dict) or not isinstance(envelope.get("body"), str):
                raise ProcessorError("invocation payload must carry a string 'body'")
            bodies.append(envelope["body"])
        return bodies

    async def _process_body(self, body: str) -> str:
        attempts_key = f"attempts:{_digest(body)}"
        if self.max_attempts is not None:
            attempts = await self._cache.incr(attempts_key, self.attempts_ttl)
            if attempts > self.max_attempts:
                await self._cache.set_if_absent(
                    f"poisoned:{_digest(body)}", body.encode("utf-8"), self.attempts_ttl
                )
                self._metrics.increment(EVENTS_POISONED_TOTAL)
                log.error("event.poisoned", attempts=attempts, max_attempts=self.max_attempts)
                return POISONED

        outcome = await self._apply(body)

        if self.max_attempts is not None:
            await self._cache.delete(attempts_key)
        return outcome

    async def _apply(self, body: str) -> str:
        document = decode_body(body)
        try:
            event = DomainEvent.model_validate(document) if isinstance(document, dict) else DomainEvent()
        except ValidationError as e:
            raise ProcessorError(f"body is not a valid event: {e}") from e

        ttl = self.dedup_ttls.get(event.eventType) if event.eventType else None
        if ttl is None:
            ttl = self.default_ttl
        if ttl is None:
            log.debug("event.ignored", event_type=event.eventType)
            return IGNORED

        key = idempotency_key(event, body)
        if await self._cache.set_if_absent(key, body.encode("utf-8"), ttl):
            self._metrics.increment(EVENTS_RECORDED_TOTAL, labels={"event_type": event.eventType or ""})
            log.info("event.recorded", key=key, event_type=event.eventType, ttl=ttl)
            return RECORDED

        self._metrics.increment(EVENTS_DUPLICATE_TOTAL, labels={"event_type": event.eventType or ""})
        log.info("event.duplicate", key=key, event_type=event.eventType)
        return DUPLICATE
