"""In-process metrics for the pipes and the processor, exposed as JSON on /metrics."""
import time
from collections import defaultdict, deque
from typing import Deque, Dict
import structlog

log = structlog.get_logger()

# Samples kept per histogram series; older samples are dropped
HISTOGRAM_WINDOW = 10_000


def _percentile(ordered: list[float], q: float) -> float:
    index = min(len(ordered) - 1, max(0, round(q * (len(ordered) - 1))))
    return ordered[index]


class MetricsCollector:
    """
    Counters, gauges and latency histograms keyed by name and labels.

    Labels are folded into the key as ``name{k=v,...}`` with the label names
    sorted, so ``{"pipe": "queue-pipe", "result": "success"}`` and the same
    labels in another order land on one series.
    """

    def __init__(self, histogram_window: int = HISTOGRAM_WINDOW):
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=histogram_window))
        self._started = time.time()

    def increment(self, metric: str, value: int = 1, labels: Dict[str, str] | None = None):
        """
        Add to a counter.

        Args:
            metric: Counter name, e.g. ``events_acked_total``
            value: Amount to add
            labels: Series labels such as ``pipe`` or ``event_type``
        """
        self._counters[self._make_key(metric, labels)] += value
        log.debug("metric.increment", metric=metric, value=value, labels=labels)

    def gauge(self, metric: str, value: float, labels: Dict[str, str] | None = None):
        self._gauges[self._make_key(metric, labels)] = value
        log.debug("metric.gauge", metric=metric, value=value, labels=labels)

    def histogram(self, metric: str, value: float, labels: Dict[str, str] | None = None):
        self._histograms[self._make_key(metric, labels)].append(value)

    def record_latency(self, metric: str, start_time: float, labels: Dict[str, str] | None = None):
        """Record milliseconds elapsed since ``start_time`` (a time.monotonic() reading)."""
        self.histogram(metric, (time.monotonic() - start_time) * 1000, labels)

    def counter_value(self, metric: str, labels: Dict[str, str] | None = None) -> int:
        return self._counters.get(self._make_key(metric, labels), 0)

    def get_metrics(self) -> Dict:
        histograms = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            total = sum(ordered)
            histograms[key] = {
                "count": len(ordered),
                "sum": total,
                "avg": total / len(ordered),
                "min": ordered[0],
                "max": ordered[-1],
                "p50": _percentile(ordered, 0.50),
                "p95": _percentile(ordered, 0.95),
            }

        return {
            "uptime_seconds": time.time() - self._started,
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms,
        }

    def reset(self):
        """Drop every series and restart the uptime clock."""
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()
        self._started = time.time()
        log.info("metrics.reset")

    @staticmethod
    def _make_key(metric: str, labels: Dict[str, str] | None) -> str:
        if not labels:
            return metric
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{metric}{{{label_str}}}"


collector = MetricsCollector()

# Producer endpoints
EVENTS_PRODUCED_TOTAL = "events_produced_total"

# Routers, labelled by pipe
EVENTS_POLLED_TOTAL = "events_polled_total"
EVENTS_ACKED_TOTAL = "events_acked_total"
EVENTS_REDELIVERED_TOTAL = "events_redelivered_total"
INVOCATIONS_TOTAL = "invocations_total"
INVOKE_LATENCY_MS = "invoke_latency_ms"
POLL_ERRORS_TOTAL = "poll_errors_total"
PARTITION_WORKERS = "partition_workers"

# Processor, labelled by event type
EVENTS_RECORDED_TOTAL = "events_recorded_total"
EVENTS_DUPLICATE_TOTAL = "events_duplicate_total"
EVENTS_POISONED_TOTAL = "events_poisoned_total"
CACHE_ERRORS_TOTAL = "cache_errors_total"
