"""Tests for metrics and telemetry."""
import asyncio
import time
import pytest
from httpx import AsyncClient, ASGITransport
from eventpipes.main import app
from eventpipes.metrics.collector import MetricsCollector, collector


@pytest.mark.asyncio
async def test_metrics_endpoint_exists():
    """Test that /metrics endpoint is accessible."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")
        assert response.status_code == 200
        data = response.json()
        assert "uptime_seconds" in data
        assert "counters" in data
        assert "gauges" in data
        assert "histograms" in data


def test_counter_increment():
    test_collector = MetricsCollector()

    test_collector.increment("test_counter")
    test_collector.increment("test_counter")
    test_collector.increment("test_counter", value=3)

    metrics = test_collector.get_metrics()
    assert metrics["counters"]["test_counter"] == 5


def test_counter_with_labels():
    test_collector = MetricsCollector()

    test_collector.increment("invocations_total", labels={"pipe": "queue-pipe", "result": "success"})
    test_collector.increment("invocations_total", labels={"pipe": "queue-pipe", "result": "timeout"})
    test_collector.increment("invocations_total", labels={"result": "success", "pipe": "queue-pipe"})

    metrics = test_collector.get_metrics()
    assert metrics["counters"]["invocations_total{pipe=queue-pipe,result=success}"] == 2
    assert metrics["counters"]["invocations_total{pipe=queue-pipe,result=timeout}"] == 1


def test_counter_value_defaults_to_zero():
    test_collector = MetricsCollector()
    test_collector.increment("events_acked_total", labels={"pipe": "stream-pipe"})

    assert test_collector.counter_value("events_acked_total", labels={"pipe": "stream-pipe"}) == 1
    assert test_collector.counter_value("events_acked_total", labels={"pipe": "queue-pipe"}) == 0


def test_gauge_value():
    test_collector = MetricsCollector()

    test_collector.gauge("partition_workers", 2)
    test_collector.gauge("partition_workers", 4)  # Update value

    metrics = test_collector.get_metrics()
    assert metrics["gauges"]["partition_workers"] == 4


def test_histogram_recording():
    test_collector = MetricsCollector()

    test_collector.histogram("latency", 10.5)
    test_collector.histogram("latency", 20.0)
    test_collector.histogram("latency", 15.5)

    stats = test_collector.get_metrics()["histograms"]["latency"]

    assert stats["count"] == 3
    assert stats["sum"] == 46.0
    assert stats["min"] == 10.5
    assert stats["max"] == 20.0
    assert abs(stats["avg"] - 15.33) < 0.01


@pytest.mark.asyncio
async def test_latency_recording():
    test_collector = MetricsCollector()

    start_time = time.monotonic()
    await asyncio.sleep(0.01)
    test_collector.record_latency("invoke_latency_ms", start_time)

    stats = test_collector.get_metrics()["histograms"]["invoke_latency_ms"]

    assert stats["count"] == 1
    assert stats["min"] >= 10


def test_metrics_reset():
    test_collector = MetricsCollector()

    test_collector.increment("counter", value=10)
    test_collector.gauge("gauge", 50.0)
    test_collector.histogram("hist", 100.0)

    test_collector.reset()

    metrics = test_collector.get_metrics()
    assert len(metrics["counters"]) == 0
    assert len(metrics["gauges"]) == 0
    assert len(metrics["histograms"]) == 0


@pytest.mark.asyncio
async def test_producer_endpoints_increment_metrics():
    collector.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.post("/v1/queue/messages", json={"body": "reading"})
        await client.post("/v1/stream/records", json={"data": "reading", "partition_key": "k"})

        data = (await client.get("/metrics")).json()

        assert data["counters"]["events_produced_total{source=queue}"] == 1
        assert data["counters"]["events_produced_total{source=stream}"] == 1


@pytest.mark.asyncio
async def test_uptime_tracking():
    test_collector = MetricsCollector()

    await asyncio.sleep(0.1)

    assert test_collector.get_metrics()["uptime_seconds"] >= 0.1


def test_histogram_percentiles():
    test_collector = MetricsCollector()
    for value in range(1, 101):
        test_collector.histogram("invoke_latency_ms", float(value))

    stats = test_collector.get_metrics()["histograms"]["invoke_latency_ms"]

    assert stats["p50"] in (50.0, 51.0)
    assert stats["p95"] in (95.0, 96.0)


def test_histogram_window_is_bounded():
    test_collector = MetricsCollector(histogram_window=3)
    for value in (100.0, 1.0, 2.0, 3.0):
        test_collector.histogram("invoke_latency_ms", value)

    stats = test_collector.get_metrics()["histograms"]["invoke_latency_ms"]

    assert stats["count"] == 3
    assert stats["max"] == 3.0
