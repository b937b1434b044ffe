"""Shared test fixtures."""
import pytest
from eventpipes.metrics.collector import MetricsCollector
from helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MetricsCollector()
