"""
Shared fixtures for the indicator monitor tests.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from alerting.notifier import CallbackNotifier
from alerting.store import InMemoryAlertStateStore
from core.clock import MockClock
from core.config import ExecutorConfig
from execution.collector import CollectionResult, MetricCollector, StaticMetricCollector
from execution.executor import Executor
from execution.ledger import InMemoryExecutionLedger
from indicators.models import (
    ComparisonOperator,
    DeviationConfig,
    Indicator,
    ThresholdConfig,
    TrendAnalysisConfig,
)
from indicators.store import InMemoryIndicatorStore


# Monday, so day and week boundaries are easy to reason about
NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class SlowCollector(MetricCollector):
    """Collector that sleeps and tracks concurrency."""

    def __init__(self, delay: float = 0.05, values: Tuple[float, Optional[float]] = (100.0, 100.0)):
        self.delay = delay
        self.values = values
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def collect(self, source_ref, window_minutes, deadline):
        self.calls.append(source_ref)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return CollectionResult.success(*self.values)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> MockClock:
    return MockClock(NOW)


@pytest.fixture
def indicator_store() -> InMemoryIndicatorStore:
    return InMemoryIndicatorStore()


@pytest.fixture
def ledger() -> InMemoryExecutionLedger:
    return InMemoryExecutionLedger()


@pytest.fixture
def alert_store() -> InMemoryAlertStateStore:
    return InMemoryAlertStateStore()


@pytest.fixture
def collector() -> StaticMetricCollector:
    return StaticMetricCollector()


@pytest.fixture
def events() -> List:
    return []


@pytest.fixture
def notifier(events) -> CallbackNotifier:
    async def record(event):
        events.append(event)

    return CallbackNotifier([record])


@pytest.fixture
def executor_config() -> ExecutorConfig:
    return ExecutorConfig(collection_timeout_seconds=1.0, notification_timeout_seconds=1.0)


@pytest.fixture
def executor(indicator_store, ledger, alert_store, collector, notifier, executor_config) -> Executor:
    return Executor(indicator_store, ledger, alert_store, collector, notifier, executor_config)


@pytest.fixture
def make_indicator():
    """Factory for indicators with sensible defaults."""

    def _make(
        name: str = "Checkout success rate",
        kind: str = "success_rate",
        **overrides,
    ) -> Indicator:
        if kind == "threshold":
            config = ThresholdConfig(
                threshold_value=overrides.pop("threshold_value", 100.0),
                comparison_operator=overrides.pop("comparison_operator", ComparisonOperator.GT),
            )
        elif kind == "trend_analysis":
            config = TrendAnalysisConfig(
                deviation_percent=overrides.pop("deviation_percent", 10.0),
                last_minutes=overrides.pop("last_minutes", 60),
            )
        else:
            config = DeviationConfig(
                indicator_type=kind,
                deviation_percent=overrides.pop("deviation_percent", 10.0),
                last_minutes=overrides.pop("last_minutes", 60),
                minimum_threshold=overrides.pop("minimum_threshold", 0.0),
            )
        fields: Dict = dict(
            name=name,
            owner="payments",
            source_ref=name.lower().replace(" ", "."),
            config=config,
            frequency_minutes=5,
        )
        fields.update(overrides)
        return Indicator(**fields)

    return _make


@pytest.fixture
def slow_collector() -> SlowCollector:
    return SlowCollector()
