"""
Execution Package.

Metric collection contract, the execution ledger and the
per-indicator executor.
"""

from .collector import CollectionResult, MetricCollector, StaticMetricCollector, load_collector
from .executor import Executor
from .ledger import ExecutionLedger, ExecutionRecord, HistoryQuery, InMemoryExecutionLedger

__all__ = [
    "CollectionResult",
    "ExecutionLedger",
    "ExecutionRecord",
    "Executor",
    "HistoryQuery",
    "InMemoryExecutionLedger",
    "MetricCollector",
    "StaticMetricCollector",
    "load_collector",
]
