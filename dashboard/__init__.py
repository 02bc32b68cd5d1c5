"""
Dashboard Package.

Live statistics and the read-only query surface over the
monitor's stores. Rendering and HTTP routing live elsewhere.
"""

from .aggregator import DashboardAggregator, build_snapshot
from .queries import QueryService
from .schemas import (
    DashboardSnapshot,
    DueStatus,
    IndicatorPerformance,
    SystemHealth,
    TrendDirection,
)

__all__ = [
    "DashboardAggregator",
    "DashboardSnapshot",
    "DueStatus",
    "IndicatorPerformance",
    "QueryService",
    "SystemHealth",
    "TrendDirection",
    "build_snapshot",
]
