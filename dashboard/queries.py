"""
Dashboard - Query Service.

Read-only surface consumed by an external web layer: due list,
execution history, dashboard snapshots, running executions and
per-indicator performance.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from alerting.state_machine import AlertState
from alerting.store import AlertStateStore
from execution.ledger import ExecutionLedger, ExecutionRecord, HistoryQuery
from indicators.models import Indicator
from indicators.store import IndicatorStore
from scheduler.leases import Lease
from scheduler.scheduler import Scheduler

from .aggregator import DashboardAggregator
from .schemas import DashboardSnapshot, IndicatorPerformance, TrendDirection


logger = logging.getLogger(__name__)


def trend(values: List[float]) -> tuple:
    """Direction and percentage change from the first to the last value."""
    if len(values) < 2:
        return TrendDirection.UNKNOWN, None

    first, last = values[0], values[-1]
    change = (last - first) * 100.0 / first if first != 0 else None

    if last > first:
        direction = TrendDirection.INCREASING
    elif last < first:
        direction = TrendDirection.DECREASING
    else:
        direction = TrendDirection.STABLE
    return direction, change


class QueryService:
    """Query surface over the monitor's stores."""

    def __init__(
        self,
        indicator_store: IndicatorStore,
        ledger: ExecutionLedger,
        alert_store: AlertStateStore,
        scheduler: Scheduler,
        aggregator: DashboardAggregator,
    ):
        self._indicators = indicator_store
        self._ledger = ledger
        self._alerts = alert_store
        self._scheduler = scheduler
        self._aggregator = aggregator

    async def indicators(self, active_only: bool = False) -> List[Indicator]:
        return await self._indicators.list_indicators(active_only=active_only)

    async def due_indicators(self, now: datetime) -> List[Indicator]:
        return await self._scheduler.due_indicators(now)

    async def execution_history(self, query: HistoryQuery) -> List[ExecutionRecord]:
        return await self._ledger.query(query)

    async def dashboard(self, now: datetime, window: Optional[timedelta] = None) -> DashboardSnapshot:
        return await self._aggregator.snapshot(now, window)

    def running_executions(self, now: Optional[datetime] = None) -> List[Lease]:
        return self._scheduler.running_executions(now)

    async def alert_states(self, active_only: bool = False) -> List[AlertState]:
        states = await self._alerts.list_states()
        if active_only:
            states = [state for state in states if state.is_active]
        return states

    async def indicator_performance(
        self,
        indicator_id: int,
        since: datetime,
        until: datetime,
    ) -> Optional[IndicatorPerformance]:
        """Execution statistics for one indicator; None if it does not exist."""
        indicator = await self._indicators.get(indicator_id)
        if indicator is None:
            return None

        records = await self._ledger.query(
            HistoryQuery(indicator_id=indicator_id, since=since, until=until, limit=None)
        )
        records.sort(key=lambda record: record.timestamp)

        successful = [record for record in records if record.success]
        values = [record.current_value for record in successful if record.current_value is not None]
        durations = [record.duration_ms for record in records]
        direction, change = trend(values)

        return IndicatorPerformance(
            indicator_id=indicator_id,
            name=indicator.name,
            period_start=since,
            period_end=until,
            execution_count=len(records),
            successful_executions=len(successful),
            success_rate=len(successful) / len(records) * 100.0 if records else 0.0,
            alert_evaluations=sum(1 for record in records if record.should_alert),
            average_duration_ms=sum(durations) / len(durations) if durations else None,
            average_value=sum(values) / len(values) if values else None,
            min_value=min(values) if values else None,
            max_value=max(values) if values else None,
            trend_direction=direction,
            trend_change_percent=change,
        )


__all__ = [
    "QueryService",
    "trend",
]
