"""
Dashboard - Aggregator.

============================================================
PURPOSE
============================================================
Live statistics computed on demand from indicators, execution
records, alert states and leases.

============================================================
DEFINITIONS
============================================================
system_load   = due / active * 100            (0 if no active)
health %      = (active - alerted active) / active * 100
                where "alerted" means a trigger inside the window
health bucket = >=90 Excellent, >=75 Good, >=50 Fair,
                >=25 Poor, else Critical; Unknown if no active

Only data at or before `now` is counted, and records and alerts
of indicators missing from the indicator snapshot are ignored.

============================================================
READ CONSISTENCY
============================================================
The stores are read one after another (indicators, execution
records, alert states, leases), not under one transaction. A
run finishing between two reads can appear in the later read
only, e.g. its record counted while its indicator still looks
due. Such skew is bounded to runs in flight at snapshot time;
the filters above keep it from ever referencing an indicator
or an instant outside the snapshot.

============================================================
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from alerting.state_machine import AlertState, AlertStatus
from alerting.store import AlertStateStore
from core.clock import start_of_day, start_of_week
from core.config import DashboardConfig
from execution.ledger import ExecutionLedger, ExecutionRecord, HistoryQuery
from indicators.models import Indicator
from indicators.store import IndicatorStore
from scheduler.leases import Lease, LeaseMap
from scheduler.scheduler import is_due

from .schemas import (
    DashboardSnapshot,
    DueStatus,
    NextDueIndicator,
    RecentAlert,
    RecentExecution,
    SystemHealth,
)


logger = logging.getLogger(__name__)

HEALTH_BUCKETS = (
    (90.0, SystemHealth.EXCELLENT),
    (75.0, SystemHealth.GOOD),
    (50.0, SystemHealth.FAIR),
    (25.0, SystemHealth.POOR),
)


# ============================================================
# PURE HELPERS
# ============================================================

def system_load(due_count: int, active_count: int) -> float:
    if active_count == 0:
        return 0.0
    return due_count / active_count * 100.0


def health_bucket(percentage: Optional[float]) -> SystemHealth:
    if percentage is None:
        return SystemHealth.UNKNOWN
    for floor, health in HEALTH_BUCKETS:
        if percentage >= floor:
            return health
    return SystemHealth.CRITICAL


def next_due(
    indicators: Sequence[Indicator],
    now: datetime,
    due_soon: timedelta,
) -> Optional[NextDueIndicator]:
    """Active indicator that becomes due first (never-run ones are due now)."""
    candidates = [indicator for indicator in indicators if indicator.is_active]
    if not candidates:
        return None

    def due_at(indicator: Indicator) -> datetime:
        return indicator.next_run_at or now

    first = min(candidates, key=lambda indicator: (due_at(indicator), indicator.indicator_id))
    next_run = due_at(first)
    remaining = (next_run - now).total_seconds()

    if remaining <= 0:
        status = DueStatus.DUE_NOW
    elif remaining <= due_soon.total_seconds():
        status = DueStatus.DUE_SOON
    else:
        status = DueStatus.SCHEDULED

    return NextDueIndicator(
        indicator_id=first.indicator_id,
        name=first.name,
        owner=first.owner,
        next_run=next_run,
        minutes_until_due=max(0, math.ceil(remaining / 60.0)),
        status=status,
    )


def build_snapshot(
    now: datetime,
    indicators: Sequence[Indicator],
    records: Sequence[ExecutionRecord],
    alert_states: Sequence[AlertState],
    running: Sequence[Lease],
    window: timedelta,
    config: Optional[DashboardConfig] = None,
) -> DashboardSnapshot:
    """Compute a snapshot from already-fetched data."""
    config = config or DashboardConfig()
    window_start = now - window
    by_id: Dict[int, Indicator] = {indicator.indicator_id: indicator for indicator in indicators}

    active = [indicator for indicator in indicators if indicator.is_active]
    due = [indicator for indicator in active if is_due(indicator, now)]

    in_window = [
        record for record in records
        if window_start <= record.timestamp <= now and record.indicator_id in by_id
    ]
    in_window.sort(key=lambda record: record.timestamp, reverse=True)

    known_states = [
        state for state in alert_states
        if state.indicator_id in by_id
        and state.last_trigger_time is not None
        and state.last_trigger_time <= now
    ]
    alerted = [state for state in known_states if state.last_trigger_time >= window_start]
    alerted.sort(key=lambda state: state.last_trigger_time, reverse=True)

    if active:
        alerted_active = {
            state.indicator_id for state in alerted if by_id[state.indicator_id].is_active
        }
        health = (len(active) - len(alerted_active)) / len(active) * 100.0
    else:
        health = None

    day_start = start_of_day(now)
    week_start = start_of_week(now)

    return DashboardSnapshot(
        generated_at=now,
        window_hours=window.total_seconds() / 3600.0,
        total_indicators=len(indicators),
        active_indicators=len(active),
        inactive_indicators=len(indicators) - len(active),
        due_indicators=len(due),
        running_indicators=sum(
            1 for lease in running
            if lease.indicator_id in by_id and not lease.is_expired(now)
        ),
        executions_in_window=len(in_window),
        successful_executions=sum(1 for record in in_window if record.success),
        failed_executions=sum(1 for record in in_window if not record.success),
        alerts_in_window=len(alerted),
        alerts_today=sum(1 for state in known_states if state.last_trigger_time >= day_start),
        alerts_this_week=sum(1 for state in known_states if state.last_trigger_time >= week_start),
        active_alerts=sum(1 for state in known_states if state.status == AlertStatus.TRIGGERED),
        system_load=system_load(len(due), len(active)),
        health_percentage=health,
        system_health=health_bucket(health),
        next_indicator_due=next_due(
            indicators, now, timedelta(minutes=config.due_soon_minutes)
        ),
        recent_executions=[
            RecentExecution(
                indicator_id=record.indicator_id,
                name=by_id[record.indicator_id].name,
                timestamp=record.timestamp,
                success=record.success,
                current_value=record.current_value,
                deviation_percent=record.deviation_percent,
                should_alert=record.should_alert,
                error_message=record.error_message,
            )
            for record in in_window[:config.recent_limit]
        ],
        recent_alerts=[
            RecentAlert(
                indicator_id=state.indicator_id,
                name=by_id[state.indicator_id].name,
                owner=by_id[state.indicator_id].owner,
                status=state.status.value,
                severity=state.severity.value if state.severity else None,
                trigger_time=state.last_trigger_time,
                deviation_percent=state.last_deviation,
                current_value=state.last_value,
            )
            for state in alerted[:config.recent_limit]
        ],
    )


# ============================================================
# AGGREGATOR
# ============================================================

class DashboardAggregator:
    """Reads the stores and builds snapshots."""

    def __init__(
        self,
        indicator_store: IndicatorStore,
        ledger: ExecutionLedger,
        alert_store: AlertStateStore,
        leases: LeaseMap,
        config: Optional[DashboardConfig] = None,
    ):
        self._indicators = indicator_store
        self._ledger = ledger
        self._alerts = alert_store
        self._leases = leases
        self._config = config or DashboardConfig()

    async def snapshot(self, now: datetime, window: Optional[timedelta] = None) -> DashboardSnapshot:
        window = window or timedelta(hours=self._config.window_hours)

        indicators = await self._indicators.list_indicators()
        records = await self._ledger.query(
            HistoryQuery(since=now - window, until=now, limit=None)
        )
        alert_states = await self._alerts.list_states()
        running = self._leases.active(now)

        snapshot = build_snapshot(
            now, indicators, records, alert_states, running, window, self._config
        )
        logger.debug(
            f"Dashboard snapshot: active={snapshot.active_indicators} "
            f"due={snapshot.due_indicators} health={snapshot.system_health.value}"
        )
        return snapshot

    async def executions_in_window(self, now: datetime, duration: timedelta) -> List[ExecutionRecord]:
        return await self._ledger.query(HistoryQuery(since=now - duration, until=now, limit=None))

    async def alerts_in_window(self, now: datetime, duration: timedelta) -> List[AlertState]:
        start = now - duration
        return [
            state for state in await self._alerts.list_states()
            if state.last_trigger_time is not None and start <= state.last_trigger_time <= now
        ]


__all__ = [
    "DashboardAggregator",
    "build_snapshot",
    "health_bucket",
    "next_due",
    "system_load",
]
