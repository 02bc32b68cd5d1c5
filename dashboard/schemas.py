"""
Pydantic schemas for dashboard and query responses.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


# =======================
# ENUMS
# =======================

class SystemHealth(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    CRITICAL = "Critical"
    UNKNOWN = "Unknown"


class DueStatus(str, Enum):
    DUE_NOW = "Due Now"
    DUE_SOON = "Due Soon"
    SCHEDULED = "Scheduled"


class TrendDirection(str, Enum):
    INCREASING = "Increasing"
    DECREASING = "Decreasing"
    STABLE = "Stable"
    UNKNOWN = "Unknown"


# =======================
# 1. SNAPSHOT PARTS
# =======================

class NextDueIndicator(BaseModel):
    model_config = ConfigDict(frozen=True)

    indicator_id: int
    name: str
    owner: str
    next_run: datetime
    minutes_until_due: int
    status: DueStatus


class RecentExecution(BaseModel):
    model_config = ConfigDict(frozen=True)

    indicator_id: int
    name: str
    timestamp: datetime
    success: bool
    current_value: Optional[float] = None
    deviation_percent: Optional[float] = None
    should_alert: bool = False
    error_message: Optional[str] = None


class RecentAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    indicator_id: int
    name: str
    owner: str
    status: str  # triggered, resolved
    severity: Optional[str] = None
    trigger_time: datetime
    deviation_percent: Optional[float] = None
    current_value: Optional[float] = None


# =======================
# 2. DASHBOARD SNAPSHOT
# =======================

class DashboardSnapshot(BaseModel):
    """Derived statistics at one instant. Never persisted."""

    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    window_hours: float

    total_indicators: int
    active_indicators: int
    inactive_indicators: int
    due_indicators: int
    running_indicators: int

    executions_in_window: int
    successful_executions: int
    failed_executions: int
    alerts_in_window: int
    alerts_today: int
    alerts_this_week: int
    active_alerts: int

    system_load: float
    health_percentage: Optional[float] = None
    system_health: SystemHealth

    next_indicator_due: Optional[NextDueIndicator] = None
    recent_executions: List[RecentExecution] = []
    recent_alerts: List[RecentAlert] = []


# =======================
# 3. ANALYTICS
# =======================

class IndicatorPerformance(BaseModel):
    """Execution statistics for one indicator over a period."""

    model_config = ConfigDict(frozen=True)

    indicator_id: int
    name: str
    period_start: datetime
    period_end: datetime

    execution_count: int
    successful_executions: int
    success_rate: float
    alert_evaluations: int
    average_duration_ms: Optional[float] = None

    average_value: Optional[float] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    trend_direction: TrendDirection = TrendDirection.UNKNOWN
    trend_change_percent: Optional[float] = None
