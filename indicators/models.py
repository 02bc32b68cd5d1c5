"""
Indicators - Domain Models.

============================================================
PURPOSE
============================================================
Types shared by every part of the monitor:

- IndicatorType / ComparisonOperator / AlertSeverity enums
- Type-specific configuration records (tagged union)
- Indicator: a monitored metric and its schedule

Configuration is a closed record per indicator type. The
`indicator_type` tag selects the variant, so an indicator can
never carry fields that its type does not understand.

============================================================
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================
# ENUMS
# ============================================================

class IndicatorType(str, Enum):
    """Supported evaluation strategies."""

    THRESHOLD = "threshold"
    """Alert when the current value crosses a fixed threshold."""

    SUCCESS_RATE = "success_rate"
    """Alert on percentage deviation of a success rate."""

    TRANSACTION_VOLUME = "transaction_volume"
    """Alert on percentage deviation of a volume."""

    TREND_ANALYSIS = "trend_analysis"
    """Alert on percentage deviation over a trend window."""


class ComparisonOperator(str, Enum):
    """Comparison used by threshold indicators."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"


class AlertSeverity(str, Enum):
    """Alert severity, ordered from least to most urgent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# CONFIGURATION VARIANTS
# ============================================================

class ThresholdConfig(BaseModel):
    """Fixed threshold comparison."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    indicator_type: Literal["threshold"] = "threshold"
    threshold_value: float
    comparison_operator: ComparisonOperator


class DeviationConfig(BaseModel):
    """Percentage deviation from a baseline (success rate, volume)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    indicator_type: Literal["success_rate", "transaction_volume"]
    deviation_percent: float = Field(ge=0, le=100)
    last_minutes: int = Field(ge=1, le=43200)
    minimum_threshold: float = Field(default=0, ge=0)


class TrendAnalysisConfig(BaseModel):
    """Percentage deviation over a trend window."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    indicator_type: Literal["trend_analysis"] = "trend_analysis"
    deviation_percent: float = Field(ge=0, le=100)
    last_minutes: int = Field(ge=1, le=43200)


IndicatorConfig = Annotated[
    Union[ThresholdConfig, DeviationConfig, TrendAnalysisConfig],
    Field(discriminator="indicator_type"),
]


# ============================================================
# INDICATOR
# ============================================================

@dataclass
class Indicator:
    """
    A monitored metric with its evaluation rule and schedule.

    Stores hand out copies; mutate through the store only.
    """

    name: str
    owner: str
    source_ref: str
    """Opaque handle passed to the metric collector."""

    config: IndicatorConfig
    frequency_minutes: int
    priority: int = 2
    """1 is the most urgent."""

    is_active: bool = True
    last_run: Optional[datetime] = None
    indicator_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.frequency_minutes <= 0:
            raise ValueError("frequency_minutes must be positive")

    @property
    def indicator_type(self) -> IndicatorType:
        return IndicatorType(self.config.indicator_type)

    @property
    def frequency(self) -> timedelta:
        return timedelta(minutes=self.frequency_minutes)

    @property
    def window_minutes(self) -> int:
        """Collection window: the configured lookback, or the frequency."""
        return getattr(self.config, "last_minutes", self.frequency_minutes)

    @property
    def next_run_at(self) -> Optional[datetime]:
        """When the indicator becomes due; None if it never ran."""
        if self.last_run is None:
            return None
        return self.last_run + self.frequency

    def copy(self, **changes) -> "Indicator":
        return replace(self, **changes)


__all__ = [
    "IndicatorType",
    "ComparisonOperator",
    "AlertSeverity",
    "ThresholdConfig",
    "DeviationConfig",
    "TrendAnalysisConfig",
    "IndicatorConfig",
    "Indicator",
]
