"""
Indicators - Evaluator.

============================================================
PURPOSE
============================================================
Pure evaluation of a collected metric against its indicator
configuration.

    (type, config, current, baseline) -> EvaluationResult

No I/O, no clock, no shared state. Identical inputs always
give identical results.

============================================================
RULES
============================================================
threshold:
    should_alert = compare(current, threshold_value, operator)
    deviation    = None
    severity     = configured default

success_rate / transaction_volume / trend_analysis:
    current < minimum_threshold   -> no alert, deviation None
    baseline missing or zero      -> no alert, deviation None
    deviation = (current - baseline) / baseline * 100
    should_alert = |deviation| >= deviation_percent
    severity by |deviation|: >=50 critical, >=25 high,
                             >=10 medium, else low

============================================================
"""

import operator
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from core.exceptions import ConfigurationError, EvaluationError

from .models import (
    AlertSeverity,
    ComparisonOperator,
    DeviationConfig,
    IndicatorConfig,
    IndicatorType,
    ThresholdConfig,
)


# ============================================================
# CONSTANTS
# ============================================================

OPERATORS: Dict[ComparisonOperator, Callable[[float, float], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.GTE: operator.ge,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.LTE: operator.le,
    ComparisonOperator.EQ: operator.eq,
}

SEVERITY_BUCKETS = (
    (50.0, AlertSeverity.CRITICAL),
    (25.0, AlertSeverity.HIGH),
    (10.0, AlertSeverity.MEDIUM),
)


# ============================================================
# RESULT
# ============================================================

@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of evaluating one collected metric."""

    should_alert: bool
    deviation_percent: Optional[float] = None
    severity: Optional[AlertSeverity] = None
    error: Optional[EvaluationError] = None
    """Set when deviation could not be computed."""


# ============================================================
# HELPERS
# ============================================================

def compare(current: float, threshold: float, op: ComparisonOperator) -> bool:
    """Apply a comparison operator exactly."""
    return OPERATORS[ComparisonOperator(op)](current, threshold)


def classify_severity(deviation_percent: float) -> AlertSeverity:
    """Map a deviation magnitude to a severity bucket."""
    magnitude = abs(deviation_percent)
    for floor, severity in SEVERITY_BUCKETS:
        if magnitude >= floor:
            return severity
    return AlertSeverity.LOW


def deviation_percent(current: float, baseline: Optional[float]) -> float:
    """
    Signed percentage deviation of current from baseline.

    Raises:
        EvaluationError: baseline is missing or zero
    """
    if baseline is None:
        raise EvaluationError("baseline value is missing")
    if baseline == 0:
        raise EvaluationError("baseline value is zero", context={"current": current})
    return (current - baseline) * 100.0 / baseline


# ============================================================
# EVALUATION
# ============================================================

def evaluate(
    indicator_type: IndicatorType,
    config: IndicatorConfig,
    current: float,
    baseline: Optional[float],
    default_severity: AlertSeverity = AlertSeverity.MEDIUM,
) -> EvaluationResult:
    """Evaluate a collected value for an indicator of the given type."""
    indicator_type = IndicatorType(indicator_type)
    if config.indicator_type != indicator_type.value:
        raise ConfigurationError(
            f"config for '{config.indicator_type}' given to a '{indicator_type.value}' indicator",
            config_key="indicator_type",
        )

    if indicator_type == IndicatorType.THRESHOLD:
        return _evaluate_threshold(config, current, default_severity)

    minimum = config.minimum_threshold if isinstance(config, DeviationConfig) else None
    if minimum is not None and current < minimum:
        return EvaluationResult(should_alert=False)

    try:
        deviation = deviation_percent(current, baseline)
    except EvaluationError as exc:
        return EvaluationResult(should_alert=False, error=exc)

    return EvaluationResult(
        should_alert=abs(deviation) >= config.deviation_percent,
        deviation_percent=deviation,
        severity=classify_severity(deviation),
    )


def _evaluate_threshold(
    config: ThresholdConfig,
    current: float,
    default_severity: AlertSeverity,
) -> EvaluationResult:
    return EvaluationResult(
        should_alert=compare(current, config.threshold_value, config.comparison_operator),
        severity=default_severity,
    )


__all__ = [
    "EvaluationResult",
    "compare",
    "classify_severity",
    "deviation_percent",
    "evaluate",
]
