"""
Indicators Package.

Monitored metric definitions, their validation and the pure
evaluation rules applied to collected values.
"""

from .catalog import IndicatorCatalog, parse_definition
from .evaluator import EvaluationResult, classify_severity, compare, evaluate
from .models import (
    AlertSeverity,
    ComparisonOperator,
    DeviationConfig,
    Indicator,
    IndicatorType,
    ThresholdConfig,
    TrendAnalysisConfig,
)
from .schemas import IndicatorDefinition
from .store import IndicatorStore, InMemoryIndicatorStore

__all__ = [
    "AlertSeverity",
    "ComparisonOperator",
    "DeviationConfig",
    "EvaluationResult",
    "Indicator",
    "IndicatorCatalog",
    "IndicatorDefinition",
    "IndicatorStore",
    "IndicatorType",
    "InMemoryIndicatorStore",
    "ThresholdConfig",
    "TrendAnalysisConfig",
    "classify_severity",
    "compare",
    "evaluate",
    "parse_definition",
]
