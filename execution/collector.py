"""
Execution - Metric Collector.

The monitor never computes metric values itself. A collector
turns an indicator's source reference into a (current, baseline)
pair for the requested lookback window.
"""

import importlib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from core.exceptions import ConfigurationError


@dataclass(frozen=True)
class CollectionResult:
    """Values returned by a collector for one run."""

    current_value: Optional[float]
    baseline_value: Optional[float] = None
    ok: bool = True
    error: Optional[str] = None

    @classmethod
    def success(cls, current: float, baseline: Optional[float] = None) -> "CollectionResult":
        return cls(current_value=current, baseline_value=baseline)

    @classmethod
    def failure(cls, error: str) -> "CollectionResult":
        return cls(current_value=None, ok=False, error=error)


class MetricCollector(ABC):
    """External metric source."""

    @abstractmethod
    async def collect(
        self,
        source_ref: str,
        window_minutes: int,
        deadline: datetime,
    ) -> CollectionResult:
        """
        Collect current and baseline values.

        Args:
            source_ref: Opaque handle from the indicator
            window_minutes: Lookback window
            deadline: Absolute time after which the result is discarded
        """
        pass


class StaticMetricCollector(MetricCollector):
    """
    Serves values set in code, keyed by source reference.

    Used for local runs and tests; unknown references fail.
    """

    def __init__(self, values: Optional[Dict[str, Tuple[float, Optional[float]]]] = None):
        self._values: Dict[str, Tuple[float, Optional[float]]] = dict(values or {})
        self._lock = threading.Lock()

    def set_value(self, source_ref: str, current: float, baseline: Optional[float] = None) -> None:
        with self._lock:
            self._values[source_ref] = (current, baseline)

    async def collect(
        self,
        source_ref: str,
        window_minutes: int,
        deadline: datetime,
    ) -> CollectionResult:
        with self._lock:
            values = self._values.get(source_ref)
        if values is None:
            return CollectionResult.failure(f"no values for source '{source_ref}'")
        return CollectionResult.success(*values)


def load_collector(target: str) -> MetricCollector:
    """
    Build a collector from a 'module:attribute' reference.

    The attribute may be a MetricCollector instance, a class, or a
    zero-argument factory.
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(
            "collector must be given as 'module:attribute'",
            config_key="collector",
            actual_value=target,
        )

    try:
        obj = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"cannot load collector '{target}': {e}",
            config_key="collector",
            cause=e,
        ) from e

    collector = obj if isinstance(obj, MetricCollector) else obj()
    if not isinstance(collector, MetricCollector):
        raise ConfigurationError(
            f"'{target}' did not produce a MetricCollector",
            config_key="collector",
            actual_value=type(collector).__name__,
        )
    return collector


__all__ = [
    "CollectionResult",
    "MetricCollector",
    "StaticMetricCollector",
    "load_collector",
]
