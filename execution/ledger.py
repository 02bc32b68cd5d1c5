"""
Execution - Ledger.

Append-only history of indicator runs. Records are immutable and
never deleted by the monitor.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.clock import to_iso8601
from indicators.models import AlertSeverity


# ============================================================
# RECORD
# ============================================================

@dataclass(frozen=True)
class ExecutionRecord:
    """One indicator run."""

    indicator_id: int
    timestamp: datetime
    success: bool
    current_value: Optional[float] = None
    baseline_value: Optional[float] = None
    deviation_percent: Optional[float] = None
    should_alert: bool = False
    severity: Optional[AlertSeverity] = None
    error_message: Optional[str] = None
    duration_ms: float = 0.0
    record_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "indicator_id": self.indicator_id,
            "timestamp": to_iso8601(self.timestamp),
            "success": self.success,
            "current_value": self.current_value,
            "baseline_value": self.baseline_value,
            "deviation_percent": self.deviation_percent,
            "should_alert": self.should_alert,
            "severity": self.severity.value if self.severity else None,
            "error_message": self.error_message,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass(frozen=True)
class HistoryQuery:
    """Filter for execution history. Results are newest first."""

    indicator_id: Optional[int] = None
    since: Optional[datetime] = None
    """Inclusive lower bound on timestamp."""

    until: Optional[datetime] = None
    """Inclusive upper bound on timestamp."""

    success: Optional[bool] = None
    limit: Optional[int] = 100
    offset: int = 0

    def matches(self, record: ExecutionRecord) -> bool:
        if self.indicator_id is not None and record.indicator_id != self.indicator_id:
            return False
        if self.since is not None and record.timestamp < self.since:
            return False
        if self.until is not None and record.timestamp > self.until:
            return False
        if self.success is not None and record.success != self.success:
            return False
        return True


# ============================================================
# LEDGER
# ============================================================

class ExecutionLedger(ABC):
    """Execution history contract."""

    @abstractmethod
    async def append(self, record: ExecutionRecord) -> ExecutionRecord:
        """Store a record; returns it with its assigned id."""
        pass

    @abstractmethod
    async def query(self, query: HistoryQuery) -> List[ExecutionRecord]:
        pass


class InMemoryExecutionLedger(ExecutionLedger):
    """List-backed ledger."""

    def __init__(self) -> None:
        self._records: List[ExecutionRecord] = []
        self._lock = threading.Lock()

    async def append(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._lock:
            stored = replace(record, record_id=len(self._records) + 1)
            self._records.append(stored)
            return stored

    async def query(self, query: HistoryQuery) -> List[ExecutionRecord]:
        with self._lock:
            matched = [record for record in self._records if query.matches(record)]

        matched.sort(key=lambda r: (r.timestamp, r.record_id), reverse=True)
        end = None if query.limit is None else query.offset + query.limit
        return matched[query.offset:end]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


__all__ = [
    "ExecutionRecord",
    "HistoryQuery",
    "ExecutionLedger",
    "InMemoryExecutionLedger",
]
