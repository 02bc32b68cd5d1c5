"""
Alerting - Alert State Store.

Abstract store plus the in-memory implementation. Transitions
for the same indicator are serialized; the SQL implementation
does the same with a version column.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from indicators.models import AlertSeverity

from .state_machine import AlertState, TransitionOutcome, apply_transition


class AlertStateStore(ABC):
    """Alert state persistence contract."""

    @abstractmethod
    async def get(self, indicator_id: int) -> AlertState:
        """Current state; a fresh NONE state if the indicator never alerted."""
        pass

    @abstractmethod
    async def list_states(self) -> List[AlertState]:
        """All stored states, ordered by indicator id."""
        pass

    @abstractmethod
    async def transition(
        self,
        indicator_id: int,
        should_alert: bool,
        severity: Optional[AlertSeverity],
        deviation: Optional[float],
        now: datetime,
        current_value: Optional[float] = None,
    ) -> TransitionOutcome:
        """Atomically apply one evaluation to the indicator's alert state."""
        pass


class InMemoryAlertStateStore(AlertStateStore):
    """Dictionary-backed alert store guarded by a lock."""

    def __init__(self) -> None:
        self._states: Dict[int, AlertState] = {}
        self._lock = threading.Lock()

    async def get(self, indicator_id: int) -> AlertState:
        with self._lock:
            return self._states.get(indicator_id) or AlertState(indicator_id=indicator_id)

    async def list_states(self) -> List[AlertState]:
        with self._lock:
            return [state for _, state in sorted(self._states.items())]

    async def transition(
        self,
        indicator_id: int,
        should_alert: bool,
        severity: Optional[AlertSeverity],
        deviation: Optional[float],
        now: datetime,
        current_value: Optional[float] = None,
    ) -> TransitionOutcome:
        with self._lock:
            current = self._states.get(indicator_id) or AlertState(indicator_id=indicator_id)
            outcome = apply_transition(
                current, should_alert, severity, deviation, now, current_value
            )
            if outcome.changed:
                self._states[indicator_id] = outcome.state
            return outcome


__all__ = [
    "AlertStateStore",
    "InMemoryAlertStateStore",
]
