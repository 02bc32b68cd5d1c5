"""
Alerting - Alert State Machine.

============================================================
PURPOSE
============================================================
Per-indicator alert lifecycle.

============================================================
STATE DIAGRAM
============================================================

            should_alert                 should_alert
    NONE ─────────────────► TRIGGERED ◄───────────────── RESOLVED
                              │   ▲                         ▲
                              │   │ should_alert            │
                              │   └─ (update in place,      │
                              │       no notification)      │
                              │                             │
                              └──── not should_alert ───────┘

    NONE / RESOLVED + not should_alert  ->  no change

Only the transition into TRIGGERED notifies. A breach that
persists across runs updates deviation and severity silently.

============================================================
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from core.clock import to_iso8601
from indicators.models import AlertSeverity


# ============================================================
# ENUMS
# ============================================================

class AlertStatus(str, Enum):
    """Alert status of an indicator."""

    NONE = "none"
    """Never alerted."""

    TRIGGERED = "triggered"
    """Breach in progress."""

    RESOLVED = "resolved"
    """Last breach has cleared."""


class AlertTransition(str, Enum):
    """What a transition did to the alert state."""

    NO_CHANGE = "no_change"
    TRIGGERED = "triggered"
    UPDATED = "updated"
    RESOLVED = "resolved"


# ============================================================
# STATE
# ============================================================

@dataclass(frozen=True)
class AlertState:
    """Current alert state of one indicator."""

    indicator_id: int
    status: AlertStatus = AlertStatus.NONE
    last_trigger_time: Optional[datetime] = None
    last_deviation: Optional[float] = None
    severity: Optional[AlertSeverity] = None
    resolved_time: Optional[datetime] = None
    last_value: Optional[float] = None
    trigger_count: int = 0
    """Number of breach episodes (NONE/RESOLVED -> TRIGGERED)."""

    version: int = 0
    """Incremented on every stored change; used for compare-and-update."""

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.TRIGGERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indicator_id": self.indicator_id,
            "status": self.status.value,
            "last_trigger_time": to_iso8601(self.last_trigger_time) if self.last_trigger_time else None,
            "last_deviation": self.last_deviation,
            "severity": self.severity.value if self.severity else None,
            "resolved_time": to_iso8601(self.resolved_time) if self.resolved_time else None,
            "last_value": self.last_value,
            "trigger_count": self.trigger_count,
        }


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of applying an evaluation to an alert state."""

    transition: AlertTransition
    previous: AlertState
    state: AlertState

    @property
    def changed(self) -> bool:
        return self.transition != AlertTransition.NO_CHANGE

    @property
    def triggered(self) -> bool:
        return self.transition == AlertTransition.TRIGGERED

    @property
    def resolved(self) -> bool:
        return self.transition == AlertTransition.RESOLVED


# ============================================================
# TRANSITION FUNCTION
# ============================================================

def apply_transition(
    state: AlertState,
    should_alert: bool,
    severity: Optional[AlertSeverity],
    deviation: Optional[float],
    now: datetime,
    current_value: Optional[float] = None,
) -> TransitionOutcome:
    """
    Compute the next alert state. Pure; the caller stores the result.

    The returned state carries version + 1 whenever it differs from
    the input.
    """
    if should_alert:
        if state.status != AlertStatus.TRIGGERED:
            new_state = replace(
                state,
                status=AlertStatus.TRIGGERED,
                last_trigger_time=now,
                last_deviation=deviation,
                severity=severity,
                resolved_time=None,
                last_value=current_value,
                trigger_count=state.trigger_count + 1,
                version=state.version + 1,
            )
            return TransitionOutcome(AlertTransition.TRIGGERED, state, new_state)

        new_state = replace(
            state,
            last_deviation=deviation,
            severity=severity,
            last_value=current_value,
            version=state.version + 1,
        )
        return TransitionOutcome(AlertTransition.UPDATED, state, new_state)

    if state.status == AlertStatus.TRIGGERED:
        new_state = replace(
            state,
            status=AlertStatus.RESOLVED,
            resolved_time=now,
            version=state.version + 1,
        )
        return TransitionOutcome(AlertTransition.RESOLVED, state, new_state)

    return TransitionOutcome(AlertTransition.NO_CHANGE, state, state)


__all__ = [
    "AlertStatus",
    "AlertTransition",
    "AlertState",
    "TransitionOutcome",
    "apply_transition",
]
