"""
Alerting Package.

Alert lifecycle per indicator and the outbound notifier interface.
"""

from .notifier import (
    AlertResolvedEvent,
    AlertTriggeredEvent,
    CallbackNotifier,
    IndicatorExecutedEvent,
    LoggingNotifier,
    Notifier,
)
from .state_machine import (
    AlertState,
    AlertStatus,
    AlertTransition,
    TransitionOutcome,
    apply_transition,
)
from .store import AlertStateStore, InMemoryAlertStateStore

__all__ = [
    "AlertResolvedEvent",
    "AlertState",
    "AlertStateStore",
    "AlertStatus",
    "AlertTransition",
    "AlertTriggeredEvent",
    "CallbackNotifier",
    "IndicatorExecutedEvent",
    "InMemoryAlertStateStore",
    "LoggingNotifier",
    "Notifier",
    "TransitionOutcome",
    "apply_transition",
]
