"""
Alerting - Notifier.

============================================================
PURPOSE
============================================================
Outbound event interface. The monitor publishes events; delivery
(email, SMS, webhooks, live push) belongs to whoever implements
the Notifier.

Events:
- AlertTriggeredEvent: indicator entered TRIGGERED
- AlertResolvedEvent: indicator left TRIGGERED
- IndicatorExecutedEvent: a run completed (success or failure)

============================================================
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from core.clock import to_iso8601
from core.exceptions import NotificationError
from indicators.models import AlertSeverity


logger = logging.getLogger(__name__)


# ============================================================
# EVENTS
# ============================================================

@dataclass(frozen=True)
class AlertTriggeredEvent:
    """An indicator started breaching."""

    indicator_id: int
    name: str
    owner: str
    severity: Optional[AlertSeverity]
    current_value: Optional[float]
    baseline_value: Optional[float]
    deviation_percent: Optional[float]
    trigger_time: datetime

    event_type = "alert_triggered"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "indicator_id": self.indicator_id,
            "name": self.name,
            "owner": self.owner,
            "severity": self.severity.value if self.severity else None,
            "current_value": self.current_value,
            "baseline_value": self.baseline_value,
            "deviation_percent": self.deviation_percent,
            "trigger_time": to_iso8601(self.trigger_time),
        }


@dataclass(frozen=True)
class AlertResolvedEvent:
    """An indicator stopped breaching."""

    indicator_id: int
    resolved_time: datetime

    event_type = "alert_resolved"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "indicator_id": self.indicator_id,
            "resolved_time": to_iso8601(self.resolved_time),
        }


@dataclass(frozen=True)
class IndicatorExecutedEvent:
    """An indicator run finished."""

    indicator_id: int
    name: str
    success: bool
    timestamp: datetime
    duration_ms: float
    current_value: Optional[float] = None
    deviation_percent: Optional[float] = None
    error_message: Optional[str] = None

    event_type = "indicator_executed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "indicator_id": self.indicator_id,
            "name": self.name,
            "success": self.success,
            "timestamp": to_iso8601(self.timestamp),
            "duration_ms": round(self.duration_ms, 2),
            "current_value": self.current_value,
            "deviation_percent": self.deviation_percent,
            "error_message": self.error_message,
        }


MonitorEvent = Union[AlertTriggeredEvent, AlertResolvedEvent, IndicatorExecutedEvent]

EventHandler = Callable[[MonitorEvent], Awaitable[None]]


# ============================================================
# NOTIFIERS
# ============================================================

class Notifier(ABC):
    """Outbound event sink."""

    @abstractmethod
    async def publish(self, event: MonitorEvent) -> None:
        """
        Publish one event.

        Raises:
            NotificationError: delivery failed
        """
        pass


class LoggingNotifier(Notifier):
    """Writes events to the log. Default when no transport is configured."""

    def __init__(self, logger_name: str = "indicator_monitor.events"):
        self._logger = logging.getLogger(logger_name)

    async def publish(self, event: MonitorEvent) -> None:
        level = logging.DEBUG if isinstance(event, IndicatorExecutedEvent) else logging.WARNING
        self._logger.log(level, json.dumps(event.to_dict()))


class CallbackNotifier(Notifier):
    """
    Fans events out to async handlers.

    Every handler is called even if an earlier one fails; failures
    are collected into a single NotificationError.
    """

    def __init__(self, handlers: Optional[List[EventHandler]] = None):
        self._handlers: List[EventHandler] = list(handlers or [])

    def add_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, event: MonitorEvent) -> None:
        failures = []
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception as e:
                failures.append(f"{getattr(handler, '__name__', repr(handler))}: {e}")

        if failures:
            raise NotificationError(
                f"{len(failures)} handler(s) failed for {event.event_type}",
                event_type=event.event_type,
                context={"failures": failures},
            )


__all__ = [
    "AlertTriggeredEvent",
    "AlertResolvedEvent",
    "IndicatorExecutedEvent",
    "MonitorEvent",
    "EventHandler",
    "Notifier",
    "LoggingNotifier",
    "CallbackNotifier",
]
